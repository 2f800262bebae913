"""FastAPI application executing scripts on behalf of proxied datasources."""

from __future__ import annotations

import asyncio
import logging
from functools import lru_cache
from typing import List

from fastapi import APIRouter, Depends, FastAPI
from uvicorn import Config, Server

from datasource.completions import register_language
from datasource.context import TargetAdapter
from datasource.core import DIRECT, QueryResponse
from datasource.dispatcher import Dispatcher
from datasource.health import probe
from datasource.settings import load_settings, setup_logging

from .schemas import CompletionModel, HealthModel, QueryRequestModel, QueryResponseModel

LOGGER = logging.getLogger(__name__)

router = APIRouter(prefix="/api")
adapter = TargetAdapter()


@lru_cache(maxsize=1)
def get_dispatcher() -> Dispatcher:
    """The backend always talks to the engine directly."""
    return Dispatcher(load_settings(access=DIRECT))


def _to_model(response: QueryResponse) -> QueryResponseModel:
    results = {
        ref_id: {
            "frames": [frame.to_dict() for frame in result.frames],
            "error": result.error,
            "status": result.status,
        }
        for ref_id, result in response.results.items()
    }
    return QueryResponseModel.model_validate({"results": results})


@router.post("/ds/query", response_model=QueryResponseModel)
async def ds_query(
    body: QueryRequestModel,
    dispatcher: Dispatcher = Depends(get_dispatcher),
) -> QueryResponseModel:
    targets = adapter.adapt_all(query.as_target() for query in body.queries)
    LOGGER.info("Executing %d proxied target(s)", len(targets))
    response = await dispatcher.execute_targets(targets, "")
    return _to_model(response)


@router.get("/health", response_model=HealthModel)
async def health(dispatcher: Dispatcher = Depends(get_dispatcher)) -> HealthModel:
    result = await probe(dispatcher)
    return HealthModel(status=result.status.value.lower(), message=result.message, details=result.details)


@router.get("/completions", response_model=List[CompletionModel])
async def completions(dispatcher: Dispatcher = Depends(get_dispatcher)) -> List[CompletionModel]:
    items = register_language(dispatcher.settings.constants, dispatcher.settings.macros)
    return [CompletionModel(label=item.label, kind=item.kind) for item in items]


app = FastAPI(title="Datasource backend")
app.include_router(router)


def start_backend(host: str, port: int) -> None:
    """Start the FastAPI backend via uvicorn."""

    setup_logging()
    config = Config(app=app, host=host, port=port, log_level="info")
    server = Server(config=config)
    asyncio.run(server.serve())

"""Compile, dispatch and normalize queries for every target of a request."""
from __future__ import annotations

import asyncio
import functools
import logging
from typing import Any, Callable, Optional, Sequence

from .channels.direct import DirectChannel
from .channels.proxy import ProxyChannel
from .context import QueryContextBuilder, build_script
from .core import (
    DIRECT,
    Channel,
    ChannelResponse,
    DataSourceError,
    ExecutionState,
    QueryRequest,
    QueryResponse,
    QueryTarget,
    RemoteScriptError,
    SessionLike,
    TargetResult,
    TransportError,
)
from .normalize import normalize
from .settings import DataSourceSettings

logger = logging.getLogger(__name__)


async def run_in_executor(func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, functools.partial(func, *args, **kwargs))


def build_channel(settings: DataSourceSettings, *, session: Optional[SessionLike] = None) -> Channel:
    if settings.access == DIRECT:
        return DirectChannel(base_url=settings.base_url, session=session, timeout=settings.timeout_s)
    return ProxyChannel(base_url=settings.proxy_url, session=session, timeout=settings.timeout_s)


class Dispatcher:
    """Execute requests in the configured access mode.

    Both modes share one :class:`QueryContextBuilder`, so identical contexts
    always produce identical preambles. Targets run concurrently and each
    one records its own outcome.
    """

    def __init__(
        self,
        settings: DataSourceSettings,
        *,
        channel: Optional[Channel] = None,
        session: Optional[SessionLike] = None,
    ) -> None:
        self.settings = settings
        self.session = session
        self.builder = QueryContextBuilder(settings.constants, settings.macros)
        self.channel = channel or build_channel(settings, session=session)
        self._engine_channel: Optional[Channel] = self.channel if settings.access == DIRECT else None

    @property
    def access_mode(self) -> str:
        return self.settings.access

    @property
    def engine_channel(self) -> Channel:
        """Channel talking to the engine itself, whatever the access mode."""
        if self._engine_channel is None:
            if not self.settings.base_url:
                raise TransportError(None, "no engine base_url configured")
            self._engine_channel = DirectChannel(
                base_url=self.settings.base_url,
                session=self.session,
                timeout=self.settings.timeout_s,
            )
        return self._engine_channel

    async def execute(self, request: QueryRequest) -> QueryResponse:
        preamble = self.builder.preamble(request)
        return await self.execute_targets(request.targets, preamble)

    async def execute_targets(self, targets: Sequence[QueryTarget], preamble: str = "") -> QueryResponse:
        seen = set()
        for target in targets:
            if target.ref_id in seen:
                logger.warning("Duplicate refId %r; only the last result is kept", target.ref_id)
            seen.add(target.ref_id)
        results = await asyncio.gather(*(self._execute_target(target, preamble) for target in targets))
        return QueryResponse({result.ref_id: result for result in results})

    async def _execute_target(self, target: QueryTarget, preamble: str) -> TargetResult:
        result = TargetResult(ref_id=target.ref_id)
        result.advance(ExecutionState.COMPILING)
        result.script = build_script(preamble, target.expr)
        result.advance(ExecutionState.DISPATCHED)
        try:
            response = await run_in_executor(
                self.channel.exec,
                result.script,
                ref_id=target.ref_id,
                hide_labels=target.hide_labels,
            )
            if response.frames is not None:
                frames = response.frames
            else:
                frames = normalize(response.payload, target.ref_id, hide_labels=target.hide_labels)
        except RemoteScriptError as exc:
            logger.warning("Script error for target %r: %s", target.ref_id, exc.message)
            result.fail(exc.message, exc.status)
        except TransportError as exc:
            logger.warning("Transport failure for target %r: %s", target.ref_id, exc)
            result.fail(str(exc), exc.status)
        except DataSourceError as exc:
            logger.warning("Query failed for target %r: %s", target.ref_id, exc)
            result.fail(str(exc))
        except Exception as exc:  # pragma: no cover - unexpected channel failure
            logger.exception("Unexpected failure for target %r", target.ref_id)
            result.fail(f"{type(exc).__name__}: {exc}")
        else:
            result.succeed(frames)
        return result

    async def exec_script(self, script: str) -> ChannelResponse:
        """Run raw script text against the engine and return its payload."""
        return await run_in_executor(self.engine_channel.exec, script)

    async def check_health(self) -> ChannelResponse:
        return await run_in_executor(self.channel.check_health)

    def execute_sync(self, request: QueryRequest) -> QueryResponse:
        return asyncio.run(self.execute(request))


class QueryRunner:
    """Single-shot "run now" entry point for editor-driven runs.

    Each call is an independent run. A run's response is published to
    :attr:`latest` only when no newer run has completed before it.
    """

    def __init__(self, dispatcher: Dispatcher) -> None:
        self.dispatcher = dispatcher
        self.latest: Optional[QueryResponse] = None
        self._issued = 0
        self._published = 0

    async def run_now(self, request: QueryRequest) -> QueryResponse:
        self._issued += 1
        generation = self._issued
        response = await self.dispatcher.execute(request)
        if generation > self._published:
            self._published = generation
            self.latest = response
        else:
            logger.debug("Discarding result of run %d; run %d already completed", generation, self._published)
        return response

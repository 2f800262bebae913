"""Binary connectivity probe for the configured access mode."""
from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import Optional

from .core import HEALTH_SCRIPT
from .dispatcher import Dispatcher

logger = logging.getLogger(__name__)

OK_MESSAGE = "Datasource is working"
ERROR_MESSAGE = "An error has occurred"

__all__ = ["HEALTH_SCRIPT", "HealthResult", "HealthStatus", "probe", "probe_sync"]


class HealthStatus(str, enum.Enum):
    OK = "Ok"
    ERROR = "Error"


@dataclass(frozen=True)
class HealthResult:
    status: HealthStatus
    message: str
    details: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status is HealthStatus.OK


async def probe(dispatcher: Dispatcher) -> HealthResult:
    """Never raises: every failure collapses into ``Error``."""
    try:
        response = await dispatcher.check_health()
    except Exception as exc:
        logger.warning("Health check failed in %s mode: %s", dispatcher.access_mode, exc)
        return HealthResult(HealthStatus.ERROR, ERROR_MESSAGE, details=str(exc))
    if response.status != 200:
        logger.warning("Health check returned status %s", response.status)
        return HealthResult(HealthStatus.ERROR, ERROR_MESSAGE, details=f"HTTP {response.status}")
    return HealthResult(HealthStatus.OK, OK_MESSAGE)


def probe_sync(dispatcher: Dispatcher) -> HealthResult:
    return asyncio.run(probe(dispatcher))

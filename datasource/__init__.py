"""Dashboard datasource for a stack-based time-series script engine."""
from __future__ import annotations

from typing import Any

from .core import (
    ConstantBinding,
    Frame,
    QueryRequest,
    QueryTarget,
    RepeatBinding,
    TimeRange,
    VariableBinding,
)

__all__ = [
    "ConstantBinding",
    "Frame",
    "QueryRequest",
    "QueryTarget",
    "RepeatBinding",
    "TimeRange",
    "VariableBinding",
    "Dispatcher",
    "DataSourceSettings",
    "load_settings",
]


def __getattr__(name: str) -> Any:
    if name in {"Dispatcher", "DataSourceSettings", "load_settings"}:
        from .dispatcher import Dispatcher
        from .settings import DataSourceSettings, load_settings

        return {
            "Dispatcher": Dispatcher,
            "DataSourceSettings": DataSourceSettings,
            "load_settings": load_settings,
        }[name]
    raise AttributeError(f"module 'datasource' has no attribute '{name}'")

"""Shared helper utilities for the datasource test-suite."""

from .data import build_series, build_table, build_time_range, write_config
from .mocks import FakeChannel, FakeHttpResponse, FakeSession

__all__ = [
    "build_series",
    "build_table",
    "build_time_range",
    "write_config",
    "FakeChannel",
    "FakeHttpResponse",
    "FakeSession",
]

"""Execution channel implementations for the datasource package."""
from .direct import DirectChannel
from .proxy import ProxyChannel

__all__ = [
    "DirectChannel",
    "ProxyChannel",
]

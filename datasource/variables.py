"""Values for query-type dashboard variables.

The query runs after the datasource constants and macros. The stack it
leaves is read as follows:

* a list: each entry is both text and value
* a map: keys are the texts, values the values
* strings or numbers: one entry each

Any other object is ignored.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, List, Mapping

from .core import TransportError, _as_text
from .dispatcher import Dispatcher
from .header import compile_datasource_context


@dataclass(frozen=True)
class MetricFindValue:
    text: str
    value: str


def _is_entry(value: Any) -> bool:
    return isinstance(value, (str, int, float, bool))


def parse_variable_values(payload: Any) -> List[MetricFindValue]:
    if not isinstance(payload, list):
        payload = [payload]
    entries: List[MetricFindValue] = []
    for element in payload:
        if isinstance(element, list):
            entries.extend(
                MetricFindValue(_as_text(item), _as_text(item)) for item in element if _is_entry(item)
            )
        elif isinstance(element, Mapping):
            entries.extend(
                MetricFindValue(str(key), _as_text(value)) for key, value in element.items() if _is_entry(value)
            )
        elif _is_entry(element):
            entries.append(MetricFindValue(_as_text(element), _as_text(element)))
    return entries


async def find_variable_values(dispatcher: Dispatcher, query: str) -> List[MetricFindValue]:
    context = compile_datasource_context(dispatcher.settings.constants, dispatcher.settings.macros)
    response = await dispatcher.exec_script(context + query)
    if response.payload is None:
        raise TransportError(response.status, "variable query returned no payload")
    return parse_variable_values(response.payload)


def find_variable_values_sync(dispatcher: Dispatcher, query: str) -> List[MetricFindValue]:
    return asyncio.run(find_variable_values(dispatcher, query))

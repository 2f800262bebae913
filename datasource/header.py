"""Compile the dashboard context into a script preamble.

The preamble is a sequence of ``<literal> '<name>' STORE`` statements which
bind the time window, dashboard variables, datasource constants and macros
and the per-panel repeat variables before the user's script runs. Nothing is
evaluated locally; the engine validates the emitted text at execution time.

Order matters because later statements may reference names bound earlier:

1. time variables
2. dashboard variables
3. datasource constants
4. datasource macros
5. repeat variables
6. the ``LINEON`` marker, which makes the engine report line numbers
"""
from __future__ import annotations

from typing import Any, Iterable, List, Mapping, Optional, Sequence, Tuple

from .core import ConstantBinding, RepeatBinding, TimeRange, VariableBinding, iso_millis

STORE = "STORE"
LIST_SUFFIX = "_list"
REPEAT_SUFFIX = "_repeat"
REGEX_ANCHOR = "~"
REGEX_ALTERNATION = "REOPTALT"
TERMINAL_MARKER = "LINEON"

# (time range attribute, engine slot name)
TIME_SLOTS: Sequence[Tuple[str, str]] = (
    ("start_us", "start"),
    ("start_iso", "startISO"),
    ("end_us", "end"),
    ("end_iso", "endISO"),
    ("interval", "interval"),
    ("step_hint", "__interval"),
    ("step_hint_millis", "__interval_ms"),
)


def quote(value: Any) -> str:
    """Quote a string literal; single quotes inside become double quotes."""
    return "'" + str(value).replace("'", '"') + "'"


def store(literal: str, name: str) -> str:
    return f"{literal} {quote(name)} {STORE}\n"


def list_literal(values: Iterable[str]) -> str:
    items = " ".join(quote(value) for value in values)
    return f"[ {items} ]" if items else "[ ]"


def alternation_regex(list_name: str) -> str:
    """Anchored ``(?:a|b|c)`` regex built by the engine from a stored list."""
    return f"{quote(REGEX_ANCHOR)} ${list_name} {REGEX_ALTERNATION} +"


def _time_values(time_range: TimeRange) -> Mapping[str, Any]:
    return {
        "start_us": time_range.start_us,
        "start_iso": iso_millis(time_range.start),
        "end_us": time_range.end_us,
        "end_iso": iso_millis(time_range.end),
        "interval": time_range.interval,
        "step_hint": time_range.step_hint,
        "step_hint_millis": time_range.step_hint_millis,
    }


def compile_time_variables(time_range: TimeRange) -> str:
    values = _time_values(time_range)
    lines: List[str] = []
    for attribute, slot in TIME_SLOTS:
        value = values[attribute]
        is_number = isinstance(value, (int, float)) and not isinstance(value, bool)
        lines.append(store(str(value) if is_number else quote(value), slot))
    return "".join(lines)


def compile_variable(binding: VariableBinding) -> str:
    name = binding.name
    list_name = f"{name}{LIST_SUFFIX}"

    if binding.is_all_selected:
        if binding.has_custom_all_value:
            # Custom "all" literal is trusted as-is, it may already be a pattern.
            literal = str(binding.all_value)
            return store(list_literal([literal]), list_name) + store(quote(literal), name)
        return store(list_literal(binding.option_values()), list_name) + store(
            alternation_regex(list_name), name
        )

    if isinstance(binding.current_value, (list, tuple)):
        values = binding.selected_values()
        header = store(list_literal(values), list_name)
        if len(values) > 1:
            return header + store(alternation_regex(list_name), name)
        return header + store(quote(values[0] if values else ""), name)

    value = binding.selected_values()[0]
    return store(list_literal([value]), list_name) + store(quote(value), name)


def compile_variables(variables: Iterable[VariableBinding]) -> str:
    return "".join(compile_variable(binding) for binding in variables)


def compile_constants(constants: Iterable[ConstantBinding]) -> str:
    return "".join(store(quote(constant.value), constant.name) for constant in constants)


def compile_macros(macros: Iterable[ConstantBinding]) -> str:
    # Macro bodies are script source, never literals.
    return "".join(store(str(macro.value), macro.name) for macro in macros)


def compile_repeat_variables(
    variables: Iterable[VariableBinding],
    repeat_scope: Optional[Mapping[str, RepeatBinding]] = None,
) -> str:
    scope = repeat_scope or {}
    lines: List[str] = []
    for binding in variables:
        scoped = scope.get(binding.name)
        values = scoped.values() if scoped is not None else binding.resolved_values()
        literal = quote(values[0]) if len(values) == 1 else list_literal(values)
        lines.append(store(literal, f"{binding.name}{REPEAT_SUFFIX}"))
    return "".join(lines)


def compile_datasource_context(
    constants: Iterable[ConstantBinding],
    macros: Iterable[ConstantBinding],
) -> str:
    """Constants and macros only, as used by variable queries."""
    return compile_constants(constants) + compile_macros(macros) + f"{TERMINAL_MARKER}\n"


def compile_header(
    time_range: TimeRange,
    constants: Sequence[ConstantBinding] = (),
    macros: Sequence[ConstantBinding] = (),
    variables: Sequence[VariableBinding] = (),
    repeat_scope: Optional[Mapping[str, RepeatBinding]] = None,
    max_data_points: Optional[int] = None,
) -> str:
    """Return the full preamble for one query execution."""
    if max_data_points is not None:
        time_range = time_range.with_max_data_points(max_data_points)
    return (
        compile_time_variables(time_range)
        + compile_variables(variables)
        + compile_constants(constants)
        + compile_macros(macros)
        + compile_repeat_variables(variables, repeat_scope)
        + f"{TERMINAL_MARKER}\n"
    )

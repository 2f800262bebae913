"""Merge the compiled preamble with each target's script."""
from __future__ import annotations

import logging
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Set, Tuple, Union

from .core import ConstantBinding, QueryRequest, QueryTarget
from .header import compile_header

logger = logging.getLogger(__name__)

CURRENT_FIELD = "expr"
DEPRECATED_FIELD = "queryText"


def build_script(preamble: str, target_expr: str) -> str:
    return preamble + target_expr


class TargetAdapter:
    """Ingest raw target descriptions into :class:`QueryTarget` values.

    Older clients send the script under ``queryText``; the fallback is noted
    once per target.
    """

    def __init__(self) -> None:
        self._notified: Set[str] = set()

    def adapt(self, raw: Union[QueryTarget, Mapping[str, Any]]) -> QueryTarget:
        if isinstance(raw, QueryTarget):
            return raw
        ref_id = str(raw.get("refId", raw.get("ref_id", "")) or "")
        expr = raw.get(CURRENT_FIELD)
        if expr is None and raw.get(DEPRECATED_FIELD) is not None:
            expr = raw.get(DEPRECATED_FIELD)
            if ref_id not in self._notified:
                self._notified.add(ref_id)
                logger.warning(
                    "Target %r uses deprecated field '%s'; send '%s' instead",
                    ref_id,
                    DEPRECATED_FIELD,
                    CURRENT_FIELD,
                )
        hide_labels = raw.get("hideLabels", raw.get("hide_labels", False))
        return QueryTarget(ref_id=ref_id, expr=str(expr or ""), hide_labels=bool(hide_labels))

    def adapt_all(self, raws: Iterable[Union[QueryTarget, Mapping[str, Any]]]) -> List[QueryTarget]:
        return [self.adapt(raw) for raw in raws]


class QueryContextBuilder:
    """Produce the executable script for every target of a request."""

    def __init__(
        self,
        constants: Sequence[ConstantBinding] = (),
        macros: Sequence[ConstantBinding] = (),
    ) -> None:
        self.constants = tuple(constants)
        self.macros = tuple(macros)

    def preamble(self, request: QueryRequest, max_data_points: Optional[int] = None) -> str:
        return compile_header(
            request.time_range,
            self.constants,
            self.macros,
            request.variables,
            request.repeat_scope,
            max_data_points=max_data_points,
        )

    def build(self, request: QueryRequest) -> List[Tuple[QueryTarget, str]]:
        preamble = self.preamble(request)
        return [(target, build_script(preamble, target.expr)) for target in request.targets]

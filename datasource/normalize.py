"""Normalization helpers for engine results.

The engine returns its final stack as a JSON array without any type tag, so
each element's shape is inferred with an ordered predicate chain (table
first) and turned into a tagged :class:`RawResult` before frames are built.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Sequence, Tuple

from .core import (
    FIELD_BOOLEAN,
    FIELD_NUMBER,
    FIELD_OTHER,
    FIELD_STRING,
    FIELD_TIME,
    Field,
    Frame,
    NormalizationError,
)

TABLE_FRAME_NAME = "tableResults"
ARRAY_FRAME_NAME = "arrayResults"
SCALAR_FRAME_NAME = "scalarResult"
TIME_FIELD_NAME = "Time"
VALUE_FIELD_NAME = "Value"


class Shape(str, enum.Enum):
    TABLE = "table"
    SERIES = "series"
    SERIES_LIST = "series_list"
    ARRAY = "array"
    SCALAR = "scalar"


@dataclass(frozen=True)
class RawResult:
    shape: Shape
    body: Any


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_primitive(value: Any) -> bool:
    return value is None or isinstance(value, (str, int, float, bool))


def is_table(element: Any) -> bool:
    return (
        isinstance(element, Mapping)
        and isinstance(element.get("columns"), list)
        and isinstance(element.get("rows"), list)
    )


def is_series(element: Any) -> bool:
    if not isinstance(element, Mapping):
        return False
    points = element.get("v")
    if not isinstance(points, list):
        return False
    return all(isinstance(point, list) and len(point) >= 2 and _is_number(point[0]) for point in points)


def is_series_list(element: Any) -> bool:
    return isinstance(element, list) and all(is_series(item) for item in element)


def is_array(element: Any) -> bool:
    return isinstance(element, list) and all(_is_primitive(item) for item in element)


def is_scalar(element: Any) -> bool:
    return _is_primitive(element)


_SHAPE_PREDICATES: Sequence[Tuple[Shape, Callable[[Any], bool]]] = (
    (Shape.TABLE, is_table),
    (Shape.SERIES, is_series),
    (Shape.SERIES_LIST, is_series_list),
    (Shape.ARRAY, is_array),
    (Shape.SCALAR, is_scalar),
)


def describe_shape(element: Any) -> str:
    if isinstance(element, Mapping):
        keys = ", ".join(sorted(str(key) for key in element.keys()))
        return f"object with keys [{keys}]"
    if isinstance(element, list):
        kinds = sorted({type(item).__name__ for item in element})
        return f"list of {'/'.join(kinds)}"
    return type(element).__name__


def infer_shape(element: Any) -> Shape:
    for shape, predicate in _SHAPE_PREDICATES:
        if predicate(element):
            return shape
    raise NormalizationError(describe_shape(element))


def classify(payload: Any) -> List[RawResult]:
    if not isinstance(payload, list):
        raise NormalizationError(describe_shape(payload), "engine results must be a JSON array")
    return [RawResult(infer_shape(element), element) for element in payload]


def infer_field_type(values: Sequence[Any]) -> str:
    present = [value for value in values if value is not None]
    if not present:
        return FIELD_NUMBER
    if all(isinstance(value, bool) for value in present):
        return FIELD_BOOLEAN
    if any(isinstance(value, str) for value in present):
        return FIELD_STRING
    if all(_is_number(value) for value in present):
        return FIELD_NUMBER
    return FIELD_OTHER


def series_name(class_name: str, labels: Mapping[str, str]) -> str:
    selector = ",".join(f"{key}={value}" for key, value in labels.items())
    return f"{class_name}{{{selector}}}"


def series_frame(series: Mapping[str, Any], ref_id: str, *, hide_labels: bool = False) -> Frame:
    points = series.get("v") or []
    class_name = str(series.get("c") or "")
    labels = {str(key): str(value) for key, value in (series.get("l") or {}).items()}
    # Timestamps are microseconds; optional lat/lon/elevation sit before the value.
    times = [point[0] / 1000 for point in points]
    values = [point[-1] for point in points]
    meta: Dict[str, Any] = {"shape": Shape.SERIES.value}
    if series.get("a"):
        meta["attributes"] = dict(series["a"])
    return Frame(
        name=class_name if hide_labels else series_name(class_name, labels),
        fields=[
            Field(TIME_FIELD_NAME, FIELD_TIME, times),
            Field(VALUE_FIELD_NAME, infer_field_type(values), values, labels=dict(labels)),
        ],
        ref_id=ref_id,
        labels=labels,
        meta=meta,
    )


def table_frame(table: Mapping[str, Any], ref_id: str) -> Frame:
    rows = table["rows"]
    fields: List[Field] = []
    for index, column in enumerate(table["columns"]):
        if isinstance(column, Mapping):
            column_def = column
        else:
            column_def = {"text": column}
        values = []
        for row in rows:
            if not isinstance(row, list):
                raise NormalizationError(Shape.TABLE.value, f"row {describe_shape(row)} is not a list")
            values.append(row[index] if index < len(row) else None)
        config = {key: column_def[key] for key in ("sort", "desc") if key in column_def}
        fields.append(
            Field(
                name=str(column_def.get("text", f"column_{index}")),
                type=str(column_def.get("type") or infer_field_type(values)),
                values=values,
                config=config,
            )
        )
    return Frame(TABLE_FRAME_NAME, fields, ref_id=ref_id, meta={"shape": Shape.TABLE.value})


def array_frame(values: List[Any], ref_id: str) -> Frame:
    field = Field("array_value", infer_field_type(values), list(values))
    return Frame(ARRAY_FRAME_NAME, [field], ref_id=ref_id, meta={"shape": Shape.ARRAY.value})


def scalar_frame(value: Any, ref_id: str) -> Frame:
    kind = FIELD_OTHER if value is None else infer_field_type([value])
    field = Field(f"scalar_value_{kind}", kind, [value])
    return Frame(SCALAR_FRAME_NAME, [field], ref_id=ref_id, meta={"shape": Shape.SCALAR.value})


def to_frames(result: RawResult, ref_id: str, *, hide_labels: bool = False) -> List[Frame]:
    if result.shape is Shape.TABLE:
        return [table_frame(result.body, ref_id)]
    if result.shape is Shape.SERIES:
        return [series_frame(result.body, ref_id, hide_labels=hide_labels)]
    if result.shape is Shape.SERIES_LIST:
        return [series_frame(item, ref_id, hide_labels=hide_labels) for item in result.body]
    if result.shape is Shape.ARRAY:
        return [array_frame(result.body, ref_id)]
    return [scalar_frame(result.body, ref_id)]


def normalize(payload: Any, ref_id: str, *, hide_labels: bool = False) -> List[Frame]:
    """Convert a raw engine payload into frames, keeping payload order."""
    frames: List[Frame] = []
    for result in classify(payload):
        frames.extend(to_frames(result, ref_id, hide_labels=hide_labels))
    return frames

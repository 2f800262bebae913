"""Core abstractions for the datasource package."""
from __future__ import annotations

import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

import pandas as pd

if TYPE_CHECKING:
    from requests import Session as RequestsSession
else:  # pragma: no cover - used only for typing
    RequestsSession = Any  # type: ignore[assignment]

SessionLike = RequestsSession

DIRECT = "direct"
PROXY = "proxy"
ACCESS_MODES: Sequence[str] = (DIRECT, PROXY)

ALL_SENTINEL = "$__all"
HEALTH_SCRIPT = "1 2 +"

FIELD_TIME = "time"
FIELD_NUMBER = "number"
FIELD_STRING = "string"
FIELD_BOOLEAN = "boolean"
FIELD_OTHER = "other"


class DataSourceError(RuntimeError):
    """Base class for every failure reported for a single target."""


class TransportError(DataSourceError):
    """Raised when the execution request itself fails."""

    def __init__(self, status: Optional[int], detail: str) -> None:
        prefix = f"HTTP {status}" if status is not None else "Request failed"
        super().__init__(f"{prefix}: {detail}" if detail else prefix)
        self.status = status
        self.detail = detail


class RemoteScriptError(DataSourceError):
    """Raised when the engine reports a script evaluation failure."""

    def __init__(self, message: str, *, line: Optional[int] = None, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.line = line
        self.status = status


class NormalizationError(DataSourceError):
    """Raised when a result element has no recognised structure."""

    def __init__(self, shape: str, detail: str = "") -> None:
        message = f"Unsupported result shape: {shape}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)
        self.shape = shape


def as_utc_timestamp(value: datetime | pd.Timestamp | str | int | float) -> pd.Timestamp:
    """Return ``value`` as a timezone-aware UTC timestamp."""
    ts = pd.Timestamp(value)
    if ts.tz is None:
        return ts.tz_localize("UTC")
    return ts.tz_convert("UTC")


def iso_millis(ts: pd.Timestamp) -> str:
    """Format like the host does: ``2024-01-01T00:00:00.000Z``."""
    return ts.strftime("%Y-%m-%dT%H:%M:%S.") + f"{ts.microsecond // 1000:03d}Z"


@dataclass(frozen=True)
class TimeRange:
    """Dashboard time window for one query execution.

    All derived quantities are integers in the engine's native unit
    (microseconds since the epoch).
    """

    start: pd.Timestamp
    end: pd.Timestamp
    max_data_points: int = 1

    def __post_init__(self) -> None:
        start = as_utc_timestamp(self.start)
        end = as_utc_timestamp(self.end)
        if start > end:
            raise ValueError(f"Time range start {start} is after end {end}")
        object.__setattr__(self, "start", start)
        object.__setattr__(self, "end", end)
        object.__setattr__(self, "max_data_points", int(self.max_data_points or 0))

    @property
    def start_us(self) -> int:
        return self.start.value // 1000

    @property
    def end_us(self) -> int:
        return self.end.value // 1000

    @property
    def interval(self) -> int:
        return self.end_us - self.start_us

    @property
    def step_hint(self) -> int:
        return self.interval // max(self.max_data_points, 1)

    @property
    def step_hint_millis(self) -> int:
        return self.step_hint // 1000

    def with_max_data_points(self, max_data_points: int) -> "TimeRange":
        return TimeRange(self.start, self.end, max_data_points)


@dataclass(frozen=True)
class ConstantBinding:
    name: str
    value: str


@dataclass(frozen=True)
class VariableBinding:
    """One templated dashboard variable as resolved by the host."""

    name: str
    current_value: Union[str, Sequence[str], None] = ""
    all_value: Optional[str] = None
    options: Sequence[Any] = ()
    multi: bool = False
    type: str = "custom"

    @property
    def is_all_selected(self) -> bool:
        current = self.current_value
        if isinstance(current, (list, tuple)):
            return any(_as_text(item) == ALL_SENTINEL for item in current)
        return _as_text(current) == ALL_SENTINEL

    @property
    def has_custom_all_value(self) -> bool:
        return bool(self.all_value)

    def option_values(self) -> List[str]:
        """Candidate values without the "all" sentinel."""
        values: List[str] = []
        for option in self.options or ():
            if isinstance(option, Mapping):
                option = option.get("value", option.get("text"))
            text = _as_text(option)
            if text == ALL_SENTINEL:
                continue
            values.append(text)
        return values

    def selected_values(self) -> List[str]:
        current = self.current_value
        if isinstance(current, (list, tuple)):
            return [_as_text(item) for item in current]
        return [_as_text(current)]

    def resolved_values(self) -> List[str]:
        """Concrete values after "all" expansion."""
        if self.is_all_selected:
            if self.has_custom_all_value:
                return [str(self.all_value)]
            return self.option_values()
        return self.selected_values()

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "VariableBinding":
        """Build a binding from a host-style variable description."""
        current = raw.get("current")
        if isinstance(current, Mapping):
            value = current.get("value")
        elif "current_value" in raw:
            value = raw.get("current_value")
        else:
            value = raw.get("value", current)
        options = raw.get("options") or ()
        return cls(
            name=str(raw.get("name", "")),
            current_value=list(value) if isinstance(value, (list, tuple)) else value,
            all_value=raw.get("allValue", raw.get("all_value")),
            options=tuple(options),
            multi=bool(raw.get("multi", isinstance(value, (list, tuple)))),
            type=str(raw.get("type", "custom")),
        )


@dataclass(frozen=True)
class RepeatBinding:
    """Value of a variable inside one repeated panel render."""

    name: str
    value: Union[str, Sequence[str], None]

    def values(self) -> List[str]:
        if isinstance(self.value, (list, tuple)):
            return [_as_text(item) for item in self.value]
        return [_as_text(self.value)]


@dataclass(frozen=True)
class QueryTarget:
    ref_id: str
    expr: str = ""
    hide_labels: bool = False


@dataclass(frozen=True)
class QueryRequest:
    targets: Sequence[QueryTarget]
    time_range: TimeRange
    variables: Sequence[VariableBinding] = ()
    repeat_scope: Mapping[str, RepeatBinding] = field(default_factory=dict)


@dataclass
class Field:
    name: str
    type: str
    values: List[Any] = field(default_factory=list)
    labels: Dict[str, str] = field(default_factory=dict)
    config: Dict[str, Any] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.values)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "type": self.type,
            "values": list(self.values),
            "labels": dict(self.labels),
            "config": dict(self.config),
        }


@dataclass
class Frame:
    """Host-facing record set produced for one result element."""

    name: str
    fields: List[Field] = field(default_factory=list)
    ref_id: str = ""
    labels: Dict[str, str] = field(default_factory=dict)
    meta: Dict[str, Any] = field(default_factory=dict)

    @property
    def length(self) -> int:
        return len(self.fields[0]) if self.fields else 0

    def time_field(self) -> Optional[Field]:
        for item in self.fields:
            if item.type == FIELD_TIME:
                return item
        return None

    def value_fields(self) -> List[Field]:
        return [item for item in self.fields if item.type != FIELD_TIME]

    def to_pandas(self) -> pd.DataFrame:
        """Return the frame as a DataFrame, indexed by UTC time for series."""
        time_field = self.time_field()
        columns = {item.name: list(item.values) for item in self.value_fields()}
        if time_field is None:
            return pd.DataFrame(columns)
        index = pd.to_datetime(pd.Series(time_field.values, dtype="float64"), unit="ms", utc=True)
        frame = pd.DataFrame(columns, index=pd.DatetimeIndex(index, name=time_field.name))
        return frame

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "refId": self.ref_id,
            "labels": dict(self.labels),
            "meta": dict(self.meta),
            "fields": [item.to_dict() for item in self.fields],
        }

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "Frame":
        fields = [
            Field(
                name=str(item.get("name", "")),
                type=str(item.get("type", FIELD_OTHER)),
                values=list(item.get("values") or []),
                labels=dict(item.get("labels") or {}),
                config=dict(item.get("config") or {}),
            )
            for item in raw.get("fields") or []
        ]
        return cls(
            name=str(raw.get("name", "")),
            fields=fields,
            ref_id=str(raw.get("refId", raw.get("ref_id", ""))),
            labels=dict(raw.get("labels") or {}),
            meta=dict(raw.get("meta") or {}),
        )


class ExecutionState(str, enum.Enum):
    IDLE = "idle"
    COMPILING = "compiling"
    DISPATCHED = "dispatched"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


_TRANSITIONS: Dict[ExecutionState, Sequence[ExecutionState]] = {
    ExecutionState.IDLE: (ExecutionState.COMPILING,),
    ExecutionState.COMPILING: (ExecutionState.DISPATCHED, ExecutionState.FAILED),
    ExecutionState.DISPATCHED: (ExecutionState.SUCCEEDED, ExecutionState.FAILED),
    ExecutionState.SUCCEEDED: (),
    ExecutionState.FAILED: (),
}


@dataclass
class TargetResult:
    """Outcome of one target; errors never leak into sibling results."""

    ref_id: str
    frames: List[Frame] = field(default_factory=list)
    error: Optional[str] = None
    status: int = 200
    script: str = ""
    state: ExecutionState = ExecutionState.IDLE
    history: List[ExecutionState] = field(default_factory=lambda: [ExecutionState.IDLE])

    @property
    def ok(self) -> bool:
        return self.state is ExecutionState.SUCCEEDED

    def advance(self, state: ExecutionState) -> None:
        if state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"Invalid transition {self.state.value} -> {state.value} for {self.ref_id}")
        self.state = state
        self.history.append(state)

    def succeed(self, frames: Iterable[Frame]) -> None:
        self.frames = list(frames)
        self.advance(ExecutionState.SUCCEEDED)

    def fail(self, message: str, status: Optional[int] = None) -> None:
        self.error = message
        self.status = status or 500
        self.frames = []
        self.advance(ExecutionState.FAILED)


@dataclass
class QueryResponse:
    results: Dict[str, TargetResult] = field(default_factory=dict)

    def frames(self) -> List[Frame]:
        collected: List[Frame] = []
        for result in self.results.values():
            collected.extend(result.frames)
        return collected

    @property
    def errors(self) -> Dict[str, str]:
        return {ref_id: result.error for ref_id, result in self.results.items() if result.error is not None}


@dataclass
class ChannelResponse:
    """Raw outcome of one dispatch; proxied channels return frames directly."""

    status: int
    payload: Any = None
    frames: Optional[List[Frame]] = None


class Channel(ABC):
    """Base class for the execution channels."""

    name: str

    def __init__(
        self,
        name: str,
        *,
        base_url: str,
        session: Optional[SessionLike] = None,
        timeout: float = 30.0,
    ) -> None:
        self.name = name
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        if session is None:
            import requests

            session = requests.Session()
        self.session = session

    @abstractmethod
    def exec(self, script: str, *, ref_id: str = "", hide_labels: bool = False) -> ChannelResponse:
        """Execute fully compiled script text and return the raw outcome."""

    def check_health(self) -> ChannelResponse:
        """Run the trivial health script through this channel."""
        return self.exec(HEALTH_SCRIPT)


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (list, tuple)):
        return ",".join(_as_text(item) for item in value)
    return str(value)

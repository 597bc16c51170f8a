"""Series identity, accumulated values and key derivation."""
from dataclasses import dataclass, field
from typing import List, Optional

from datadog_nozzle.events import Envelope, EventType, NozzleError

NANOS_PER_SECOND = 1_000_000_000


class UnknownEventTypeError(NozzleError):
    """Raised when a non-metric envelope reaches key or value derivation.

    Callers must filter envelopes before deriving, so this signals a bug.
    """


@dataclass(frozen=True)
class SeriesKey:
    """Identity of a series. ``event_type`` is None for internal metrics."""
    event_type: Optional[EventType]
    name: str
    deployment: str = ""
    job: str = ""
    index: str = ""
    ip: str = ""


@dataclass(frozen=True)
class Point:
    """A single (timestamp, value) sample, encoded on the wire as ``[ts, value]``."""
    timestamp: int
    value: float

    def to_wire(self) -> list:
        return [self.timestamp, self.value]

    @classmethod
    def from_wire(cls, raw) -> "Point":
        if not isinstance(raw, (list, tuple)) or len(raw) != 2:
            raise ValueError(f"expected two parsed values, got {raw!r}")
        timestamp, value = raw
        if isinstance(timestamp, bool) or not isinstance(timestamp, int):
            raise ValueError(f"timestamp must be an integer, got {timestamp!r}")
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"value must be a number, got {value!r}")
        return cls(timestamp, float(value))


@dataclass
class SeriesValue:
    """Tags (set from the first event) plus points in arrival order."""
    tags: List[str] = field(default_factory=list)
    points: List[Point] = field(default_factory=list)


def derive_name(envelope: Envelope) -> str:
    """Series name is ``origin.metricName``."""
    if envelope.event_type == EventType.ValueMetric:
        return f"{envelope.origin}.{envelope.value_metric.name}"
    if envelope.event_type == EventType.CounterEvent:
        return f"{envelope.origin}.{envelope.counter_event.name}"
    raise UnknownEventTypeError(f"Unknown event type: {envelope.event_type!r}")


def derive_value(envelope: Envelope) -> float:
    if envelope.event_type == EventType.ValueMetric:
        return float(envelope.value_metric.value)
    if envelope.event_type == EventType.CounterEvent:
        return float(envelope.counter_event.total)
    raise UnknownEventTypeError(f"Unknown event type: {envelope.event_type!r}")


def derive_key(envelope: Envelope) -> SeriesKey:
    return SeriesKey(
        event_type=envelope.event_type,
        name=derive_name(envelope),
        deployment=envelope.deployment,
        job=envelope.job,
        index=envelope.index,
        ip=envelope.ip,
    )


def derive_tags(envelope: Envelope) -> List[str]:
    """Build ``key:value`` tags in fixed order, skipping empty values."""
    tags: List[str] = []
    for key, value in (
        ("deployment", envelope.deployment),
        ("job", envelope.job),
        ("index", envelope.index),
        ("ip", envelope.ip),
    ):
        if value:
            tags.append(f"{key}:{value}")
    return tags


def truncate_to_seconds(timestamp_ns: int) -> int:
    """Truncate a nanosecond timestamp toward zero."""
    seconds = abs(timestamp_ns) // NANOS_PER_SECOND
    return seconds if timestamp_ns >= 0 else -seconds

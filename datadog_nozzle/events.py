"""Firehose envelope data structures."""
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Dict, Optional


class NozzleError(Exception):
    """Base class for nozzle errors."""


class EnvelopeDecodeError(NozzleError):
    """Raised when an envelope cannot be built from its JSON form."""


class EventType(IntEnum):
    """Envelope event types, numbered as on the firehose."""
    HttpStartStop = 4
    LogMessage = 5
    ValueMetric = 6
    CounterEvent = 7
    Error = 8
    ContainerMetric = 9

    @classmethod
    def parse(cls, raw) -> "EventType":
        """Accept either the numeric value or the name."""
        try:
            if isinstance(raw, str) and not raw.isdigit():
                return cls[raw]
            return cls(int(raw))
        except (KeyError, ValueError) as e:
            raise EnvelopeDecodeError(f"Unknown event type: {raw!r}") from e


@dataclass(frozen=True)
class ValueMetric:
    """Instantaneous scalar measurement."""
    name: str
    value: float
    unit: str = ""


@dataclass(frozen=True)
class CounterEvent:
    """Cumulative counter; ``total`` is what gets reported."""
    name: str
    delta: int = 0
    total: int = 0


@dataclass(frozen=True)
class Envelope:
    """A single event received from the firehose.

    ``timestamp`` is in nanoseconds since the epoch. Only one of
    ``value_metric`` / ``counter_event`` is expected to be set, matching
    ``event_type``.
    """
    event_type: EventType
    origin: str = ""
    deployment: str = ""
    job: str = ""
    index: str = ""
    ip: str = ""
    timestamp: int = 0
    value_metric: Optional[ValueMetric] = None
    counter_event: Optional[CounterEvent] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Envelope":
        """Build an envelope from its JSON (camelCase) representation."""
        if not isinstance(data, dict):
            raise EnvelopeDecodeError(f"Envelope must be an object, got {type(data).__name__}")
        if "eventType" not in data:
            raise EnvelopeDecodeError("Envelope is missing eventType")

        event_type = EventType.parse(data["eventType"])

        value_metric = None
        counter_event = None
        try:
            if vm := data.get("valueMetric"):
                value_metric = ValueMetric(
                    name=str(vm.get("name", "")),
                    value=float(vm.get("value", 0.0)),
                    unit=str(vm.get("unit", "")),
                )
            if ce := data.get("counterEvent"):
                counter_event = CounterEvent(
                    name=str(ce.get("name", "")),
                    delta=int(ce.get("delta", 0)),
                    total=int(ce.get("total", 0)),
                )
            timestamp = int(data.get("timestamp", 0))
        except (AttributeError, TypeError, ValueError) as e:
            raise EnvelopeDecodeError(f"Malformed envelope payload: {e}") from e

        if event_type == EventType.ValueMetric and value_metric is None:
            raise EnvelopeDecodeError("ValueMetric envelope is missing valueMetric")
        if event_type == EventType.CounterEvent and counter_event is None:
            raise EnvelopeDecodeError("CounterEvent envelope is missing counterEvent")

        return cls(
            event_type=event_type,
            origin=str(data.get("origin", "")),
            deployment=str(data.get("deployment", "")),
            job=str(data.get("job", "")),
            index=str(data.get("index", "")),
            ip=str(data.get("ip", "")),
            timestamp=timestamp,
            value_metric=value_metric,
            counter_event=counter_event,
        )

"""JSON wire format for the Datadog series API."""
import json
from dataclasses import dataclass, field
from typing import Any, Dict, List

from datadog_nozzle.series import Point


@dataclass
class Metric:
    """One series in the outbound batch."""
    metric: str
    points: List[Point]
    type: str = "gauge"
    host: str = ""
    tags: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the wire shape, omitting empty host and tags."""
        data: Dict[str, Any] = {
            "metric": self.metric,
            "points": self.points,
            "type": self.type,
        }
        if self.host:
            data["host"] = self.host
        if self.tags:
            data["tags"] = list(self.tags)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Metric":
        return cls(
            metric=data["metric"],
            points=[Point.from_wire(p) for p in data.get("points", [])],
            type=data.get("type", "gauge"),
            host=data.get("host", ""),
            tags=list(data.get("tags", [])),
        )


@dataclass
class Payload:
    """Batch envelope: ``{"series": [...]}``."""
    series: List[Metric] = field(default_factory=list)


class _PayloadEncoder(json.JSONEncoder):
    """Renders points with their compact ``[timestamp, value]`` form."""

    def default(self, o):
        if isinstance(o, Point):
            return o.to_wire()
        if isinstance(o, Metric):
            return o.to_dict()
        return super().default(o)


def encode_payload(payload: Payload) -> bytes:
    return json.dumps({"series": payload.series}, cls=_PayloadEncoder, allow_nan=False).encode("utf-8")


def decode_payload(raw: bytes) -> Payload:
    data = json.loads(raw)
    return Payload(series=[Metric.from_dict(m) for m in data.get("series", [])])

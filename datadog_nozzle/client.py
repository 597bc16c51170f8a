"""In-memory series aggregation and periodic flush to Datadog.

Envelopes are grouped by :class:`SeriesKey` into a store that lives for one
flush window. ``prepare_metrics`` injects the nozzle's own counters, renders
the store into a batch and swaps in a fresh store under the same lock that
``add_metric`` takes, so every envelope lands in exactly one batch.
"""
import logging
import math
import threading
import time
from typing import Dict, List, Optional

from datadog_nozzle.events import Envelope, EventType
from datadog_nozzle.series import (
    Point,
    SeriesKey,
    SeriesValue,
    derive_key,
    derive_tags,
    derive_value,
    truncate_to_seconds,
)
from datadog_nozzle.transport import DatadogTransport
from datadog_nozzle.wire import Metric, Payload, encode_payload

logger = logging.getLogger(__name__)

TOTAL_MESSAGES_RECEIVED = "totalMessagesReceived"
TOTAL_METRICS_SENT = "totalMetricsSent"
SLOW_CONSUMER_ALERT = "slowConsumerAlert"

METRIC_EVENT_TYPES = (EventType.ValueMetric, EventType.CounterEvent)


class DatadogClient:
    """Aggregates envelopes into series and posts them in batches."""

    def __init__(
        self,
        api_url: str,
        api_key: str,
        prefix: str,
        deployment: str,
        ip: str,
        timeout_s: float = 30.0,
        transport: Optional[DatadogTransport] = None,
        self_metrics=None,
    ):
        self.prefix = prefix
        self.deployment = deployment
        self.ip = ip
        self.self_metrics = self_metrics
        self.transport = transport or DatadogTransport(
            api_url, api_key, timeout_s=timeout_s, self_metrics=self_metrics
        )

        self._lock = threading.Lock()
        self._metric_points: Dict[SeriesKey, SeriesValue] = {}
        self._total_messages_received = 0
        self._total_metrics_sent = 0

    @classmethod
    def from_config(cls, config, self_metrics=None) -> "DatadogClient":
        """Build a client from the root :class:`Config`."""
        return cls(
            api_url=config.datadog.api_url,
            api_key=config.datadog.api_key,
            prefix=config.datadog.metric_prefix,
            deployment=config.nozzle.deployment,
            ip=config.nozzle.ip,
            timeout_s=config.datadog.timeout_s,
            self_metrics=self_metrics,
        )

    @property
    def total_messages_received(self) -> int:
        with self._lock:
            return self._total_messages_received

    @property
    def total_metrics_sent(self) -> int:
        with self._lock:
            return self._total_metrics_sent

    def pending_series(self) -> int:
        """Number of distinct series in the open window."""
        with self._lock:
            return len(self._metric_points)

    def add_metric(self, envelope: Envelope):
        """Accumulate one envelope into the current window.

        Every envelope is counted as received; only ValueMetric and
        CounterEvent envelopes contribute a point.
        """
        with self._lock:
            self._total_messages_received += 1
            if self.self_metrics:
                self.self_metrics.record_envelope(envelope.event_type.name)

            if envelope.event_type not in METRIC_EVENT_TYPES:
                return

            key = derive_key(envelope)
            sample = derive_value(envelope)
            if not math.isfinite(sample):
                logger.warning(f"Dropping non-finite value {sample} for {key.name}")
                return

            value = self._metric_points.get(key)
            if value is None:
                value = SeriesValue(tags=derive_tags(envelope))

            value.points.append(Point(
                timestamp=truncate_to_seconds(envelope.timestamp),
                value=sample,
            ))
            self._metric_points[key] = value

            if self.self_metrics:
                self.self_metrics.set_pending_series(len(self._metric_points))

    def alert_slow_consumer_error(self):
        """Flag that the nozzle is not keeping up with the firehose."""
        with self._lock:
            self._add_internal_metric(SLOW_CONSUMER_ALERT, 1)

    def prepare_metrics(self) -> bytes:
        """Close the current window and return it serialized."""
        start = time.time()
        with self._lock:
            self._populate_internal_metrics()
            logger.info(f"Posting {len(self._metric_points)} metrics")

            metrics = self._format_metrics()
            self._total_metrics_sent += len(metrics)
            self._metric_points = {}

        if self.self_metrics:
            self.self_metrics.record_flush(len(metrics), time.time() - start)

        return encode_payload(Payload(series=metrics))

    def post_metrics(self) -> threading.Thread:
        """Prepare a batch and send it in the background.

        Returns the sender thread so a shutting-down process can wait for it;
        send failures are only logged by the transport.
        """
        series_bytes = self.prepare_metrics()
        sender = threading.Thread(
            target=self.transport.send,
            args=(series_bytes,),
            name="datadog-sender",
            daemon=True
        )
        sender.start()
        return sender

    def _populate_internal_metrics(self):
        self._add_internal_metric(TOTAL_MESSAGES_RECEIVED, self._total_messages_received)
        self._add_internal_metric(TOTAL_METRICS_SENT, self._total_metrics_sent)

        if not self._contains_slow_consumer_alert():
            self._add_internal_metric(SLOW_CONSUMER_ALERT, 0)

    def _internal_key(self, name: str) -> SeriesKey:
        return SeriesKey(
            event_type=None,
            name=name,
            deployment=self.deployment,
            ip=self.ip,
        )

    def _contains_slow_consumer_alert(self) -> bool:
        return self._internal_key(SLOW_CONSUMER_ALERT) in self._metric_points

    def _add_internal_metric(self, name: str, value: int):
        # Replaces any earlier point for this name in the window.
        self._metric_points[self._internal_key(name)] = SeriesValue(
            tags=[f"ip:{self.ip}", f"deployment:{self.deployment}"],
            points=[Point(timestamp=int(time.time()), value=float(value))],
        )

    def _format_metrics(self) -> List[Metric]:
        return [
            Metric(
                metric=self.prefix + key.name,
                points=value.points,
                type="gauge",
                tags=value.tags,
            )
            for key, value in self._metric_points.items()
        ]

"""Prometheus self-monitoring for the nozzle process."""
import logging

from prometheus_client import Counter, Gauge, Histogram, CollectorRegistry, start_http_server

from datadog_nozzle.config import PrometheusSelfMetricsConfig

logger = logging.getLogger(__name__)


class SelfMetrics:
    """Health metrics of the nozzle itself, kept on a private registry."""

    def __init__(self, registry=None, prefix=""):
        if registry is None:
            registry = CollectorRegistry()
        self.registry = registry

        self.envelopes_received_total = Counter(
            f"{prefix}envelopes_received_total",
            "Total number of envelopes received",
            ["event_type"],
            registry=registry
        )

        self.series_flushed_total = Counter(
            f"{prefix}series_flushed_total",
            "Total number of series posted to Datadog",
            registry=registry
        )

        self.send_errors_total = Counter(
            f"{prefix}send_errors_total",
            "Total number of failed Datadog posts",
            ["kind"],
            registry=registry
        )

        self.flush_duration_seconds = Histogram(
            f"{prefix}flush_duration_seconds",
            "Time spent preparing a flush batch",
            buckets=[0.0005, 0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 1.0],
            registry=registry
        )

        self.pending_series = Gauge(
            f"{prefix}pending_series",
            "Series in the current flush window",
            registry=registry
        )

    def record_envelope(self, event_type: str):
        """Record a received envelope."""
        self.envelopes_received_total.labels(event_type=event_type).inc()

    def record_flush(self, series_count: int, duration: float):
        """Record a prepared flush batch."""
        self.series_flushed_total.inc(series_count)
        self.flush_duration_seconds.observe(duration)
        self.pending_series.set(0)

    def record_send_error(self, kind: str):
        """Record a failed post."""
        self.send_errors_total.labels(kind=kind).inc()

    def set_pending_series(self, count: int):
        """Set the number of series in the open window."""
        self.pending_series.set(count)


def start_self_metrics_server(config: PrometheusSelfMetricsConfig) -> SelfMetrics:
    """Create self-metrics and serve them over HTTP."""
    self_metrics = SelfMetrics(prefix=config.prefix)
    try:
        start_http_server(
            config.port,
            addr=config.bind_address,
            registry=self_metrics.registry
        )
        logger.info(
            f"Self-metrics listening on {config.bind_address}:{config.port}/metrics"
        )
    except Exception as e:
        logger.error(f"Failed to start self-metrics HTTP server: {e}")
        raise
    return self_metrics

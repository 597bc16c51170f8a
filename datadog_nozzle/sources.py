"""Envelope sources feeding the nozzle."""
from typing import Dict, IO, Iterator, Optional, Tuple
from abc import ABC, abstractmethod
import json
import logging
import sys
import threading
import time

import numpy as np

from datadog_nozzle.config import SourceConfig, SyntheticMetricConfig, SyntheticSourceConfig
from datadog_nozzle.events import CounterEvent, Envelope, EnvelopeDecodeError, EventType, ValueMetric

logger = logging.getLogger(__name__)


class EnvelopeSource(ABC):
    """Base class for envelope sources."""

    def __init__(self):
        self._stopped = threading.Event()

    @abstractmethod
    def __iter__(self) -> Iterator[Envelope]:
        """Yield envelopes until exhausted or stopped."""
        pass

    def stop(self):
        """Ask the source to stop yielding."""
        self._stopped.set()

    @property
    def stopped(self) -> bool:
        return self._stopped.is_set()


class JsonLinesSource(EnvelopeSource):
    """Reads one JSON envelope per line from a file or stdin (``-``)."""

    def __init__(self, path: str = "-", stream: Optional[IO[str]] = None):
        super().__init__()
        self.path = path
        self.stream = stream
        self.skipped = 0

    def __iter__(self) -> Iterator[Envelope]:
        if self.stream is not None:
            yield from self._read(self.stream)
        elif self.path == "-":
            yield from self._read(sys.stdin)
        else:
            with open(self.path, 'r') as f:
                yield from self._read(f)

    def _read(self, stream: IO[str]) -> Iterator[Envelope]:
        for line_no, line in enumerate(stream, start=1):
            if self.stopped:
                return
            line = line.strip()
            if not line:
                continue
            try:
                yield Envelope.from_dict(json.loads(line))
            except (ValueError, EnvelopeDecodeError) as e:
                self.skipped += 1
                logger.warning(f"Skipping malformed envelope on line {line_no}: {e}")


class SyntheticSource(EnvelopeSource):
    """Generates ValueMetric random walks and CounterEvent totals."""

    def __init__(self, config: SyntheticSourceConfig):
        super().__init__()
        self.config = config
        self.rng = np.random.default_rng(config.seed)
        self.tick_count = 0

        # State per (job, index, metric name)
        self.state: Dict[Tuple[str, str, str], float] = {}

    def __iter__(self) -> Iterator[Envelope]:
        while not self.stopped:
            if self.config.max_ticks is not None and self.tick_count >= self.config.max_ticks:
                return

            yield from self.tick(time.time_ns())
            self.tick_count += 1

            if self.config.tick_interval_s > 0:
                self._stopped.wait(self.config.tick_interval_s)

    def tick(self, timestamp_ns: int) -> Iterator[Envelope]:
        """Generate one envelope per job instance and metric."""
        for job in self.config.jobs:
            for instance in range(self.config.instances):
                index = str(instance)
                ip = f"{self.config.ip_base}{instance + 1}"
                for metric in self.config.metrics:
                    yield self._envelope(metric, job, index, ip, timestamp_ns)

    def _envelope(
        self,
        metric: SyntheticMetricConfig,
        job: str,
        index: str,
        ip: str,
        timestamp_ns: int
    ) -> Envelope:
        state_key = (job, index, metric.name)
        common = dict(
            origin=self.config.origin,
            deployment=self.config.deployment,
            job=job,
            index=index,
            ip=ip,
            timestamp=timestamp_ns,
        )

        if metric.type == "counter":
            increment = int(self.rng.poisson(metric.base_rate))
            total = int(self.state.get(state_key, 0)) + increment
            self.state[state_key] = total
            return Envelope(
                event_type=EventType.CounterEvent,
                counter_event=CounterEvent(name=metric.name, delta=increment, total=total),
                **common
            )

        if state_key not in self.state:
            self.state[state_key] = metric.start
        value = self.state[state_key] + float(self.rng.normal(0, metric.step))
        self.state[state_key] = value
        return Envelope(
            event_type=EventType.ValueMetric,
            value_metric=ValueMetric(name=metric.name, value=value, unit=metric.unit),
            **common
        )


def create_source(config: SourceConfig) -> EnvelopeSource:
    """Factory function to create the configured source."""
    if config.type == "jsonl":
        return JsonLinesSource(config.path)
    elif config.type == "synthetic":
        return SyntheticSource(config.synthetic)
    else:
        raise ValueError(f"Unknown source type: {config.type}")

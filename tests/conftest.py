"""Shared fixtures for nozzle tests."""
import threading

import pytest

from datadog_nozzle.client import DatadogClient
from datadog_nozzle.events import CounterEvent, Envelope, EventType, ValueMetric


class RecordingTransport:
    """Stands in for DatadogTransport and keeps every batch it is handed."""

    def __init__(self):
        self.sent = []
        self.sent_event = threading.Event()

    def send(self, series_bytes: bytes):
        self.sent.append(series_bytes)
        self.sent_event.set()


def value_metric(
    name="bar",
    value=3.5,
    origin="foo",
    deployment="prod",
    job="",
    index="",
    ip="10.0.0.1",
    timestamp=5_000_000_000,
):
    return Envelope(
        event_type=EventType.ValueMetric,
        origin=origin,
        deployment=deployment,
        job=job,
        index=index,
        ip=ip,
        timestamp=timestamp,
        value_metric=ValueMetric(name=name, value=value),
    )


def counter_event(
    name="requests",
    total=10,
    origin="foo",
    deployment="prod",
    job="router",
    index="0",
    ip="10.0.0.1",
    timestamp=5_000_000_000,
):
    return Envelope(
        event_type=EventType.CounterEvent,
        origin=origin,
        deployment=deployment,
        job=job,
        index=index,
        ip=ip,
        timestamp=timestamp,
        counter_event=CounterEvent(name=name, delta=1, total=total),
    )


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def client(transport):
    return DatadogClient(
        api_url="http://datadog.example/api/v1/series",
        api_key="secret",
        prefix="datadog.nozzle.",
        deployment="cf",
        ip="10.0.16.4",
        transport=transport,
    )

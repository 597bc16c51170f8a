"""Tests for the nozzle runtime."""
import io
import json
import threading
import time

import pytest

from datadog_nozzle.config import Config
from datadog_nozzle.events import Envelope, EventType
from datadog_nozzle.nozzle import Nozzle, run_nozzle_thread
from datadog_nozzle.sources import EnvelopeSource, JsonLinesSource

from conftest import counter_event, value_metric

ALERT = "datadog.nozzle.slowConsumerAlert"


class ListSource(EnvelopeSource):
    """Yields a fixed list of envelopes."""

    def __init__(self, envelopes):
        super().__init__()
        self.envelopes = envelopes

    def __iter__(self):
        for envelope in self.envelopes:
            if self.stopped:
                return
            yield envelope


def make_config(**nozzle) -> Config:
    return Config(**{
        "datadog": {"api_key": "k", "timeout_s": 5},
        "nozzle": {"deployment": "cf", "ip": "10.0.16.4", "flush_interval_s": 60, **nozzle},
    })


def batch_series(batch: bytes):
    return {s["metric"]: s for s in json.loads(batch)["series"]}


def dropped_messages():
    return counter_event(origin="doppler", name="TruncatingBuffer.DroppedMessages", total=12)


def test_dropped_messages_raise_slow_consumer_alert(client):
    nozzle = Nozzle(make_config(), client, ListSource([]))

    nozzle.handle_envelope(dropped_messages())

    series = batch_series(client.prepare_metrics())
    assert series[ALERT]["points"][0][1] == 1.0
    assert "datadog.nozzle.doppler.TruncatingBuffer.DroppedMessages" in series


@pytest.mark.parametrize("envelope", [
    counter_event(origin="gorouter", name="TruncatingBuffer.DroppedMessages"),
    counter_event(origin="doppler", name="other"),
    value_metric(origin="doppler", name="TruncatingBuffer.DroppedMessages"),
])
def test_other_envelopes_do_not_alert(client, envelope):
    nozzle = Nozzle(make_config(), client, ListSource([]))

    nozzle.handle_envelope(envelope)

    assert batch_series(client.prepare_metrics())[ALERT]["points"][0][1] == 0.0


def test_slow_consumer_detection_can_be_disabled(client):
    nozzle = Nozzle(make_config(slow_consumer_detection=False), client, ListSource([]))

    nozzle.handle_envelope(dropped_messages())

    assert batch_series(client.prepare_metrics())[ALERT]["points"][0][1] == 0.0


def test_run_consumes_source_and_final_flush_sends_everything(client, transport):
    envelopes = [value_metric(value=float(i)) for i in range(10)]
    nozzle = Nozzle(make_config(), client, ListSource(envelopes))

    run_nozzle_thread(nozzle)

    assert not nozzle.running
    assert client.total_messages_received == 10
    assert len(transport.sent) == 1
    points = batch_series(transport.sent[0])["datadog.nozzle.foo.bar"]["points"]
    assert [p[1] for p in points] == [float(i) for i in range(10)]


def test_timer_flushes_periodically(client, transport):
    ingested = threading.Event()
    blocker = threading.Event()

    class WaitingSource(ListSource):
        def __iter__(self):
            yield value_metric()
            ingested.set()
            blocker.wait(5)

    def flushed_series():
        return [name for batch in list(transport.sent) for name in batch_series(batch)]

    nozzle = Nozzle(make_config(flush_interval_s=0.05), client, WaitingSource([]))
    runner = threading.Thread(target=nozzle.run)
    runner.start()
    try:
        assert ingested.wait(5)
        deadline = time.time() + 5
        while "datadog.nozzle.foo.bar" not in flushed_series() and time.time() < deadline:
            time.sleep(0.01)
    finally:
        nozzle.stop(final_flush=False)
        blocker.set()
        runner.join(5)

    assert nozzle.flush_count >= 1
    assert "datadog.nozzle.foo.bar" in flushed_series()


def test_stop_is_idempotent(client, transport):
    nozzle = Nozzle(make_config(), client, ListSource([]))
    nozzle.run()

    nozzle.stop()
    nozzle.stop()

    assert len(transport.sent) == 1


def test_status(client):
    nozzle = Nozzle(make_config(), client, ListSource([]))
    nozzle.handle_envelope(value_metric())
    nozzle.flush().join(5)
    nozzle.handle_envelope(counter_event())

    status = nozzle.status()

    assert status["total_messages_received"] == 2
    assert status["total_metrics_sent"] == 4
    assert status["pending_series"] == 1
    assert status["flush_count"] == 1
    assert status["uptime_seconds"] >= 0


def test_run_skips_envelope_that_fails_to_aggregate(client, transport):
    broken = Envelope(event_type=EventType.ValueMetric, origin="foo")
    nozzle = Nozzle(make_config(), client, ListSource([broken, value_metric(value=2.0)]))

    run_nozzle_thread(nozzle)

    assert client.total_messages_received == 2
    points = batch_series(transport.sent[0])["datadog.nozzle.foo.bar"]["points"]
    assert [p[1] for p in points] == [2.0]


def test_run_keeps_consuming_after_envelope_without_payload(client, transport):
    lines = [
        json.dumps({"eventType": "ValueMetric", "origin": "foo", "timestamp": 5_000_000_000}),
        json.dumps({
            "eventType": "ValueMetric",
            "origin": "foo",
            "deployment": "prod",
            "ip": "10.0.0.1",
            "timestamp": 6_000_000_000,
            "valueMetric": {"name": "bar", "value": 4.0},
        }),
    ]
    source = JsonLinesSource(stream=io.StringIO("\n".join(lines) + "\n"))
    nozzle = Nozzle(make_config(), client, source)

    run_nozzle_thread(nozzle)

    assert source.skipped == 1
    assert client.total_messages_received == 1
    assert batch_series(transport.sent[0])["datadog.nozzle.foo.bar"]["points"] == [[6, 4.0]]


def test_flush_count_under_concurrent_flushes(client):
    nozzle = Nozzle(make_config(), client, ListSource([]))
    senders = []
    lock = threading.Lock()

    def flush_many():
        for _ in range(50):
            sender = nozzle.flush()
            with lock:
                senders.append(sender)

    threads = [threading.Thread(target=flush_many) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    for sender in senders:
        sender.join(5)

    assert nozzle.flush_count == 200

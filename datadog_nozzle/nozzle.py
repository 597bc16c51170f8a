"""Nozzle runtime: consumes envelopes and flushes on a timer."""
import time
import logging
import threading
from typing import Any, Dict, Optional

from datadog_nozzle.client import DatadogClient
from datadog_nozzle.config import Config
from datadog_nozzle.events import Envelope, EventType
from datadog_nozzle.sources import EnvelopeSource

logger = logging.getLogger(__name__)

DROPPED_MESSAGES_ORIGIN = "doppler"
DROPPED_MESSAGES_COUNTER = "TruncatingBuffer.DroppedMessages"


class Nozzle:
    """Feeds a source into the client and posts a batch every flush interval."""

    def __init__(self, config: Config, client: DatadogClient, source: EnvelopeSource):
        self.config = config
        self.client = client
        self.source = source
        self.running = False
        self.flush_count = 0
        self.start_time = time.time()

        self._stop_event = threading.Event()
        self._state_lock = threading.Lock()
        self._flush_thread: Optional[threading.Thread] = None

        logger.info("Nozzle initialized")

    def handle_envelope(self, envelope: Envelope):
        """Process one envelope from the firehose."""
        if self.config.nozzle.slow_consumer_detection and self._is_dropped_messages(envelope):
            logger.warning(
                "Intercepted an upstream message indicating that the nozzle or the "
                "traffic controller is not keeping up. Consider scaling up the nozzle."
            )
            self.client.alert_slow_consumer_error()

        self.client.add_metric(envelope)

    @staticmethod
    def _is_dropped_messages(envelope: Envelope) -> bool:
        return (
            envelope.event_type == EventType.CounterEvent
            and envelope.origin == DROPPED_MESSAGES_ORIGIN
            and envelope.counter_event is not None
            and envelope.counter_event.name == DROPPED_MESSAGES_COUNTER
        )

    def flush(self) -> threading.Thread:
        """Post the current window now."""
        sender = self.client.post_metrics()
        with self._state_lock:
            self.flush_count += 1
        return sender

    def _flush_loop(self):
        interval = self.config.nozzle.flush_interval_s
        while not self._stop_event.wait(interval):
            try:
                self.flush()
            except Exception as e:
                logger.error(f"Error in flush: {e}", exc_info=True)

    def run(self):
        """Consume the source until it is exhausted or the nozzle is stopped."""
        self.running = True
        self.start_time = time.time()

        self._flush_thread = threading.Thread(
            target=self._flush_loop,
            name="nozzle-flush",
            daemon=True
        )
        self._flush_thread.start()

        logger.info(
            f"Starting nozzle, flushing every {self.config.nozzle.flush_interval_s}s "
            f"to {self.config.datadog.api_url}"
        )

        for envelope in self.source:
            if not self.running:
                break
            try:
                self.handle_envelope(envelope)
            except Exception as e:
                logger.error(f"Error handling envelope from '{envelope.origin}': {e}", exc_info=True)

        logger.info("Envelope source finished")

    def stop(self, final_flush: bool = True):
        """Stop consuming and flushing, optionally posting what is pending."""
        with self._state_lock:
            if not self.running:
                return
            self.running = False
        logger.info("Stopping nozzle")
        self.source.stop()
        self._stop_event.set()

        if self._flush_thread and self._flush_thread is not threading.current_thread():
            self._flush_thread.join()

        if final_flush:
            sender = self.flush()
            sender.join(self.config.datadog.timeout_s)

    def status(self) -> Dict[str, Any]:
        """Snapshot of runtime counters."""
        return {
            "running": self.running,
            "uptime_seconds": time.time() - self.start_time,
            "total_messages_received": self.client.total_messages_received,
            "total_metrics_sent": self.client.total_metrics_sent,
            "pending_series": self.client.pending_series(),
            "flush_count": self.flush_count,
        }


def run_nozzle_thread(nozzle: Nozzle):
    """Run nozzle in a separate thread, flushing what is left when it ends."""
    try:
        nozzle.run()
    except Exception as e:
        logger.error(f"Nozzle thread error: {e}", exc_info=True)
    finally:
        nozzle.stop()

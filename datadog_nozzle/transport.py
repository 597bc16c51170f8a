"""HTTP transport posting series batches to Datadog."""
import json
import logging
from typing import Optional

import requests

logger = logging.getLogger(__name__)


class DatadogTransport:
    """Posts serialized batches. Fire-and-forget: failures are only logged."""

    def __init__(self, api_url: str, api_key: str, timeout_s: float = 30.0, self_metrics=None):
        self.api_url = api_url
        self.api_key = api_key
        self.timeout_s = timeout_s
        self.self_metrics = self_metrics

    def series_url(self) -> str:
        return f"{self.api_url}?api_key={self.api_key}"

    def send(self, series_bytes: bytes):
        """POST one batch. Never raises for request or response failures."""
        with requests.Session() as session:
            try:
                request = session.prepare_request(requests.Request(
                    "POST",
                    self.series_url(),
                    data=series_bytes,
                    headers={"Content-Type": "application/json"},
                ))
            except (requests.RequestException, ValueError) as e:
                logger.error(f"new datadog request returned error: {e}")
                self._record_error("request")
                return

            try:
                response = session.send(request, timeout=self.timeout_s, stream=True)
            except requests.RequestException as e:
                logger.error(f"datadog request returned HTTP response error: {e}")
                self._record_error("response")
                return

            with response:
                logger.info(f"datadog request returned HTTP response: {response.status_code} {response.reason}")

                try:
                    body = response.content
                except requests.RequestException as e:
                    logger.error(f"Error while reading datadog HTTP response: {e}")
                    self._record_error("read")
                    return

                if response.status_code >= 300 or response.status_code < 200:
                    self._record_error("status")
                    logger.warning(f"datadog response: {_parse_diagnostics(body)}")

    def _record_error(self, kind: str):
        if self.self_metrics:
            self.self_metrics.record_send_error(kind)


def _parse_diagnostics(body: bytes) -> Optional[dict]:
    """Best-effort decode of an error body; anything unparseable yields None."""
    try:
        data = json.loads(body)
    except ValueError:
        return None
    return data if isinstance(data, dict) else None

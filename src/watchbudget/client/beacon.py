"""Fire-and-forget termination requests that outlive their controller.

The beacon does not use the controller's event loop or HTTP client: each
request runs on its own thread with a synchronous ``httpx.Client``, so it
still goes out while the caller's loop is shutting down. The thread is not
a daemon: interpreter exit waits for it, bounded by the request timeout.
Delivery is at most once and never confirmed to the caller.
"""

from __future__ import annotations

import logging
import threading

import httpx

logger = logging.getLogger(__name__)


class BeaconSender:
    def __init__(
        self,
        timeout: float = 5.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._timeout = timeout
        self._transport = transport

    def send(self, url: str, payload: dict) -> threading.Thread:
        """Dispatch a POST in the background and return immediately."""
        thread = threading.Thread(
            target=self._deliver,
            args=(url, payload),
            name="watchbudget-beacon",
            daemon=False,
        )
        thread.start()
        return thread

    def _deliver(self, url: str, payload: dict) -> None:
        try:
            with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
                resp = client.post(url, json=payload)
            logger.debug("Beacon to %s answered %d", url, resp.status_code)
        except httpx.HTTPError as e:
            logger.warning("Beacon to %s failed: %s", url, e)

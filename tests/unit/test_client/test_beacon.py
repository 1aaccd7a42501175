"""Tests for the teardown beacon."""

from __future__ import annotations

import json
import subprocess
import sys
import textwrap

import httpx

from watchbudget.client.beacon import BeaconSender


class TestBeaconSender:
    def test_posts_payload_on_background_thread(self) -> None:
        received: list[tuple[str, dict]] = []

        def _handler(request: httpx.Request) -> httpx.Response:
            received.append((str(request.url), json.loads(request.content)))
            return httpx.Response(200, json={})

        sender = BeaconSender(transport=httpx.MockTransport(_handler))
        thread = sender.send("http://kiosk/api/sessions/abc/end", {"stopped_reason": "swipe_exit"})
        thread.join(timeout=5)

        assert thread.daemon is False
        assert received == [("http://kiosk/api/sessions/abc/end", {"stopped_reason": "swipe_exit"})]

    def test_transport_failure_is_swallowed(self) -> None:
        def _handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("offline", request=request)

        sender = BeaconSender(transport=httpx.MockTransport(_handler))
        thread = sender.send("http://kiosk/api/sessions/abc/end", {})
        thread.join(timeout=5)
        assert not thread.is_alive()

    def test_delivery_survives_interpreter_exit(self, tmp_path) -> None:
        marker = tmp_path / "delivered.json"
        script = textwrap.dedent(
            f"""
            import pathlib
            import time

            import httpx

            from watchbudget.client.beacon import BeaconSender

            def _handler(request):
                time.sleep(0.3)
                pathlib.Path({str(marker)!r}).write_text(request.content.decode())
                return httpx.Response(200, json={{}})

            BeaconSender(transport=httpx.MockTransport(_handler)).send(
                "http://kiosk/api/sessions/abc/end", {{"stopped_reason": "swipe_exit"}}
            )
            """
        )
        result = subprocess.run([sys.executable, "-c", script], capture_output=True, timeout=30)

        assert result.returncode == 0, result.stderr.decode()
        assert json.loads(marker.read_text()) == {"stopped_reason": "swipe_exit"}

"""Tests for the session API server."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from conftest import (
    CHIP_ID,
    FOREIGN_CHIP_ID,
    MISSING_ID,
    PROFILE_ID,
    VIDEO_ID,
    seed_minutes,
)
from watchbudget.config.settings import Settings
from watchbudget.server.app import LIMIT_REACHED_MESSAGE, create_app


@pytest.fixture
def client(monitor, engine) -> TestClient:
    """A test client over the seeded in-memory database and fake clock."""
    app = create_app(Settings(), monitor=monitor, engine=engine, create_tables=False)
    return TestClient(app)


def _start(client: TestClient, profile_id: str | None = PROFILE_ID) -> dict:
    body = {"video_id": VIDEO_ID}
    if profile_id is not None:
        body["profile_id"] = profile_id
    resp = client.post("/api/sessions/start", json=body)
    assert resp.status_code == 201
    return resp.json()


class TestHealth:
    def test_health(self, client: TestClient) -> None:
        resp = client.get("/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "ok"
        assert data["database"] is True


class TestStartEndpoint:
    def test_start(self, client: TestClient) -> None:
        data = _start(client)
        assert data["session_id"]
        assert data["started_at"].startswith("2025-01-15T12:00:00")
        assert data["remaining_minutes"] == 60
        assert data["daily_limit_minutes"] == 60

    def test_start_anonymous(self, client: TestClient) -> None:
        data = _start(client, profile_id=None)
        assert data["remaining_minutes"] is None

    def test_start_refused_when_exhausted(self, client: TestClient, seeded) -> None:
        seed_minutes(seeded, 60)
        resp = client.post("/api/sessions/start", json={"profile_id": PROFILE_ID, "video_id": VIDEO_ID})
        assert resp.status_code == 403
        data = resp.json()
        assert data["limit_reached"] is True
        assert data["error"] == "Daily watch time limit reached"
        assert data["daily_limit_minutes"] == 60

    def test_start_unknown_video(self, client: TestClient) -> None:
        resp = client.post("/api/sessions/start", json={"profile_id": PROFILE_ID, "video_id": MISSING_ID})
        assert resp.status_code == 404

    def test_start_malformed_id(self, client: TestClient) -> None:
        resp = client.post("/api/sessions/start", json={"profile_id": "not-a-uuid", "video_id": VIDEO_ID})
        assert resp.status_code == 400
        data = resp.json()
        assert data["error"] == "Invalid request"
        assert "message" in data
        assert data["details"]

    def test_public_start_with_matching_chip(self, client: TestClient) -> None:
        resp = client.post(
            "/api/sessions/start/public",
            json={"profile_id": PROFILE_ID, "video_id": VIDEO_ID, "nfc_chip_id": CHIP_ID},
        )
        assert resp.status_code == 201

    def test_public_start_with_foreign_chip(self, client: TestClient) -> None:
        resp = client.post(
            "/api/sessions/start/public",
            json={"profile_id": PROFILE_ID, "video_id": VIDEO_ID, "nfc_chip_id": FOREIGN_CHIP_ID},
        )
        assert resp.status_code == 403
        assert "limit_reached" not in resp.json()

    def test_public_start_requires_chip(self, client: TestClient) -> None:
        resp = client.post("/api/sessions/start/public", json={"profile_id": PROFILE_ID, "video_id": VIDEO_ID})
        assert resp.status_code == 400


class TestHeartbeatEndpoint:
    def test_heartbeat(self, client: TestClient, clock) -> None:
        session_id = _start(client)["session_id"]
        clock.advance(minutes=10)
        resp = client.post(f"/api/sessions/{session_id}/heartbeat", json={"current_position_seconds": 600})
        assert resp.status_code == 200
        data = resp.json()
        assert data["elapsed_seconds"] == 600
        assert data["remaining_minutes"] == 50
        assert data["limit_reached"] is False

    def test_heartbeat_without_body(self, client: TestClient) -> None:
        session_id = _start(client)["session_id"]
        resp = client.post(f"/api/sessions/{session_id}/heartbeat")
        assert resp.status_code == 200

    def test_heartbeat_by_body(self, client: TestClient, clock) -> None:
        session_id = _start(client)["session_id"]
        clock.advance(minutes=1)
        resp = client.post("/api/sessions/heartbeat", json={"session_id": session_id})
        assert resp.status_code == 200
        assert resp.json()["remaining_minutes"] == 59

    def test_heartbeat_limit_reached(self, client: TestClient, seeded, clock) -> None:
        seed_minutes(seeded, 45)
        session_id = _start(client)["session_id"]
        clock.advance(minutes=16)
        resp = client.post(f"/api/sessions/{session_id}/heartbeat", json={})
        assert resp.status_code == 403
        data = resp.json()
        assert data["limit_reached"] is True
        assert data["remaining_minutes"] == 0
        assert data["message"] == LIMIT_REACHED_MESSAGE

    def test_heartbeat_invalid_position(self, client: TestClient) -> None:
        session_id = _start(client)["session_id"]
        resp = client.post(f"/api/sessions/{session_id}/heartbeat", json={"current_position_seconds": 611})
        assert resp.status_code == 400
        assert resp.json()["error"] == "Invalid playback position"

    def test_heartbeat_negative_position(self, client: TestClient) -> None:
        session_id = _start(client)["session_id"]
        resp = client.post(f"/api/sessions/{session_id}/heartbeat", json={"current_position_seconds": -5})
        assert resp.status_code == 400

    def test_heartbeat_unknown_session(self, client: TestClient) -> None:
        resp = client.post(f"/api/sessions/{MISSING_ID}/heartbeat", json={})
        assert resp.status_code == 404
        assert resp.json()["error"] == "Session not found"

    def test_heartbeat_after_end(self, client: TestClient) -> None:
        session_id = _start(client)["session_id"]
        client.post(f"/api/sessions/{session_id}/end", json={})
        resp = client.post(f"/api/sessions/{session_id}/heartbeat", json={})
        assert resp.status_code == 404
        assert resp.json()["error"] == "Session already ended"


class TestEndEndpoint:
    def test_end(self, client: TestClient, clock) -> None:
        session_id = _start(client)["session_id"]
        clock.advance(seconds=90)
        resp = client.post(
            f"/api/sessions/{session_id}/end",
            json={"stopped_reason": "completed", "final_position_seconds": 90},
        )
        assert resp.status_code == 200
        assert resp.json() == {
            "session_id": session_id,
            "duration_seconds": 90,
            "stopped_reason": "completed",
        }

    def test_end_is_idempotent(self, client: TestClient, clock) -> None:
        session_id = _start(client)["session_id"]
        clock.advance(seconds=90)
        first = client.post(f"/api/sessions/{session_id}/end", json={"stopped_reason": "daily_limit"})
        clock.advance(seconds=90)
        second = client.post(f"/api/sessions/{session_id}/end", json={"stopped_reason": "swipe_exit"})
        assert second.status_code == 200
        assert second.json() == first.json()

    def test_end_by_body(self, client: TestClient) -> None:
        session_id = _start(client)["session_id"]
        resp = client.post("/api/sessions/end", json={"session_id": session_id, "stopped_reason": "swipe_exit"})
        assert resp.status_code == 200
        assert resp.json()["stopped_reason"] == "swipe_exit"

    def test_end_without_body_defaults_to_manual(self, client: TestClient) -> None:
        session_id = _start(client)["session_id"]
        resp = client.post(f"/api/sessions/{session_id}/end")
        assert resp.status_code == 200
        assert resp.json()["stopped_reason"] == "manual"

    def test_end_unknown_reason(self, client: TestClient) -> None:
        session_id = _start(client)["session_id"]
        resp = client.post(f"/api/sessions/{session_id}/end", json={"stopped_reason": "bored"})
        assert resp.status_code == 400

    def test_end_unknown_session(self, client: TestClient) -> None:
        resp = client.post(f"/api/sessions/{MISSING_ID}/end", json={})
        assert resp.status_code == 404


class TestStatsEndpoint:
    def test_watch_stats(self, client: TestClient, clock) -> None:
        session_id = _start(client)["session_id"]
        clock.advance(minutes=5)
        client.post(f"/api/sessions/{session_id}/end", json={"stopped_reason": "completed"})

        resp = client.get(f"/api/profiles/{PROFILE_ID}/watch-stats")
        assert resp.status_code == 200
        data = resp.json()
        assert data["watched_today"] == 5
        assert data["remaining_minutes"] == 55
        assert data["weekly"] == [{"date": "2025-01-15", "total_minutes": 5}]
        assert data["top_videos"][0]["watch_count"] == 1

    def test_watch_stats_unknown_profile(self, client: TestClient) -> None:
        resp = client.get(f"/api/profiles/{MISSING_ID}/watch-stats")
        assert resp.status_code == 404

"""
tests/test_api_routes.py — FastAPI Route Integration Tests
============================================================

Drives the HTTP surface with the FastAPI TestClient.  The service bundle is
swapped for one wired to the in-memory SQLite engine, so no PostgreSQL or
lifespan startup is needed.

These tests verify:
- Health endpoint availability
- The attempt lifecycle over HTTP (challenge → attempt → events → complete)
- Error kinds mapped to HTTP status codes
- XP, badge, streak and certificate endpoints
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from devcoach.api.deps import get_services


@pytest.fixture
def client(services):
    """TestClient bound to the SQLite-backed service bundle."""
    from devcoach.api.main import app

    app.dependency_overrides[get_services] = lambda: services
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()


CHALLENGE = {
    "challenge_id": "two-sum",
    "title": "Two Sum",
    "category": "algorithms",
    "difficulty": "EASY",
    "base_xp": 100,
    "test_cases": [{"test_id": "t1", "weight": 0.5}, {"test_id": "t2", "weight": 0.5}],
    "checklist": [{"item_id": "docs", "label": "Document it"}],
}


def _start(client) -> int:
    assert client.post("/api/challenges", json=CHALLENGE).status_code == 201
    resp = client.post("/api/attempts", json={"user_id": 1, "challenge_id": "two-sum"})
    assert resp.status_code == 201
    return resp.json()["attempt_id"]


def _event(client, attempt_id: int, payload: dict):
    return client.post(f"/api/attempts/{attempt_id}/events", json=payload)


# ===========================================================================
# Health endpoint
# ===========================================================================
class TestHealthEndpoint:
    def test_health_returns_ok(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}


# ===========================================================================
# Attempt lifecycle
# ===========================================================================
class TestAttemptLifecycle:
    def test_full_run(self, client):
        attempt_id = _start(client)
        for payload in (
            {"kind": "code", "type": "TYPED", "session_time": 60, "lines_added": 25},
            {"kind": "test_result", "test_id": "t1", "passed": True, "session_time": 90},
            {"kind": "test_result", "test_id": "t2", "passed": True, "session_time": 90},
            {"kind": "checklist", "item_id": "docs", "checked": True, "session_time": 100},
        ):
            assert _event(client, attempt_id, payload).status_code == 204

        snap = client.post(f"/api/attempts/{attempt_id}/snapshots", json={"elapsed": 120})
        assert snap.status_code == 201
        assert snap.json()["pass_rate"] == 100.0

        resp = client.post(f"/api/attempts/{attempt_id}/complete", json={"elapsed": 300})
        assert resp.status_code == 200
        body = resp.json()
        assert body["passed"] is True
        assert body["xp_earned"] > 0
        assert "manual-mastery" in body["unlocked_badges"]
        assert body["risk"]["level"] == "LOW"

        attempt = client.get(f"/api/attempts/{attempt_id}").json()
        assert attempt["status"] == "COMPLETED"

        metrics = client.get("/api/users/1/metrics").json()
        assert metrics["total_attempts"] == 1

    def test_bad_weights_rejected(self, client):
        bad = {**CHALLENGE, "test_cases": [{"test_id": "t1", "weight": 0.4}]}
        resp = client.post("/api/challenges", json=bad)
        assert resp.status_code == 422
        assert resp.json()["detail"]["kind"] == "validation"

    def test_unknown_attempt_is_404(self, client):
        assert client.get("/api/attempts/9999").status_code == 404

    def test_unknown_event_kind_is_422(self, client):
        attempt_id = _start(client)
        assert _event(client, attempt_id, {"kind": "telepathy"}).status_code == 422

    def test_complete_twice_is_409(self, client):
        attempt_id = _start(client)
        assert client.post(f"/api/attempts/{attempt_id}/complete").status_code == 200
        assert client.post(f"/api/attempts/{attempt_id}/complete").status_code == 409

    def test_trend(self, client):
        attempt_id = _start(client)
        client.post(f"/api/attempts/{attempt_id}/snapshots", json={"elapsed": 10})
        resp = client.get(f"/api/attempts/{attempt_id}/trend/DI")
        assert resp.status_code == 200
        assert resp.json()["direction"] == "stable"


# ===========================================================================
# XP, badges & streaks
# ===========================================================================
class TestProgressEndpoints:
    def test_manual_award_and_balance(self, client):
        assert client.post("/api/users/7/xp", json={"amount": 150}).status_code == 200
        balance = client.get("/api/users/7/xp").json()
        assert balance["balance"] == 150
        assert balance["level"] == 2
        history = client.get("/api/users/7/xp/history").json()
        assert history[0]["amount"] == 150

    def test_overdraft_is_409(self, client):
        resp = client.post("/api/users/7/xp", json={"amount": -10, "source": "PENALTY"})
        assert resp.status_code == 409
        assert resp.json()["detail"]["kind"] == "insufficient_balance"

    def test_badge_unlock_and_listing(self, client):
        assert client.post("/api/users/7/badges/week-warrior").status_code == 200
        assert client.post("/api/users/7/badges/week-warrior").status_code == 409
        assert client.post("/api/users/7/badges/nonexistent").status_code == 404
        listing = {b["key"]: b for b in client.get("/api/users/7/badges").json()}
        assert listing["week-warrior"]["unlocked"] is True

    def test_streak_status(self, client):
        body = client.get("/api/users/7/streak").json()
        assert body["current_streak"] == 0
        assert body["status"] == "BROKEN"

    def test_sweep(self, client):
        resp = client.post("/api/streaks/sweep", json={"today": "2026-03-04"})
        assert resp.status_code == 200
        assert resp.json() == {"reset": [], "reminded": []}


# ===========================================================================
# Certificates
# ===========================================================================
class TestCertificateEndpoints:
    def test_issue_and_verify(self, client):
        resp = client.post("/api/users/3/certificates", json={
            "level": "FOUNDATION", "theory": 85, "practical": 90, "portfolio": 80,
        })
        assert resp.status_code == 201
        issued = resp.json()
        assert issued["grade"] == "A"

        verified = client.get(f"/api/certificates/verify/{issued['code']}").json()
        assert verified["status"] == "valid"
        assert verified["certificate"]["grade"] == "A"

        current = client.get("/api/users/3/certificates/foundation").json()
        assert current["code"] == issued["code"]

    def test_failing_score_is_422(self, client):
        resp = client.post("/api/users/3/certificates", json={
            "level": "FOUNDATION", "theory": 40, "practical": 50, "portfolio": 30,
        })
        assert resp.status_code == 422

    def test_unknown_code_is_invalid_not_404(self, client):
        resp = client.get("/api/certificates/verify/DEVC-AAAA-BBBB")
        assert resp.status_code == 200
        assert resp.json() == {"code": "DEVC-AAAA-BBBB", "status": "invalid", "certificate": None}

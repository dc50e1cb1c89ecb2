"""
tests/test_api_routes.py — FastAPI Route Integration Tests
============================================================
Integration tests for the seeding admin API using the FastAPI TestClient.

These tests verify:
- Auth guards on every seeding endpoint
- 503 when no orchestrator is attached
- Read endpoints against an in-memory SQLite database
- Mapping of seeding errors onto HTTP status codes

The orchestrator is a mock: TestClient serves the app from its own event
loop, so the real queue consumer is exercised in test_orchestrator.py.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from conftest import make_admin_token
from seedcall.api.main import app
from seedcall.api.routes import seeding as seeding_routes
from seedcall.config import SeedingSettings
from seedcall.engine.rewards import RewardSpec, TierRewards
from seedcall.services import participant_service, session_service
from seedcall.services.errors import (
    ActiveSessionExistsError,
    NodeNotConnectedError,
    SessionNotFoundError,
    SessionStillActiveError,
    TeardownResult,
)
from seedcall.services.orchestrator import NodeStatus
from seedcall.services.reward_service import ClosePreview, ReversalResult
from seedcall.services.session_service import SessionRequest


@pytest.fixture
def orchestrator():
    mock = MagicMock()
    mock.settings = SeedingSettings()
    mock.create_session = AsyncMock()
    mock.close_session = AsyncMock()
    mock.cancel_session = AsyncMock()
    mock.reverse_session_rewards = AsyncMock()
    mock.reverse_participant_rewards = AsyncMock()
    mock.get_close_preview = AsyncMock()
    return mock


@pytest.fixture
def client(db_engine, orchestrator):
    """TestClient wired to the SQLite engine and a mock orchestrator."""
    app.dependency_overrides[seeding_routes.get_engine] = lambda: db_engine
    app.state.orchestrator = orchestrator
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()
    app.state.orchestrator = None


@pytest.fixture
def auth():
    return {"Authorization": f"Bearer {make_admin_token()}"}


def _create_row(engine, **overrides):
    fields = {
        "target_node_id": "server2",
        "player_threshold": 50,
        "rewards": TierRewards(switch=RewardSpec(1, "days")),
    }
    fields.update(overrides)
    return session_service.create_session(
        engine, SessionRequest(**fields), source_node_ids=["server1"], target_node_name="Server 2",
    )


# ===========================================================================
# Health endpoint
# ===========================================================================
class TestHealthEndpoint:
    def test_health_returns_ok(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}


# ===========================================================================
# Auth guards
# ===========================================================================
class TestAuthGuards:
    GET_ENDPOINTS = [
        "/api/seeding/nodes",
        "/api/seeding/sessions",
        "/api/seeding/sessions/active",
        "/api/seeding/sessions/1",
        "/api/seeding/sessions/1/participants",
        "/api/seeding/sessions/1/close-preview",
    ]

    POST_ENDPOINTS = [
        "/api/seeding/sessions",
        "/api/seeding/sessions/1/close",
        "/api/seeding/sessions/1/cancel",
        "/api/seeding/sessions/1/reverse-rewards",
        "/api/seeding/sessions/1/participants/1/revoke-rewards",
    ]

    @pytest.mark.parametrize("endpoint", GET_ENDPOINTS)
    def test_get_without_token_returns_401(self, client, endpoint):
        assert client.get(endpoint).status_code == 401

    @pytest.mark.parametrize("endpoint", POST_ENDPOINTS)
    def test_post_without_token_returns_401(self, client, endpoint):
        assert client.post(endpoint, json={}).status_code == 401

    def test_invalid_token_returns_401(self, client):
        resp = client.get(
            "/api/seeding/sessions", headers={"Authorization": "Bearer not-a-jwt"}
        )
        assert resp.status_code == 401

    def test_non_admin_returns_403(self, client):
        token = make_admin_token(sub="67890", username="RegularUser", is_admin=False)
        resp = client.get("/api/seeding/sessions", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 403


class TestOrchestratorMissing:
    def test_returns_503(self, client, auth):
        app.state.orchestrator = None
        resp = client.get("/api/seeding/nodes", headers=auth)
        assert resp.status_code == 503
        assert resp.json()["detail"] == "Seeding service not initialized"

    def test_read_endpoints_still_work(self, client, auth):
        app.state.orchestrator = None
        assert client.get("/api/seeding/sessions", headers=auth).status_code == 200


# ===========================================================================
# Read endpoints
# ===========================================================================
class TestReadEndpoints:
    def test_nodes(self, client, auth, orchestrator):
        orchestrator.list_available_nodes.return_value = [
            NodeStatus("server1", "Server 1", True, 100, True, 100),
        ]
        resp = client.get("/api/seeding/nodes", headers=auth)
        assert resp.status_code == 200
        assert resp.json() == [{
            "id": "server1", "name": "Server 1", "connected": True,
            "player_count": 100, "qualifying": True, "max_players": 100,
        }]

    def test_active_session_idle(self, client, auth):
        resp = client.get("/api/seeding/sessions/active", headers=auth)
        assert resp.json() == {"session": None}

    def test_active_session_with_stats(self, client, auth, db_engine):
        row = _create_row(db_engine)
        participant_service.enroll_seeder(db_engine, row.id, "765")
        body = client.get("/api/seeding/sessions/active", headers=auth).json()
        assert body["session"]["id"] == row.id
        assert body["session"]["rewards"]["switch"]["label"] == "1d"
        assert body["stats"]["seeders"] == 1

    def test_list_sessions(self, client, auth, db_engine):
        row = _create_row(db_engine)
        body = client.get("/api/seeding/sessions?status=active", headers=auth).json()
        assert body["total"] == 1
        assert body["sessions"][0]["id"] == row.id

    def test_session_not_found(self, client, auth):
        assert client.get("/api/seeding/sessions/404", headers=auth).status_code == 404
        resp = client.get("/api/seeding/sessions/404/participants", headers=auth)
        assert resp.status_code == 404

    def test_participants(self, client, auth, db_engine):
        row = _create_row(db_engine)
        participant_service.enroll_seeder(db_engine, row.id, "a")
        participant_service.enroll_switcher(db_engine, row.id, "b", "server1")

        body = client.get(f"/api/seeding/sessions/{row.id}/participants", headers=auth).json()
        assert body["total"] == 1
        assert body["participants"][0]["player_id"] == "a"

        body = client.get(
            f"/api/seeding/sessions/{row.id}/participants?include_on_source=true",
            headers=auth,
        ).json()
        assert body["total"] == 2

    def test_close_preview(self, client, auth, orchestrator):
        orchestrator.get_close_preview.return_value = ClosePreview(
            session_id=1, participants_to_reward=3, completion_reward_minutes=720,
            total_minutes=2160, completion_reward_label="12hr", total_label="1.5d",
        )
        body = client.get("/api/seeding/sessions/1/close-preview", headers=auth).json()
        assert body["participants_to_reward"] == 3
        assert body["total"] == "1.5d"

    def test_close_preview_not_found(self, client, auth, orchestrator):
        orchestrator.get_close_preview.side_effect = SessionNotFoundError(1)
        resp = client.get("/api/seeding/sessions/1/close-preview", headers=auth)
        assert resp.status_code == 404


# ===========================================================================
# Create
# ===========================================================================
class TestCreateSession:
    PAYLOAD = {
        "target_node_id": "server2",
        "player_threshold": 50,
        "switch_reward": {"value": 1, "unit": "days"},
        "completion_reward": {"value": 12, "unit": "hours"},
    }

    def test_created(self, client, auth, orchestrator, db_engine):
        orchestrator.create_session.return_value = _create_row(db_engine)
        resp = client.post("/api/seeding/sessions", json=self.PAYLOAD, headers=auth)
        assert resp.status_code == 201
        assert resp.json()["session"]["target_node_id"] == "server2"

        request, started_by, started_by_name = orchestrator.create_session.await_args.args
        assert request.rewards.completion == RewardSpec(12, "hours")
        assert (started_by, started_by_name) == ("99999", "FixtureAdmin")

    def test_threshold_out_of_range(self, client, auth, orchestrator):
        resp = client.post(
            "/api/seeding/sessions",
            json={**self.PAYLOAD, "player_threshold": 5},
            headers=auth,
        )
        assert resp.status_code == 400
        assert "between 10 and 99" in resp.json()["detail"]
        orchestrator.create_session.assert_not_awaited()

    def test_playtime_without_threshold(self, client, auth):
        payload = {**self.PAYLOAD, "playtime_reward": {"value": 2, "unit": "hours"}}
        resp = client.post("/api/seeding/sessions", json=payload, headers=auth)
        assert resp.status_code == 400

    def test_unknown_unit_rejected(self, client, auth):
        payload = {**self.PAYLOAD, "switch_reward": {"value": 1, "unit": "weeks"}}
        resp = client.post("/api/seeding/sessions", json=payload, headers=auth)
        assert resp.status_code == 422

    def test_conflict_when_active(self, client, auth, orchestrator):
        orchestrator.create_session.side_effect = ActiveSessionExistsError(7)
        resp = client.post("/api/seeding/sessions", json=self.PAYLOAD, headers=auth)
        assert resp.status_code == 409

    def test_target_not_connected(self, client, auth, orchestrator):
        orchestrator.create_session.side_effect = NodeNotConnectedError("server2")
        resp = client.post("/api/seeding/sessions", json=self.PAYLOAD, headers=auth)
        assert resp.status_code == 400
        assert "not connected" in resp.json()["detail"]


# ===========================================================================
# Teardown & reversal
# ===========================================================================
class TestWriteEndpoints:
    def test_close(self, client, auth, orchestrator):
        orchestrator.close_session.return_value = TeardownResult(True, "Session 1 closed", 1, 4)
        body = client.post("/api/seeding/sessions/1/close", headers=auth).json()
        assert body == {"performed": True, "message": "Session 1 closed", "rewards_granted": 4}
        orchestrator.close_session.assert_awaited_once_with(1, "manual")

    def test_cancel_passes_reason(self, client, auth, orchestrator):
        orchestrator.cancel_session.return_value = TeardownResult(False, "already cancelled", 1)
        resp = client.post(
            "/api/seeding/sessions/1/cancel", json={"reason": "wrong map"}, headers=auth,
        )
        assert resp.status_code == 200
        assert resp.json()["performed"] is False
        orchestrator.cancel_session.assert_awaited_once_with(1, "99999", "wrong map")

    def test_reverse_while_active(self, client, auth, orchestrator):
        orchestrator.reverse_session_rewards.side_effect = SessionStillActiveError(1)
        resp = client.post("/api/seeding/sessions/1/reverse-rewards", json={}, headers=auth)
        assert resp.status_code == 400

    def test_reverse(self, client, auth, orchestrator):
        orchestrator.reverse_session_rewards.return_value = ReversalResult(
            session_id=1, revoked_count=5, participants_affected=3, message="done",
        )
        body = client.post(
            "/api/seeding/sessions/1/reverse-rewards", json={"reason": "abuse"}, headers=auth,
        ).json()
        assert body["revoked_count"] == 5
        orchestrator.reverse_session_rewards.assert_awaited_once_with(1, "99999", "abuse")

    def test_revoke_participant_not_found(self, client, auth, orchestrator):
        orchestrator.reverse_participant_rewards.side_effect = SessionNotFoundError(1)
        resp = client.post(
            "/api/seeding/sessions/1/participants/2/revoke-rewards", json={}, headers=auth,
        )
        assert resp.status_code == 404

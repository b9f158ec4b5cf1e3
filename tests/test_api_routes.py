"""
tests/test_api_routes.py — FastAPI Route Integration Tests
============================================================

Routes are exercised with the FastAPI TestClient against an in-memory
SQLite runtime installed on ``app.state`` (the lifespan is not entered,
so no PostgreSQL engine is created).
"""

from __future__ import annotations

from unittest.mock import patch

import pytest
from conftest import drain, make_admin_token
from fastapi.testclient import TestClient
from sqlalchemy import select
from sqlalchemy.orm import Session

from ceremony.database.models import DailyPlayStat, TriggerEvent

BASE = "/api/nfc-trigger"


@pytest.fixture
def world(seed):
    ids = {
        "v1": seed.video("Welcome", is_default=True, file_size=1_000),
        "v2": seed.video("Core welcome", file_size=2_500),
        "retired": seed.video("Retired", is_active=False, file_size=9_999),
    }
    ids["core_rule"] = seed.rule(
        ids["v2"], "member_type", {"member_types": ["Core"]}, priority=10, name="Core members",
    )
    ids["alice"] = seed.member("Alice", "CARD-CORE", member_type="Core", industry="Finance")
    return ids


@pytest.fixture
def runtime(db_engine, world, test_config):
    from ceremony.api.deps import build_runtime
    from ceremony.api.main import app

    rt = build_runtime(db_engine, test_config)
    rt.cache.initialize()
    app.state.runtime = rt
    yield rt
    app.state.runtime = None
    rt.telemetry.shutdown()


@pytest.fixture
def client(runtime):
    from ceremony.api.main import app
    return TestClient(app, raise_server_exceptions=False)


def _auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def _scan(client, runtime, card: str) -> dict:
    """POST /trigger and wait for its background write to land."""
    resp = client.post(f"{BASE}/trigger", json={"nfc_card_id": card})
    drain(runtime.telemetry)
    return resp.json()


def _trigger_ids(engine) -> list[int]:
    with Session(engine) as session:
        return list(session.scalars(select(TriggerEvent.id).order_by(TriggerEvent.id)))


# ===========================================================================
# Liveness
# ===========================================================================
class TestLiveness:
    def test_process_health(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}

    def test_routes_unavailable_before_startup(self):
        from ceremony.api.main import app

        app.state.runtime = None
        resp = TestClient(app, raise_server_exceptions=False).post(
            f"{BASE}/trigger", json={"nfc_card_id": "X1"},
        )
        assert resp.status_code == 503


# ===========================================================================
# POST /trigger
# ===========================================================================
class TestTrigger:
    def test_unknown_card_plays_default(self, client, world):
        resp = client.post(f"{BASE}/trigger", json={"nfc_card_id": "X1", "device_info": {"reader": "A"}})
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        data = body["data"]
        assert data["video"]["id"] == world["v1"]
        assert data["member"] is None
        assert data["rule_applied"] == "default"
        assert data["cache_hit"] is False
        assert isinstance(data["response_time_ms"], int)

    def test_member_rule(self, client, world):
        data = client.post(f"{BASE}/trigger", json={"nfc_card_id": "CARD-CORE"}).json()["data"]
        assert data["video"]["id"] == world["v2"]
        assert data["member"] == {
            "id": world["alice"], "name": "Alice", "industry": "Finance", "member_type": "Core",
        }
        assert data["rule_applied"] == "Core members"

    @pytest.mark.parametrize("payload", [{}, {"nfc_card_id": ""}, {"nfc_card_id": "   "}])
    def test_blank_card_is_400(self, client, payload):
        resp = client.post(f"{BASE}/trigger", json=payload)
        assert resp.status_code == 400
        assert resp.json()["success"] is False
        assert resp.json()["error"] == "invalid_request"

    def test_nothing_to_play_is_404(self, db_engine, test_config):
        from ceremony.api.deps import build_runtime
        from ceremony.api.main import app

        rt = build_runtime(db_engine, test_config)
        rt.cache.initialize()
        app.state.runtime = rt
        try:
            resp = TestClient(app, raise_server_exceptions=False).post(
                f"{BASE}/trigger", json={"nfc_card_id": "X1"},
            )
        finally:
            app.state.runtime = None
            rt.telemetry.shutdown()
        assert resp.status_code == 404
        assert resp.json()["error"] == "no_video_resolvable"


# ===========================================================================
# POST /preload
# ===========================================================================
class TestPreload:
    def test_returns_active_videos_and_total_size(self, client, world):
        resp = client.post(
            f"{BASE}/preload", json={"video_ids": [world["v1"], world["v2"], world["retired"], 4242]},
        )
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert [v["id"] for v in data["preload_videos"]] == [world["v1"], world["v2"]]
        assert data["total_size"] == 3_500

    def test_empty_list_is_400(self, client):
        resp = client.post(f"{BASE}/preload", json={"video_ids": []})
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_request"


# ===========================================================================
# POST /complete
# ===========================================================================
class TestComplete:
    def test_completion_updates_statistics(self, client, runtime, db_engine, world):
        _scan(client, runtime, "CARD-CORE")
        (trigger_id,) = _trigger_ids(db_engine)

        resp = client.post(
            f"{BASE}/complete",
            json={"trigger_id": trigger_id, "actual_duration": 120_000, "completed": True},
        )
        assert resp.status_code == 200
        assert resp.json()["success"] is True

        with Session(db_engine) as session:
            stat = session.scalars(select(DailyPlayStat)).one()
            trigger = session.get(TriggerEvent, trigger_id)
        assert stat.video_id == world["v2"]
        assert stat.play_count == 1
        assert stat.completion_rate == pytest.approx(100.0)
        assert stat.total_duration == 120_000
        assert trigger.is_completed is True

    def test_unknown_trigger_is_404(self, client):
        resp = client.post(
            f"{BASE}/complete", json={"trigger_id": 999, "actual_duration": 10, "completed": True},
        )
        assert resp.status_code == 404
        assert resp.json()["error"] == "trigger_not_found"

    def test_negative_duration_rejected(self, client):
        resp = client.post(
            f"{BASE}/complete", json={"trigger_id": 1, "actual_duration": -5, "completed": True},
        )
        assert resp.status_code == 422


# ===========================================================================
# GET /performance
# ===========================================================================
class TestPerformance:
    def test_report_includes_recent_triggers(self, client, runtime):
        _scan(client, runtime, "X1")
        _scan(client, runtime, "CARD-CORE")

        resp = client.get(f"{BASE}/performance")
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["performance_summary"]["total_triggers"] == 2
        assert data["performance_summary"]["performance_score"] == 100
        assert data["performance_summary"]["target_met"] is True
        assert len(data["daily_statistics"]) == 1
        assert data["daily_statistics"][0]["trigger_count"] == 2
        assert data["live"]["total_triggers"] == 2
        assert data["cache_status"] == {
            "video_cache_size": 1, "member_cache_size": 1, "rule_cache_size": 1,
        }

    def test_explicit_empty_range(self, client):
        resp = client.get(f"{BASE}/performance", params={"start_date": "2020-01-01", "end_date": "2020-01-07"})
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["period"] == {"start_date": "2020-01-01", "end_date": "2020-01-07"}
        assert data["performance_summary"]["total_triggers"] == 0
        assert data["daily_statistics"] == []

    def test_bad_date_is_422(self, client):
        assert client.get(f"{BASE}/performance", params={"start_date": "yesterday"}).status_code == 422


# ===========================================================================
# POST /cache/clear
# ===========================================================================
class TestCacheClear:
    def test_requires_token(self, client):
        assert client.post(f"{BASE}/cache/clear").status_code == 401

    def test_rejects_invalid_token(self, client):
        resp = client.post(f"{BASE}/cache/clear", headers={"Authorization": "Bearer invalid"})
        assert resp.status_code == 401

    def test_rejects_non_admin(self, client):
        token = make_admin_token(sub="67890", username="RegularUser", is_admin=False)
        assert client.post(f"{BASE}/cache/clear", headers=_auth(token)).status_code == 403

    def test_admin_clears_and_reloads(self, client, runtime, seed, world, admin_token):
        _scan(client, runtime, "CARD-CORE")
        assert runtime.cache.sizes()["member_cache"] == 1
        seed.rule(world["v1"], "industry", {"industries": ["Law"]}, priority=1)

        resp = client.post(f"{BASE}/cache/clear", headers=_auth(admin_token))

        assert resp.status_code == 200
        assert resp.json()["data"]["cache_status"] == {
            "video_cache": 1, "member_cache": 0, "rule_cache": 2,
        }

    def test_failed_reload_keeps_serving_default(self, client, runtime, world, admin_token):
        with patch.object(runtime.cache, "_load_default_video", side_effect=RuntimeError("db blip")):
            resp = client.post(f"{BASE}/cache/clear", headers=_auth(admin_token))
        assert resp.status_code == 500

        data = _scan(client, runtime, "X1")
        assert data["success"] is True
        assert data["data"]["video"]["id"] == world["v1"]

    def test_triggers_during_reload_see_previous_rules(self, client, runtime, world, admin_token):
        seen = []
        reload = runtime.cache._load_default_video

        def load_and_trigger(session):
            seen.append(runtime.handler.rules.select(None, "X1").video.id)
            return reload(session)

        with patch.object(runtime.cache, "_load_default_video", side_effect=load_and_trigger):
            resp = client.post(f"{BASE}/cache/clear", headers=_auth(admin_token))
        assert resp.status_code == 200
        assert seen == [world["v1"]]


# ===========================================================================
# GET /health
# ===========================================================================
class TestHealth:
    def test_healthy(self, client):
        resp = client.get(f"{BASE}/health")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "healthy"
        assert body["cache_status"]["video_cache"] == 1

    def test_unhealthy_when_database_fails(self, client):
        with patch("ceremony.api.routes.trigger.ping", side_effect=RuntimeError("refused")):
            resp = client.get(f"{BASE}/health")
        assert resp.status_code == 503
        assert resp.json()["status"] == "unhealthy"
        assert "refused" in resp.json()["error"]


# ===========================================================================
# GET /videos/{video_id}/statistics
# ===========================================================================
class TestVideoStatistics:
    def test_daily_rows(self, client, runtime, world):
        _scan(client, runtime, "X1")
        _scan(client, runtime, "X2")

        resp = client.get(f"{BASE}/videos/{world['v1']}/statistics")
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["video_id"] == world["v1"]
        assert len(data["statistics"]) == 1
        assert data["statistics"][0]["play_count"] == 2

    def test_video_without_plays(self, client, world):
        data = client.get(f"{BASE}/videos/{world['v2']}/statistics").json()["data"]
        assert data["statistics"] == []

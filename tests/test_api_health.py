# Tests for the health router.
# Created: 2026-02-09

from fastapi.testclient import TestClient

from calendarlink.api.serve import create_app
from calendarlink.config import reset_settings
from calendarlink.connections.manager import ConnectionManager


def test_health_degraded_without_config():
    resp = TestClient(create_app()).get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "degraded"
    assert "CALENDARLINK_BROKER_API_KEY" in data["missing_config"]
    assert "CALENDARLINK_GOOGLE_OAUTH_CLIENT_ID" in data["missing_config"]
    assert data["services"] == {"google_oauth": "missing", "broker": "missing"}
    assert data["connections"] is None


def test_health_ok(monkeypatch, broker, settings):
    monkeypatch.setenv("CALENDARLINK_GOOGLE_OAUTH_CLIENT_ID", "cid")
    monkeypatch.setenv("CALENDARLINK_GOOGLE_OAUTH_CLIENT_SECRET", "secret")
    monkeypatch.setenv("CALENDARLINK_BROKER_API_KEY", "key")
    reset_settings()
    import calendarlink.connections.manager as manager_module

    monkeypatch.setattr(
        manager_module, "_manager_instance", ConnectionManager(broker, settings=settings)
    )

    data = TestClient(create_app()).get("/api/v1/health").json()
    assert data["status"] == "ok"
    assert data["missing_config"] == []
    assert data["connections"]["total"] == 0
    assert data["connections"]["by_status"]["active"] == 0

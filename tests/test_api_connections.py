# Tests for the connections router and the app-level error mapping.
# Created: 2026-02-09

import pytest
from fastapi.testclient import TestClient

from calendarlink.api.serve import create_app, error_status_code
from calendarlink.connections.manager import ConnectionManager
from calendarlink.connections.store import MemoryConnectionStore
from calendarlink.errors import (
    AuthenticationError,
    BrokerUnavailableError,
    CalendarLinkError,
    ConfigurationError,
    ConnectionInactiveError,
    ConnectionNotFoundError,
    OAuthError,
    TokenRefreshError,
)

USER = "ada@example.com"
ENTITY = "ada_example_com"


@pytest.fixture
def manager(broker, settings, monkeypatch):
    manager = ConnectionManager(broker, store=MemoryConnectionStore(), settings=settings)
    import calendarlink.connections.manager as manager_module

    monkeypatch.setattr(manager_module, "_manager_instance", manager)
    return manager


@pytest.fixture
def client(manager):
    return TestClient(create_app())


def setup_user(client):
    resp = client.post(f"/api/v1/connections/{USER}/setup")
    assert resp.status_code == 200
    return resp.json()


class TestSetup:
    def test_new_user_gets_redirect(self, client, broker):
        data = setup_user(client)
        assert data["status"] == "pending"
        assert data["connection_id"] == "new1"
        assert data["redirect_url"] == "https://broker.example/auth/new1"
        assert data["needs_setup"] is False
        assert ENTITY in broker.entities

    def test_existing_active_connection(self, client, broker):
        broker.add(ENTITY, "c1", "ACTIVE")
        data = setup_user(client)
        assert data["status"] == "active"
        assert data["connection_id"] == "c1"
        assert data["redirect_url"] is None
        assert broker.calls["initiate_connection"] == 0

    def test_broker_outage_is_502(self, client, broker, outage):
        broker.failures["get_entity"] = outage
        resp = client.post(f"/api/v1/connections/{USER}/setup")
        assert resp.status_code == 502
        body = resp.json()
        assert body["status"] == "error"
        assert "connection refused" in body["error"]
        assert body["requires_reauth"] is False

    def test_unexpected_error_is_hidden(self, manager, broker):
        broker.failures["get_entity"] = RuntimeError("secret detail")
        client = TestClient(create_app(), raise_server_exceptions=False)
        resp = client.post(f"/api/v1/connections/{USER}/setup")
        assert resp.status_code == 500
        assert resp.json()["error"] == "Internal server error"


class TestStatusAndPoll:
    def test_status_unknown_user(self, client):
        resp = client.get("/api/v1/connections/nobody@example.com/status")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "not_found"
        assert data["needs_setup"] is True

    def test_status_pending(self, client):
        setup_user(client)
        data = client.get(f"/api/v1/connections/{USER}/status").json()
        assert data["status"] == "pending"

    def test_status_active_counts_tools(self, client, broker):
        broker.add(ENTITY, "c1", "ACTIVE")
        setup_user(client)
        data = client.get(f"/api/v1/connections/{USER}/status").json()
        assert data["status"] == "active"
        assert data["tools_available"] == 2

    def test_poll_until_active(self, client, broker):
        setup_user(client)
        broker.scripts["new1"] = ["INITIATED", "ACTIVE"]
        resp = client.post(f"/api/v1/connections/{USER}/poll", json={"interval_ms": 0})
        assert resp.status_code == 200
        assert resp.json()["status"] == "active"
        assert broker.calls["get_connection"] == 2

    def test_poll_exhausted_is_pending(self, client, broker):
        setup_user(client)
        resp = client.post(f"/api/v1/connections/{USER}/poll")
        data = resp.json()
        assert data["status"] == "pending"
        assert data["redirect_url"] == "https://broker.example/auth/new1"
        assert broker.calls["get_connection"] == 3

    def test_poll_unknown_user_is_404(self, client):
        resp = client.post("/api/v1/connections/nobody@example.com/poll")
        assert resp.status_code == 404

    def test_poll_rejects_bad_attempts(self, client):
        resp = client.post(f"/api/v1/connections/{USER}/poll", json={"max_attempts": 0})
        assert resp.status_code == 422

    def test_poll_cancelled_by_sign_out(self, client, manager, monkeypatch):
        setup_user(client)
        start_poll = manager.start_poll

        def start_then_sign_out(user_id, max_attempts=None, interval_ms=None):
            handle = start_poll(user_id, max_attempts, interval_ms)
            manager.cancel_poll(user_id)
            return handle

        monkeypatch.setattr(manager, "start_poll", start_then_sign_out)
        resp = client.post(f"/api/v1/connections/{USER}/poll")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "not_found"
        assert data["needs_setup"] is True

    def test_poll_is_tracked_while_running(self, client, manager, broker):
        setup_user(client)
        seen = []
        get_connection = broker.get_connection

        async def watching_get_connection(connection_id):
            seen.append(USER in manager._polls)
            return await get_connection(connection_id)

        broker.get_connection = watching_get_connection
        client.post(f"/api/v1/connections/{USER}/poll", json={"max_attempts": 1})
        assert seen == [True]
        assert USER not in manager._polls


class TestBrokerNotifications:
    def test_callback_success_redirects_to_client(self, client):
        setup_user(client)
        resp = client.get(
            "/api/v1/connections/callback",
            params={"connectionId": "new1", "entityId": ENTITY, "status": "ACTIVE"},
            follow_redirects=False,
        )
        assert resp.status_code == 307
        location = resp.headers["location"]
        assert location.startswith("http://localhost:5173?")
        assert "connection_success=true" in location
        assert "user=ada%40example.com" in location

    def test_callback_error(self, client, manager):
        setup_user(client)
        resp = client.get(
            "/api/v1/connections/callback",
            params={"entityId": ENTITY, "error": "access_denied"},
            follow_redirects=False,
        )
        assert "connection_error=access_denied" in resp.headers["location"]

    def test_callback_unknown_entity(self, client):
        resp = client.get(
            "/api/v1/connections/callback",
            params={"connectionId": "x", "entityId": "ghost"},
            follow_redirects=False,
        )
        assert "connection_status=completed" in resp.headers["location"]

    def test_webhook_updates_record(self, client):
        setup_user(client)
        resp = client.post(
            "/api/v1/connections/webhook",
            json={
                "event": "connection.updated",
                "data": {"appName": "googlecalendar", "entityId": ENTITY, "status": "ACTIVE"},
            },
        )
        assert resp.status_code == 200
        assert resp.json() == {"success": True, "received": True, "updated": True}

        connections = client.get("/api/v1/connections").json()["connections"]
        assert connections[0]["status"] == "active"

    def test_webhook_other_event_acknowledged(self, client):
        resp = client.post("/api/v1/connections/webhook", json={"event": "tool.executed"})
        assert resp.status_code == 200
        assert resp.json()["updated"] is False


class TestListAndSignOut:
    def test_list_connections(self, client):
        assert client.get("/api/v1/connections").json() == {"connections": [], "total": 0}
        setup_user(client)
        data = client.get("/api/v1/connections").json()
        assert data["total"] == 1
        assert data["connections"][0]["entity_id"] == ENTITY

    def test_sign_out(self, client, broker):
        setup_user(client)
        resp = client.delete(f"/api/v1/connections/{USER}", params={"revoke": "true"})
        assert resp.json() == {"signed_out": True}
        assert broker.deleted == ["new1"]

        data = client.get(f"/api/v1/connections/{USER}/status").json()
        assert data["status"] == "not_found"

    def test_sign_out_unknown_user(self, client):
        resp = client.delete("/api/v1/connections/nobody@example.com")
        assert resp.json() == {"signed_out": False}


def test_cors_allows_client_origin(client):
    resp = client.options(
        "/api/v1/connections",
        headers={
            "Origin": "http://localhost:5173",
            "Access-Control-Request-Method": "GET",
        },
    )
    assert resp.headers["access-control-allow-origin"] == "http://localhost:5173"


@pytest.mark.parametrize(
    "exc, code",
    [
        (AuthenticationError("x"), 401),
        (OAuthError("x"), 400),
        (TokenRefreshError("x"), 400),
        (ConnectionNotFoundError("x"), 404),
        (ConnectionInactiveError("x"), 403),
        (ConfigurationError("x"), 503),
        (BrokerUnavailableError("x"), 502),
        (CalendarLinkError("x"), 500),
    ],
)
def test_error_status_code(exc, code):
    assert error_status_code(exc) == code

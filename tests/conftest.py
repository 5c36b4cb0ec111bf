# Shared fixtures: isolated settings/data dir and an in-memory broker.
# Created: 2026-02-09

import asyncio
from collections import Counter
from datetime import UTC, datetime, timedelta

import pytest

from calendarlink.config import Settings, reset_settings
from calendarlink.connections.manager import reset_connection_manager
from calendarlink.connections.models import BrokerTool, ConnectionCandidate, InitiatedConnection
from calendarlink.errors import BrokerUnavailableError
from calendarlink.integrations.oauth import reset_oauth_manager

T0 = datetime(2026, 2, 1, 12, 0, tzinfo=UTC)


def at(minutes: int) -> datetime:
    return T0 + timedelta(minutes=minutes)


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """Point the data dir at tmp_path and drop any real credentials."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("CALENDARLINK_DATA_DIR", str(tmp_path / "data"))
    for name in (
        "CALENDARLINK_GOOGLE_OAUTH_CLIENT_ID",
        "CALENDARLINK_GOOGLE_OAUTH_CLIENT_SECRET",
        "CALENDARLINK_BROKER_API_KEY",
        "CALENDARLINK_CONNECTION_STORE",
    ):
        monkeypatch.delenv(name, raising=False)
    reset_settings()
    reset_oauth_manager()
    reset_connection_manager()
    yield
    reset_settings()
    reset_oauth_manager()
    reset_connection_manager()


class FakeBroker:
    """In-memory broker implementing the client protocol + connected-account delete.

    ``scripts[connection_id]`` is a list of statuses handed out one per
    get_connection call (the last one sticks).
    """

    def __init__(self):
        self.entities: set[str] = set()
        self.connections: dict[str, ConnectionCandidate] = {}
        self.owners: dict[str, str] = {}
        self.scripts: dict[str, list[str]] = {}
        self.tools = [
            BrokerTool(name="GOOGLECALENDAR_LIST_EVENTS", app_name="googlecalendar"),
            BrokerTool(name="GOOGLECALENDAR_CREATE_EVENT", app_name="googlecalendar"),
        ]
        self.failures: dict[str, Exception] = {}
        self.initiate_override: InitiatedConnection | None = None
        self.calls: Counter = Counter()
        self.deleted: list[str] = []
        self._seq = 0

    def add(
        self,
        entity_id,
        connection_id,
        status,
        created_at=None,
        app_name="googlecalendar",
        redirect_url=None,
    ):
        self.entities.add(entity_id)
        self.owners[connection_id] = entity_id
        self.connections[connection_id] = ConnectionCandidate(
            id=connection_id,
            app_name=app_name,
            status=status,
            created_at=created_at,
            redirect_url=redirect_url,
        )

    def _check(self, name):
        self.calls[name] += 1
        if name in self.failures:
            raise self.failures[name]

    async def get_entity(self, entity_id):
        self._check("get_entity")
        await asyncio.sleep(0)
        return {"id": entity_id} if entity_id in self.entities else None

    async def create_entity(self, entity_id):
        self._check("create_entity")
        self.entities.add(entity_id)

    async def list_connections(self, entity_id, app_name):
        self._check("list_connections")
        await asyncio.sleep(0)
        return [
            c
            for cid, c in self.connections.items()
            if self.owners[cid] == entity_id and c.app_name == app_name
        ]

    async def get_connection(self, connection_id):
        self._check("get_connection")
        candidate = self.connections.get(connection_id)
        script = self.scripts.get(connection_id)
        if candidate is not None and script:
            candidate.status = script.pop(0) if len(script) > 1 else script[0]
        return candidate

    async def initiate_connection(self, entity_id, app_name, redirect_url=None):
        self._check("initiate_connection")
        await asyncio.sleep(0)
        if self.initiate_override is not None:
            return self.initiate_override
        self._seq += 1
        connection_id = f"new{self._seq}"
        url = f"https://broker.example/auth/{connection_id}"
        self.add(entity_id, connection_id, "INITIATED", at(100 + self._seq), app_name, url)
        return InitiatedConnection(
            connection_id=connection_id, redirect_url=url, status="INITIATED"
        )

    async def list_tools(self, entity_id, app_name):
        self._check("list_tools")
        return list(self.tools)

    async def delete_connected_account(self, connection_id):
        self._check("delete_connected_account")
        self.connections.pop(connection_id, None)
        self.owners.pop(connection_id, None)
        self.deleted.append(connection_id)


@pytest.fixture
def broker():
    return FakeBroker()


@pytest.fixture
def settings():
    return Settings(
        broker_api_key="test-key",
        setup_poll_attempts=2,
        setup_poll_interval_ms=0,
        poll_attempts=3,
        poll_interval_ms=0,
    )


@pytest.fixture
def outage():
    return BrokerUnavailableError("Broker request failed: connection refused")

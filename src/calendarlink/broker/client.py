# Broker Client: HTTP client for the connection broker's REST API.
# Created: 2026-02-08

from __future__ import annotations

import logging
from typing import Any

import httpx

from calendarlink.config import Settings, get_settings
from calendarlink.connections.models import (
    BrokerTool,
    ConnectionCandidate,
    InitiatedConnection,
    parse_timestamp,
)
from calendarlink.errors import BrokerUnavailableError, ConfigurationError

logger = logging.getLogger(__name__)


def _first(data: dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        value = data.get(key)
        if value not in (None, ""):
            return value
    return default


def parse_candidate(data: dict[str, Any]) -> ConnectionCandidate:
    """Build a candidate from the broker's loosely shaped connection payload."""
    connection_id = _first(data, "id", "connectedAccountId", "connected_account_id")
    if not connection_id:
        raise BrokerUnavailableError(f"Broker returned a connection without an id: {data!r}")
    return ConnectionCandidate(
        id=str(connection_id),
        app_name=str(_first(data, "appName", "appUniqueId", "app_name", "app", default="")),
        status=str(_first(data, "status", "connectionStatus", default="")),
        created_at=parse_timestamp(_first(data, "createdAt", "created_at")),
        redirect_url=_first(data, "redirectUrl", "redirect_url"),
    )


def _items(payload: Any) -> list[dict[str, Any]]:
    if isinstance(payload, list):
        items = payload
    elif isinstance(payload, dict):
        items = payload.get("items", payload.get("data", []))
    else:
        items = None
    if not isinstance(items, list):
        raise BrokerUnavailableError("Broker returned a malformed list payload")
    return [i for i in items if isinstance(i, dict)]


class BrokerClient:
    """HTTP client for the connection broker.

    Implements BrokerClientProtocol plus all three deletion capabilities.
    """

    def __init__(self, api_key: str, base_url: str, timeout: float = 30.0):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> BrokerClient:
        settings = settings or get_settings()
        if not settings.broker_api_key:
            raise ConfigurationError("Missing broker configuration: CALENDARLINK_BROKER_API_KEY")
        return cls(
            api_key=settings.broker_api_key,
            base_url=settings.broker_base_url,
            timeout=settings.broker_timeout,
        )

    async def _request(
        self,
        method: str,
        path: str,
        *,
        allow_status: tuple[int, ...] = (),
        **kwargs: Any,
    ) -> tuple[int, Any]:
        """Send a request; returns (status_code, decoded JSON or None)."""
        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.request(
                    method,
                    url,
                    headers={"x-api-key": self.api_key, "Accept": "application/json"},
                    **kwargs,
                )
        except httpx.HTTPError as e:
            raise BrokerUnavailableError(f"Broker request {method} {path} failed: {e}") from e

        if resp.status_code in allow_status:
            return resp.status_code, None
        if not 200 <= resp.status_code < 300:
            raise BrokerUnavailableError(
                f"Broker request {method} {path} returned {resp.status_code}",
                status_code=resp.status_code,
            )
        if resp.status_code == 204 or not resp.content:
            return resp.status_code, None
        try:
            return resp.status_code, resp.json()
        except ValueError as e:
            raise BrokerUnavailableError(f"Broker returned invalid JSON for {path}") from e

    # ------------------------------------------------------------------
    # Entities
    # ------------------------------------------------------------------

    async def get_entity(self, entity_id: str) -> dict[str, Any] | None:
        status, payload = await self._request(
            "GET", f"/api/v1/entities/{entity_id}", allow_status=(404,)
        )
        if status == 404:
            return None
        return payload if isinstance(payload, dict) else {"id": entity_id}

    async def create_entity(self, entity_id: str) -> None:
        status, _ = await self._request(
            "POST", "/api/v1/entities", json={"id": entity_id}, allow_status=(409,)
        )
        if status == 409:
            logger.debug("Entity %s already exists", entity_id)
        else:
            logger.info("Created broker entity %s", entity_id)

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------

    async def list_connections(self, entity_id: str, app_name: str) -> list[ConnectionCandidate]:
        _, payload = await self._request(
            "GET",
            "/api/v1/connectedAccounts",
            params={"user_uuid": entity_id, "appNames": app_name, "showActiveOnly": "false"},
        )
        candidates = [parse_candidate(item) for item in _items(payload)]
        return [c for c in candidates if not c.app_name or c.app_name.lower() == app_name.lower()]

    async def get_connection(self, connection_id: str) -> ConnectionCandidate | None:
        status, payload = await self._request(
            "GET", f"/api/v1/connectedAccounts/{connection_id}", allow_status=(404,)
        )
        if status == 404:
            return None
        if not isinstance(payload, dict):
            raise BrokerUnavailableError(f"Broker returned malformed connection {connection_id}")
        return parse_candidate(payload)

    async def initiate_connection(
        self, entity_id: str, app_name: str, redirect_url: str | None = None
    ) -> InitiatedConnection:
        body: dict[str, Any] = {"entityId": entity_id, "appName": app_name}
        if redirect_url:
            body["redirectUri"] = redirect_url

        _, payload = await self._request("POST", "/api/v1/connectedAccounts", json=body)
        if not isinstance(payload, dict):
            raise BrokerUnavailableError("Broker returned a malformed connection response")

        return InitiatedConnection(
            connection_id=str(_first(payload, "connectedAccountId", "id", default="")),
            redirect_url=_first(payload, "redirectUrl", "redirect_url"),
            status=str(_first(payload, "connectionStatus", "status", default="")),
        )

    async def list_tools(self, entity_id: str, app_name: str) -> list[BrokerTool]:
        _, payload = await self._request(
            "GET", "/api/v2/actions", params={"apps": app_name, "entityId": entity_id}
        )
        return [
            BrokerTool(
                name=str(item.get("name", "")),
                description=item.get("description", "") or "",
                app_name=str(_first(item, "appName", "app", default=app_name)),
                parameters=item.get("parameters", {}) or {},
            )
            for item in _items(payload)
            if item.get("name")
        ]

    # ------------------------------------------------------------------
    # Deletion capabilities
    # ------------------------------------------------------------------

    async def delete_entity_connection(self, entity_id: str, connection_id: str) -> None:
        await self._request("DELETE", f"/api/v1/entities/{entity_id}/connections/{connection_id}")

    async def delete_connected_account(self, connection_id: str) -> None:
        await self._request("DELETE", f"/api/v1/connectedAccounts/{connection_id}")

    async def disable_connection(self, connection_id: str) -> None:
        await self._request("POST", f"/api/v1/connectedAccounts/{connection_id}/disable")

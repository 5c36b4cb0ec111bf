# Connections router: setup, status, poll, sign-out, broker callback + webhook.
# Created: 2026-02-09

from __future__ import annotations

import logging
import urllib.parse

from fastapi import APIRouter, Query
from fastapi.responses import RedirectResponse

from calendarlink.api.schemas import (
    ConnectionListResponse,
    ConnectionResponse,
    PollRequest,
    SignOutResponse,
    UserConnectionInfo,
    WebhookPayload,
    WebhookResponse,
)
from calendarlink.config import get_settings
from calendarlink.connections.manager import get_connection_manager
from calendarlink.connections.models import ConnectionReport, ConnectionStatus, UserConnection

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Connections"])


def _from_record(conn: UserConnection) -> ConnectionResponse:
    messages = {
        ConnectionStatus.ACTIVE: "Connection is active",
        ConnectionStatus.PENDING: "Complete authorization at the redirect URL",
    }
    return ConnectionResponse(
        status=conn.status.value,
        message=messages.get(conn.status, conn.error or ""),
        connection_id=conn.connection_id,
        redirect_url=conn.redirect_url,
        error=conn.error,
        needs_setup=conn.status is not ConnectionStatus.ACTIVE and not conn.redirect_url,
    )


def _from_report(report: ConnectionReport) -> ConnectionResponse:
    return ConnectionResponse(**report.to_dict())


def _client_redirect(**params: str) -> RedirectResponse:
    base = get_settings().client_url
    return RedirectResponse(f"{base}?{urllib.parse.urlencode(params)}")


@router.get("/connections/callback")
async def broker_callback(
    connection_id: str | None = Query(None, alias="connectionId"),
    entity_id: str | None = Query(None, alias="entityId"),
    status: str | None = Query(None),
    error: str | None = Query(None),
):
    """Broker redirect after the user finishes authorization; sends the browser back to the app."""
    logger.info(
        "Broker callback: connection=%s entity=%s status=%s error=%s",
        connection_id,
        entity_id,
        status,
        error,
    )
    conn = await get_connection_manager().handle_broker_callback(
        connection_id, entity_id, status=status, error=error
    )
    if error:
        return _client_redirect(connection_error=error)
    if conn is None:
        return _client_redirect(connection_status="completed")
    if conn.status is ConnectionStatus.ERROR:
        return _client_redirect(connection_error=conn.error or "Connection failed")
    return _client_redirect(connection_success="true", user=conn.user_id)


@router.post("/connections/webhook", response_model=WebhookResponse)
async def broker_webhook(payload: WebhookPayload):
    """Connection created/updated notifications from the broker."""
    updated = await get_connection_manager().handle_webhook(payload.event, payload.data)
    return WebhookResponse(updated=updated)


@router.get("/connections", response_model=ConnectionListResponse)
async def list_connections():
    """All stored connection records."""
    connections = await get_connection_manager().list_connections()
    return ConnectionListResponse(
        connections=[UserConnectionInfo(**c.to_dict()) for c in connections],
        total=len(connections),
    )


@router.post("/connections/{user_id}/setup", response_model=ConnectionResponse)
async def setup_connection(user_id: str):
    """Ensure the user has one usable or completable connection."""
    conn = await get_connection_manager().ensure_connection(user_id)
    return _from_record(conn)


@router.get("/connections/{user_id}/status", response_model=ConnectionResponse)
async def connection_status(user_id: str):
    """Probe the user's stored connection once."""
    report = await get_connection_manager().check_status(user_id)
    return _from_report(report)


@router.post("/connections/{user_id}/poll", response_model=ConnectionResponse)
async def poll_connection(user_id: str, body: PollRequest | None = None):
    """Poll until the connection is active or failed; running out of attempts reports pending."""
    body = body or PollRequest()
    report = await get_connection_manager().start_poll(
        user_id, max_attempts=body.max_attempts, interval_ms=body.interval_ms
    )
    if report is None:
        # Cancelled by a sign-out or by a newer poll for the same user.
        return ConnectionResponse(
            status=ConnectionStatus.NOT_FOUND.value, message="Poll cancelled", needs_setup=True
        )
    return _from_report(report)


@router.delete("/connections/{user_id}", response_model=SignOutResponse)
async def sign_out(user_id: str, revoke: bool = Query(False)):
    """Forget the user's connection, optionally deleting it at the broker."""
    signed_out = await get_connection_manager().sign_out(user_id, revoke=revoke)
    return SignOutResponse(signed_out=signed_out)

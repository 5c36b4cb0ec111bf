# API request/response schemas.
# Created: 2026-02-09

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class ConnectionResponse(BaseModel):
    """Connection state as the calling UI sees it."""

    status: str
    message: str = ""
    connection_id: str | None = None
    redirect_url: str | None = None
    error: str | None = None
    tools_available: int | None = None
    needs_setup: bool = False


class UserConnectionInfo(BaseModel):
    user_id: str
    entity_id: str
    connection_id: str | None = None
    status: str
    redirect_url: str | None = None
    error: str | None = None
    created_at: str
    last_updated: str


class ConnectionListResponse(BaseModel):
    connections: list[UserConnectionInfo]
    total: int


class PollRequest(BaseModel):
    """User-initiated poll; omitted fields fall back to settings."""

    max_attempts: int | None = Field(default=None, ge=1, le=60)
    interval_ms: int | None = Field(default=None, ge=0, le=60_000)


class SignOutResponse(BaseModel):
    signed_out: bool


class WebhookPayload(BaseModel):
    event: str
    data: dict[str, Any] = Field(default_factory=dict)


class WebhookResponse(BaseModel):
    success: bool = True
    received: bool = True
    updated: bool = False


class ErrorResponse(BaseModel):
    status: str = "error"
    error: str
    requires_reauth: bool = False


class HealthResponse(BaseModel):
    status: str = "ok"
    timestamp: str
    version: str
    services: dict[str, str] = Field(default_factory=dict)
    missing_config: list[str] = Field(default_factory=list)
    connections: dict[str, Any] | None = None


class AuthorizeUrlResponse(BaseModel):
    url: str


class OAuthCallbackResponse(BaseModel):
    success: bool = True
    email: str | None = None
    expires_at: float | None = None
    scope: str = ""


class OAuthStatusResponse(BaseModel):
    authenticated: bool
    has_refresh_token: bool = False
    expires_at: float | None = None
    scope: str = ""
    configuration: dict[str, Any] = Field(default_factory=dict)


class CalendarEvent(BaseModel):
    id: str
    summary: str = ""
    start: str = ""
    end: str = ""
    location: str = ""
    attendees: list[str] = Field(default_factory=list)
    htmlLink: str = ""


class EventListResponse(BaseModel):
    events: list[CalendarEvent]
    total: int


class CreateEventRequest(BaseModel):
    """Start and end are ISO 8601 date-times."""

    summary: str = Field(..., min_length=1)
    start: str
    end: str
    description: str = ""
    attendees: list[str] = Field(default_factory=list)


class UpdateEventRequest(BaseModel):
    """Only the fields that are set are sent to the calendar."""

    summary: str | None = None
    description: str | None = None
    start: str | None = None
    end: str | None = None


class DeleteEventResponse(BaseModel):
    deleted: bool = True
    event_id: str

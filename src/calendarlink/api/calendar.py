# Calendar router: event list/create/update/delete for a connected user.
# Created: 2026-02-10
#
# Every route checks the user's broker connection first; an unusable
# connection is a 403 with requires_reauth, never a calendar call.

from __future__ import annotations

import logging
from datetime import datetime

from fastapi import APIRouter, Query

from calendarlink.api.schemas import (
    CalendarEvent,
    CreateEventRequest,
    DeleteEventResponse,
    EventListResponse,
    UpdateEventRequest,
)
from calendarlink.connections.manager import get_connection_manager
from calendarlink.connections.models import ConnectionStatus
from calendarlink.errors import ConnectionInactiveError
from calendarlink.integrations.gcalendar import CalendarClient

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Calendar"])


async def _require_active(user_id: str) -> None:
    report = await get_connection_manager().check_status(user_id)
    if report.status is not ConnectionStatus.ACTIVE:
        logger.info("Calendar call for %s refused: connection is %s", user_id, report.status.value)
        raise ConnectionInactiveError(
            f"Calendar connection for {user_id} is {report.status.value}; "
            "set up the connection first"
        )


@router.get("/calendar/{user_id}/events", response_model=EventListResponse)
async def list_events(
    user_id: str,
    time_min: datetime | None = Query(None),
    time_max: datetime | None = Query(None),
    max_results: int = Query(10, ge=1, le=250),
):
    """Upcoming events, seven days from now unless a window is given."""
    await _require_active(user_id)
    events = await CalendarClient().list_events(time_min, time_max, max_results)
    return EventListResponse(events=[CalendarEvent(**e) for e in events], total=len(events))


@router.post("/calendar/{user_id}/events", response_model=CalendarEvent)
async def create_event(user_id: str, body: CreateEventRequest):
    await _require_active(user_id)
    event = await CalendarClient().create_event(
        body.summary, body.start, body.end, body.description, body.attendees or None
    )
    return CalendarEvent(**event)


@router.patch("/calendar/{user_id}/events/{event_id}", response_model=CalendarEvent)
async def update_event(user_id: str, event_id: str, body: UpdateEventRequest):
    await _require_active(user_id)
    event = await CalendarClient().update_event(
        event_id,
        summary=body.summary,
        description=body.description,
        start=body.start,
        end=body.end,
    )
    return CalendarEvent(**event)


@router.delete("/calendar/{user_id}/events/{event_id}", response_model=DeleteEventResponse)
async def delete_event(user_id: str, event_id: str):
    await _require_active(user_id)
    await CalendarClient().delete_event(event_id)
    return DeleteEventResponse(event_id=event_id)

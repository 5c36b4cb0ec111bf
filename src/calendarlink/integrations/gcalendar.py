# Google Calendar Client: Calendar v3 calls over the provider OAuth tokens.
# Created: 2026-02-07

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from calendarlink.errors import ProviderUnavailableError
from calendarlink.integrations.oauth import OAuthManager, get_oauth_manager

logger = logging.getLogger(__name__)

_CALENDAR_BASE = "https://www.googleapis.com/calendar/v3"


def _when(slot: dict[str, Any]) -> str:
    # All-day events carry "date", timed ones "dateTime".
    return slot.get("dateTime") or slot.get("date") or ""


def _event_summary(item: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": item.get("id", ""),
        "summary": item.get("summary") or "(no title)",
        "start": _when(item.get("start", {})),
        "end": _when(item.get("end", {})),
        "location": item.get("location", ""),
        "attendees": [a.get("email", "") for a in item.get("attendees", [])],
        "htmlLink": item.get("htmlLink", ""),
    }


class CalendarClient:
    """HTTP client for Google Calendar API.

    Every call goes through OAuthManager.make_authenticated_request, so an
    expired token is refreshed once and a dead grant surfaces as
    AuthenticationError.
    """

    def __init__(self, oauth: OAuthManager | None = None):
        self._oauth = oauth or get_oauth_manager()

    async def _call(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        resp = await self._oauth.make_authenticated_request(
            method, f"{_CALENDAR_BASE}{path}", **kwargs
        )
        if not 200 <= resp.status_code < 300:
            raise ProviderUnavailableError(
                f"Calendar API {method} {path} failed with status {resp.status_code}"
            )
        if resp.status_code == 204:
            return {}
        return resp.json()

    async def list_events(
        self,
        time_min: datetime | None = None,
        time_max: datetime | None = None,
        max_results: int = 10,
        calendar_id: str = "primary",
    ) -> list[dict[str, Any]]:
        """Expanded single events in [time_min, time_max), soonest first.

        The window defaults to the seven days starting now.
        """
        if time_min is None:
            time_min = datetime.now(UTC)
        if time_max is None:
            time_max = time_min + timedelta(days=7)

        data = await self._call(
            "GET",
            f"/calendars/{calendar_id}/events",
            params={
                "timeMin": time_min.isoformat(),
                "timeMax": time_max.isoformat(),
                "maxResults": max_results,
                "singleEvents": "true",
                "orderBy": "startTime",
            },
        )

        return [_event_summary(item) for item in data.get("items", [])]

    async def create_event(
        self,
        summary: str,
        start: str,
        end: str,
        description: str = "",
        attendees: list[str] | None = None,
        calendar_id: str = "primary",
    ) -> dict[str, Any]:
        """Create an event; start/end are ISO 8601 strings."""
        body: dict[str, Any] = {
            "summary": summary,
            "start": {"dateTime": start},
            "end": {"dateTime": end},
        }
        if description:
            body["description"] = description
        if attendees:
            body["attendees"] = [{"email": e} for e in attendees]

        data = await self._call("POST", f"/calendars/{calendar_id}/events", json=body)
        logger.info("Created calendar event %s", data.get("id", ""))
        return {
            "id": data.get("id", ""),
            "htmlLink": data.get("htmlLink", ""),
            "summary": data.get("summary", ""),
        }

    async def update_event(
        self,
        event_id: str,
        summary: str | None = None,
        description: str | None = None,
        start: str | None = None,
        end: str | None = None,
        calendar_id: str = "primary",
    ) -> dict[str, Any]:
        """Patch only the fields that were given; start/end are ISO 8601 strings."""
        body: dict[str, Any] = {}
        if summary is not None:
            body["summary"] = summary
        if description is not None:
            body["description"] = description
        if start is not None:
            body["start"] = {"dateTime": start}
        if end is not None:
            body["end"] = {"dateTime": end}

        data = await self._call("PATCH", f"/calendars/{calendar_id}/events/{event_id}", json=body)
        logger.info("Updated calendar event %s", event_id)
        return _event_summary(data)

    async def delete_event(self, event_id: str, calendar_id: str = "primary") -> None:
        await self._call("DELETE", f"/calendars/{calendar_id}/events/{event_id}")
        logger.info("Deleted calendar event %s", event_id)

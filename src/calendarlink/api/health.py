# Health router: configuration status and connection counts.
# Created: 2026-02-09

from __future__ import annotations

import logging

from fastapi import APIRouter

from calendarlink import __version__
from calendarlink.api.schemas import HealthResponse
from calendarlink.config import get_settings
from calendarlink.connections.manager import get_connection_manager
from calendarlink.connections.models import now_iso
from calendarlink.errors import ConfigurationError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthResponse)
async def get_health():
    """Report configuration and stored connection counts."""
    settings = get_settings()
    missing = settings.missing_oauth_config()
    if not settings.broker_api_key:
        missing.append("CALENDARLINK_BROKER_API_KEY")

    connections = None
    try:
        connections = await get_connection_manager().get_stats()
    except ConfigurationError as e:
        logger.debug("Connection manager unavailable: %s", e)

    return HealthResponse(
        status="ok" if not missing else "degraded",
        timestamp=now_iso(),
        version=__version__,
        services={
            "google_oauth": "configured" if settings.google_oauth_client_id else "missing",
            "broker": "configured" if settings.broker_api_key else "missing",
        },
        missing_config=missing,
        connections=connections,
    )

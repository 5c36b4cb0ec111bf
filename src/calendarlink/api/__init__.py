# HTTP API router aggregation.
# Created: 2026-02-09
#
# mount_routers(app) registers every domain router at /api/v1/.

from __future__ import annotations

import importlib
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from fastapi import FastAPI

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"

_ROUTERS: list[tuple[str, str, str]] = [
    # (module_path, attr_name, tag)
    ("calendarlink.api.health", "router", "Health"),
    ("calendarlink.api.connections", "router", "Connections"),
    ("calendarlink.api.oauth", "router", "OAuth"),
    ("calendarlink.api.calendar", "router", "Calendar"),
]


def mount_routers(app: FastAPI) -> None:
    """Mount all domain routers on *app* under ``/api/v1``."""
    for module_path, attr_name, tag in _ROUTERS:
        mod = importlib.import_module(module_path)
        app.include_router(getattr(mod, attr_name), prefix=API_PREFIX)
        logger.debug("Mounted router: %s (%s)", module_path, tag)

"""HTTP server for ``calendarlink serve``.

Builds the FastAPI app with CORS, the ``/api/v1/`` routers and a handler that
turns CalendarLinkError subclasses into ``{status, error, requires_reauth}``
JSON bodies. Unexpected exceptions never leak their text to the client.
"""

from __future__ import annotations

import logging

from calendarlink.errors import (
    AuthenticationError,
    BrokerUnavailableError,
    CalendarLinkError,
    ConfigurationError,
    ConnectionInactiveError,
    ConnectionNotFoundError,
    ConnectionValidationError,
    OAuthError,
    ProviderUnavailableError,
    TokenExchangeError,
)

logger = logging.getLogger(__name__)

# First match wins; subclasses before their bases.
_ERROR_STATUS: list[tuple[type[CalendarLinkError], int]] = [
    (AuthenticationError, 401),
    (OAuthError, 400),
    (TokenExchangeError, 400),
    (ConnectionNotFoundError, 404),
    (ConnectionInactiveError, 403),
    (ConfigurationError, 503),
    (ConnectionValidationError, 502),
    (BrokerUnavailableError, 502),
    (ProviderUnavailableError, 502),
]


def error_status_code(exc: CalendarLinkError) -> int:
    for cls, code in _ERROR_STATUS:
        if isinstance(exc, cls):
            return code
    return 500


def create_app():
    """Build the FastAPI application."""
    from fastapi import FastAPI, Request
    from fastapi.middleware.cors import CORSMiddleware
    from fastapi.responses import JSONResponse

    from calendarlink import __version__
    from calendarlink.api import mount_routers
    from calendarlink.api.schemas import ErrorResponse
    from calendarlink.config import get_settings

    settings = get_settings()

    app = FastAPI(
        title="CalendarLink API",
        description="Delegated calendar connection lifecycle.",
        version=__version__,
        docs_url="/api/v1/docs",
        redoc_url="/api/v1/redoc",
        openapi_url="/api/v1/openapi.json",
    )

    # --- CORS -----------------------------------------------------------
    origins = sorted({settings.client_url, *settings.cors_allowed_origins})
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_origin_regex=r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$",
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type"],
    )

    # --- Errors ---------------------------------------------------------
    @app.exception_handler(CalendarLinkError)
    async def handle_calendarlink_error(request: Request, exc: CalendarLinkError):
        code = error_status_code(exc)
        log = logger.error if code >= 500 else logger.warning
        log("%s %s failed: %s", request.method, request.url.path, exc)
        body = ErrorResponse(
            error=exc.message or type(exc).__name__, requires_reauth=exc.requires_reauth
        )
        return JSONResponse(status_code=code, content=body.model_dump())

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.exception("%s %s crashed", request.method, request.url.path)
        body = ErrorResponse(error="Internal server error")
        return JSONResponse(status_code=500, content=body.model_dump())

    mount_routers(app)
    return app


def run_server(host: str = "127.0.0.1", port: int = 8888, dev: bool = False) -> None:
    """Start the API server."""
    import uvicorn

    logger.info("API docs: http://%s:%d/api/v1/docs", host, port)
    if dev:
        uvicorn.run(
            "calendarlink.api.serve:create_app",
            factory=True,
            host=host,
            port=port,
            reload=True,
            log_level="debug",
        )
    else:
        uvicorn.run(create_app(), host=host, port=port)

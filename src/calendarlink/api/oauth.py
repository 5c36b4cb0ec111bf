# OAuth router: direct Google authorization (code + PKCE).
# Created: 2026-02-09

from __future__ import annotations

import logging

from fastapi import APIRouter, Query, Request
from fastapi.responses import RedirectResponse

from calendarlink.api.schemas import (
    AuthorizeUrlResponse,
    OAuthCallbackResponse,
    OAuthStatusResponse,
    SignOutResponse,
)
from calendarlink.errors import AuthenticationError
from calendarlink.integrations.auth_state import DEFAULT_SESSION
from calendarlink.integrations.oauth import get_oauth_manager

logger = logging.getLogger(__name__)

router = APIRouter(tags=["OAuth"])


@router.get("/oauth/google/authorize")
async def oauth_authorize(
    pkce: bool = Query(True),
    session: str = Query(DEFAULT_SESSION),
    format: str = Query("redirect"),
):
    """Start the OAuth flow: redirect to the provider consent screen (or return the URL)."""
    url = get_oauth_manager().build_authorization_url(use_pkce=pkce, session_id=session)
    if format == "json":
        return AuthorizeUrlResponse(url=url)
    return RedirectResponse(url)


@router.get("/oauth/google/callback", response_model=OAuthCallbackResponse)
async def oauth_callback(request: Request, session: str = Query(DEFAULT_SESSION)):
    """Provider redirect: validate state and exchange the code for tokens."""
    manager = get_oauth_manager()
    tokens = await manager.complete_authorization(str(request.url), session_id=session)

    email = None
    try:
        email = await manager.get_authenticated_email()
    except AuthenticationError as e:
        logger.warning("Could not resolve authenticated email: %s", e)

    return OAuthCallbackResponse(email=email, expires_at=tokens.expires_at, scope=tokens.scope)


@router.get("/oauth/google/status", response_model=OAuthStatusResponse)
async def oauth_status():
    """Whether usable provider tokens are stored. Never calls the provider."""
    manager = get_oauth_manager()
    tokens = manager.get_stored_tokens()
    return OAuthStatusResponse(
        authenticated=manager.is_authenticated(),
        has_refresh_token=bool(tokens and tokens.refresh_token),
        expires_at=tokens.expires_at if tokens else None,
        scope=tokens.scope if tokens else "",
        configuration=manager.get_configuration(),
    )


@router.post("/oauth/google/sign-out", response_model=SignOutResponse)
async def oauth_sign_out(session: str = Query(DEFAULT_SESSION)):
    """Forget provider tokens and any authorization in flight."""
    get_oauth_manager().sign_out(session_id=session)
    return SignOutResponse(signed_out=True)

# OAuth Manager: provider OAuth 2.0 authorization code flow with PKCE + token refresh.
# Created: 2026-02-07
#
# Talks to the calendar provider directly, independent of the connection
# broker. One manager handles one token service (default "google_calendar").

from __future__ import annotations

import logging
import time
import urllib.parse
from dataclasses import dataclass
from typing import Any

import httpx

from calendarlink.config import Settings, get_settings
from calendarlink.errors import (
    AuthenticationError,
    ConfigurationError,
    OAuthError,
    ProviderUnavailableError,
    TokenExchangeError,
    TokenRefreshError,
)
from calendarlink.integrations.auth_state import (
    DEFAULT_SESSION,
    AuthorizationAttempt,
    AuthStateStore,
)
from calendarlink.integrations.pkce import compute_code_challenge, generate_secure_random
from calendarlink.integrations.token_store import TokenRecord, TokenStore, TokenStoreProtocol

logger = logging.getLogger(__name__)


# OAuth 2.0 provider configuration
PROVIDERS: dict[str, dict[str, Any]] = {
    "google": {
        "auth_url": "https://accounts.google.com/o/oauth2/v2/auth",
        "token_url": "https://oauth2.googleapis.com/token",
        "revoke_url": "https://oauth2.googleapis.com/revoke",
        "userinfo_urls": [
            "https://www.googleapis.com/oauth2/v2/userinfo",
            "https://www.googleapis.com/oauth2/v1/userinfo",
            "https://openidconnect.googleapis.com/v1/userinfo",
        ],
    },
}

DEFAULT_EXPIRES_IN = 3600


@dataclass
class AuthorizationCallback:
    """Validated redirect parameters."""

    code: str
    state: str


def _safe_json(resp: httpx.Response) -> dict[str, Any]:
    try:
        data = resp.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


class OAuthManager:
    """OAuth 2.0 authorization code flow (optionally with PKCE) + token refresh.

    Supports:
    - Authorization URL generation with anti-CSRF state and S256 challenge
    - Callback validation (state match, 5 minute attempt window)
    - Code exchange and token persistence
    - Token refresh that carries the previous refresh token forward
    - Authenticated requests with a single 401 -> refresh -> retry

    Extensible to other providers by adding to PROVIDERS dict.
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        scopes: list[str],
        provider: str = "google",
        service: str = "google_calendar",
        token_store: TokenStoreProtocol | None = None,
        state_store: AuthStateStore | None = None,
        timeout: float = 15,
    ):
        config = PROVIDERS.get(provider)
        if not config:
            raise ValueError(f"Unknown OAuth provider: {provider}")

        self.provider = provider
        self.service = service
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.scopes = scopes
        self.timeout = timeout
        self.store = token_store or TokenStore()
        self.state_store = state_store or AuthStateStore()
        self._config = config
        # Attempts consumed by validate_callback, waiting for their code exchange.
        self._validated: dict[str, AuthorizationAttempt] = {}

    @classmethod
    def from_settings(cls, settings: Settings | None = None, **kwargs: Any) -> OAuthManager:
        """Build a manager from settings, failing if credentials are missing."""
        settings = settings or get_settings()
        missing = settings.missing_oauth_config()
        if missing:
            raise ConfigurationError(f"Missing OAuth configuration: {', '.join(missing)}")

        kwargs.setdefault(
            "state_store", AuthStateStore(ttl_seconds=settings.oauth_state_ttl_seconds)
        )
        return cls(
            client_id=settings.google_oauth_client_id or "",
            client_secret=settings.google_oauth_client_secret or "",
            redirect_uri=settings.google_oauth_redirect_uri,
            scopes=list(settings.google_oauth_scopes),
            **kwargs,
        )

    # ------------------------------------------------------------------
    # Authorization
    # ------------------------------------------------------------------

    def build_authorization_url(
        self, use_pkce: bool = True, session_id: str = DEFAULT_SESSION
    ) -> str:
        """Start a new authorization attempt and return the provider URL.

        Replaces any attempt already in flight for ``session_id``.
        """
        attempt = AuthorizationAttempt(state=generate_secure_random(16))

        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": " ".join(self.scopes),
            "state": attempt.state,
            "access_type": "offline",
            "prompt": "consent",
            "include_granted_scopes": "true",
        }
        if use_pkce:
            attempt.code_verifier = generate_secure_random(32)
            params["code_challenge"] = compute_code_challenge(attempt.code_verifier)
            params["code_challenge_method"] = "S256"

        self.state_store.save(attempt, session_id)
        logger.info(
            "Built %s authorization URL for %s (pkce=%s)", self.provider, self.service, use_pkce
        )
        return f"{self._config['auth_url']}?{urllib.parse.urlencode(params)}"

    def validate_callback(
        self, url: str, session_id: str = DEFAULT_SESSION
    ) -> AuthorizationCallback:
        """Validate the provider's redirect URL.

        The stored attempt is consumed here, matched or not.

        Raises:
            OAuthError: provider error, missing code/state, state mismatch or expiry.
        """
        query = urllib.parse.parse_qs(urllib.parse.urlsplit(url).query)
        code = query.get("code", [""])[0]
        state = query.get("state", [""])[0]
        error = query.get("error", [""])[0]

        if error:
            description = query.get("error_description", ["Unknown error"])[0]
            self.state_store.discard(session_id)
            raise OAuthError(f"OAuth error: {error} - {description}")
        if not code:
            self.state_store.discard(session_id)
            raise OAuthError("No authorization code received")
        if not state:
            self.state_store.discard(session_id)
            raise OAuthError("No state parameter received")

        attempt = self.state_store.consume(state, session_id)
        self._prune_validated()
        self._validated[state] = attempt
        logger.info("OAuth callback validated for %s", self.service)
        return AuthorizationCallback(code=code, state=state)

    def _prune_validated(self) -> None:
        now = time.time()
        ttl = self.state_store.ttl_seconds
        for key in [k for k, a in self._validated.items() if a.is_expired(ttl, now)]:
            del self._validated[key]

    async def exchange_code_for_tokens(
        self, code: str, state: str, session_id: str = DEFAULT_SESSION
    ) -> TokenRecord:
        """Exchange an authorization code for access + refresh tokens.

        Raises:
            OAuthError: the state does not belong to a live attempt.
            TokenExchangeError: the provider rejected the code.
            ProviderUnavailableError: the token endpoint could not be reached.
        """
        attempt = self._validated.pop(state, None)
        if attempt is None:
            attempt = self.state_store.consume(state, session_id)
        elif attempt.is_expired(self.state_store.ttl_seconds):
            raise OAuthError("Authorization attempt expired, please start again")

        data = {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "code": code,
            "grant_type": "authorization_code",
            "redirect_uri": self.redirect_uri,
        }
        if attempt.code_verifier:
            data["code_verifier"] = attempt.code_verifier

        payload = await self._post_token_endpoint(data, TokenExchangeError, "Token exchange")

        tokens = TokenRecord(
            service=self.service,
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token"),
            expires_at=time.time() + int(payload.get("expires_in", DEFAULT_EXPIRES_IN)),
            token_type=payload.get("token_type", "Bearer"),
            scope=payload.get("scope", " ".join(self.scopes)),
        )
        self.store.save(tokens)
        logger.info("OAuth tokens obtained for %s via %s", self.service, self.provider)
        return tokens

    async def complete_authorization(
        self, url: str, session_id: str = DEFAULT_SESSION
    ) -> TokenRecord:
        """Validate a callback URL and exchange its code in one step."""
        callback = self.validate_callback(url, session_id)
        return await self.exchange_code_for_tokens(callback.code, callback.state, session_id)

    async def _post_token_endpoint(
        self, data: dict[str, str], error_cls: type[TokenExchangeError], label: str
    ) -> dict[str, Any]:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(
                    self._config["token_url"],
                    data=data,
                    headers={"Accept": "application/json"},
                )
        except httpx.HTTPError as e:
            raise ProviderUnavailableError(f"{label} failed: {e}") from e

        payload = _safe_json(resp)
        if not 200 <= resp.status_code < 300:
            error = payload.get("error")
            description = payload.get("error_description")
            raise error_cls(
                f"{label} failed: {resp.status_code} - {description or error or 'Unknown error'}",
                error=error,
                error_description=description,
                status_code=resp.status_code,
            )
        if not payload.get("access_token"):
            raise error_cls(
                f"{label} failed: no access token received", status_code=resp.status_code
            )
        return payload

    # ------------------------------------------------------------------
    # Token lifecycle
    # ------------------------------------------------------------------

    def get_stored_tokens(self) -> TokenRecord | None:
        return self.store.load(self.service)

    def is_authenticated(self) -> bool:
        """True iff a token is stored and has not yet expired."""
        tokens = self.store.load(self.service)
        if tokens is None or tokens.expires_at is None:
            return False
        return tokens.expires_at > time.time()

    async def refresh_access_token(self) -> TokenRecord | None:
        """Refresh the access token using the stored refresh token.

        Returns the updated record, or None after clearing all stored tokens
        when there is no refresh token or the provider rejects it.

        Raises:
            ProviderUnavailableError: the token endpoint could not be reached;
                stored tokens are left untouched.
        """
        tokens = self.store.load(self.service)
        if not tokens or not tokens.refresh_token:
            logger.info("No refresh token available for %s", self.service)
            self.clear_tokens()
            return None

        try:
            payload = await self._post_token_endpoint(
                {
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "refresh_token": tokens.refresh_token,
                    "grant_type": "refresh_token",
                },
                TokenRefreshError,
                "Token refresh",
            )
        except TokenRefreshError as e:
            logger.warning("Token refresh failed for %s: %s", self.service, e)
            self.clear_tokens()
            return None

        tokens.access_token = payload["access_token"]
        tokens.expires_at = time.time() + int(payload.get("expires_in", DEFAULT_EXPIRES_IN))
        tokens.token_type = payload.get("token_type", tokens.token_type)
        tokens.scope = payload.get("scope", tokens.scope)
        if payload.get("refresh_token"):
            tokens.refresh_token = payload["refresh_token"]

        self.store.save(tokens)
        logger.info("Refreshed OAuth token for %s", self.service)
        return tokens

    async def get_valid_access_token(self) -> str | None:
        """Get a valid access token, refreshing once if expired."""
        if self.is_authenticated():
            tokens = self.store.load(self.service)
            return tokens.access_token if tokens else None

        refreshed = await self.refresh_access_token()
        return refreshed.access_token if refreshed else None

    def clear_tokens(self) -> None:
        self.store.delete(self.service)

    def sign_out(self, session_id: str = DEFAULT_SESSION) -> None:
        """Forget stored tokens and any authorization still in flight."""
        self.clear_tokens()
        self.state_store.discard(session_id)
        self._validated.clear()
        logger.info("Signed out of %s", self.service)

    async def make_authenticated_request(
        self, method: str, url: str, **kwargs: Any
    ) -> httpx.Response:
        """Send a request with the current bearer token.

        A 401 triggers exactly one refresh and retry.

        Raises:
            AuthenticationError: no usable token, or the refresh failed.
            ProviderUnavailableError: transport failure.
        """
        token = await self.get_valid_access_token()
        if not token:
            raise AuthenticationError("No valid access token available")

        headers = {"Accept": "application/json", **(kwargs.pop("headers", None) or {})}
        headers["Authorization"] = f"Bearer {token}"

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.request(method, url, headers=headers, **kwargs)
                if resp.status_code != 401:
                    return resp

                logger.info("Access token rejected for %s, refreshing", self.service)
                refreshed = await self.refresh_access_token()
                if refreshed is None:
                    raise AuthenticationError("Authentication failed - please re-authorize")

                headers["Authorization"] = f"Bearer {refreshed.access_token}"
                return await client.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            raise ProviderUnavailableError(f"Request to {url} failed: {e}") from e

    async def get_authenticated_email(self) -> str | None:
        """Resolve the signed-in user's email from the provider's userinfo endpoints.

        Endpoints are tried in order; the first one returning an email wins.
        """
        for endpoint in self._config.get("userinfo_urls", []):
            try:
                resp = await self.make_authenticated_request("GET", endpoint)
            except ProviderUnavailableError as e:
                logger.warning("Userinfo endpoint %s unreachable: %s", endpoint, e)
                continue

            if not 200 <= resp.status_code < 300:
                logger.warning("Userinfo endpoint %s returned %s", endpoint, resp.status_code)
                continue

            info = _safe_json(resp)
            emails = info.get("emails") or [{}]
            email = info.get("email") or info.get("emailAddress") or emails[0].get("value")
            if email:
                return email

        return None

    def get_configuration(self) -> dict[str, Any]:
        """Non-secret configuration, for diagnostics."""
        return {
            "provider": self.provider,
            "service": self.service,
            "client_id": f"{self.client_id[:20]}..." if self.client_id else "",
            "redirect_uri": self.redirect_uri,
            "scopes": list(self.scopes),
            "auth_url": self._config["auth_url"],
            "token_url": self._config["token_url"],
        }


# Singleton
_manager: OAuthManager | None = None


def get_oauth_manager() -> OAuthManager:
    global _manager
    if _manager is None:
        _manager = OAuthManager.from_settings()
    return _manager


def reset_oauth_manager() -> None:
    global _manager
    _manager = None

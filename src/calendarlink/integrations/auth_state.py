# Pending authorization attempts (anti-CSRF state + PKCE verifier).
# Created: 2026-02-07
#
# In-memory only: attempts live for a few minutes and one browser session
# holds at most one attempt at a time.

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field

from calendarlink.errors import OAuthError

logger = logging.getLogger(__name__)

DEFAULT_SESSION = "default"
DEFAULT_TTL_SECONDS = 300


@dataclass
class AuthorizationAttempt:
    """One in-flight authorization for a browser session."""

    state: str
    code_verifier: str = ""
    created_at: float = field(default_factory=time.time)

    def is_expired(self, ttl_seconds: float, now: float | None = None) -> bool:
        now = time.time() if now is None else now
        return now - self.created_at > ttl_seconds


class AuthStateStore:
    """Short-lived storage for authorization attempts, keyed by session id."""

    def __init__(self, ttl_seconds: float = DEFAULT_TTL_SECONDS):
        self.ttl_seconds = ttl_seconds
        self._attempts: dict[str, AuthorizationAttempt] = {}

    def save(self, attempt: AuthorizationAttempt, session_id: str = DEFAULT_SESSION) -> None:
        """Store an attempt, replacing any earlier one for the session."""
        if session_id in self._attempts:
            logger.debug("Replacing in-flight authorization attempt for session %s", session_id)
        self._attempts[session_id] = attempt

    def peek(self, session_id: str = DEFAULT_SESSION) -> AuthorizationAttempt | None:
        return self._attempts.get(session_id)

    def discard(self, session_id: str = DEFAULT_SESSION) -> bool:
        return self._attempts.pop(session_id, None) is not None

    def consume(self, state: str, session_id: str = DEFAULT_SESSION) -> AuthorizationAttempt:
        """Remove the session's attempt and validate it against ``state``.

        The attempt is gone afterwards whether or not validation passes.

        Raises:
            OAuthError: no attempt stored, state mismatch, or attempt expired.
        """
        attempt = self._attempts.pop(session_id, None)
        if attempt is None:
            raise OAuthError("No authorization in progress for this session")
        if not state or attempt.state != state:
            raise OAuthError("State parameter mismatch")
        if attempt.is_expired(self.ttl_seconds):
            raise OAuthError("Authorization attempt expired, please start again")
        return attempt

    def cleanup_expired(self) -> int:
        """Drop expired attempts. Returns how many were removed."""
        now = time.time()
        expired = [k for k, v in self._attempts.items() if v.is_expired(self.ttl_seconds, now)]
        for k in expired:
            del self._attempts[k]
        return len(expired)

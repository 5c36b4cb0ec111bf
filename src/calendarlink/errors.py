# Exception hierarchy for the connection lifecycle.
# Created: 2026-02-07
#
# requires_reauth separates "the user must restart authorization" from
# transient failures the caller may simply retry.

from __future__ import annotations


class CalendarLinkError(Exception):
    """Base class for all CalendarLink errors."""

    requires_reauth: bool = False

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class ConfigurationError(CalendarLinkError):
    """Required settings are missing or invalid."""


class OAuthError(CalendarLinkError):
    """Malformed, forged or expired authorization callback."""

    requires_reauth = True


OAuthCallbackError = OAuthError


class TokenExchangeError(CalendarLinkError):
    """The provider rejected an authorization code exchange."""

    requires_reauth = True

    def __init__(
        self,
        message: str,
        error: str | None = None,
        error_description: str | None = None,
        status_code: int | None = None,
    ):
        super().__init__(message)
        self.error = error
        self.error_description = error_description
        self.status_code = status_code


class TokenRefreshError(TokenExchangeError):
    """The provider rejected a refresh token grant."""


class AuthenticationError(CalendarLinkError):
    """No usable access token; the user has to authorize again."""

    requires_reauth = True


class ProviderUnavailableError(CalendarLinkError):
    """The calendar provider could not be reached."""


class BrokerUnavailableError(CalendarLinkError):
    """The connection broker is unreachable or returned malformed data."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ConnectionValidationError(CalendarLinkError):
    """The broker initiated a connection that cannot be completed."""


class ConnectionNotFoundError(CalendarLinkError):
    """No stored connection exists for the user."""


class ConnectionInactiveError(CalendarLinkError):
    """The user's connection exists but cannot be used for calendar calls."""

    requires_reauth = True

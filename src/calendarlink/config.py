# Configuration: pydantic-settings backed, env prefix CALENDARLINK_.
# Created: 2026-02-07
#
# Values come from the environment or a .env file in the working directory.
# get_settings() caches a single instance; reset_settings() clears it for tests.

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import Annotated, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

logger = logging.getLogger(__name__)

DEFAULT_GOOGLE_SCOPES = [
    "https://www.googleapis.com/auth/calendar",
    "https://www.googleapis.com/auth/userinfo.email",
]


class Settings(BaseSettings):
    """CalendarLink settings."""

    model_config = SettingsConfigDict(
        env_prefix="CALENDARLINK_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Direct provider OAuth (authorization code + PKCE)
    google_oauth_client_id: str | None = None
    google_oauth_client_secret: str | None = None
    google_oauth_redirect_uri: str = "http://localhost:8888/api/v1/oauth/google/callback"
    google_oauth_scopes: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: list(DEFAULT_GOOGLE_SCOPES)
    )
    oauth_state_ttl_seconds: int = 300

    # Connection broker
    broker_api_key: str | None = None
    broker_base_url: str = "https://backend.composio.dev"
    broker_app_name: str = "googlecalendar"
    broker_redirect_url: str | None = None
    broker_timeout: float = 30.0

    # Connection lifecycle
    setup_poll_attempts: int = 5
    setup_poll_interval_ms: int = 2000
    poll_attempts: int = 10
    poll_interval_ms: int = 3000
    setup_strictness: Literal["lenient", "strict"] = "lenient"
    unknown_status_active: bool = True

    # Persistence
    connection_store: Literal["memory", "file"] = "memory"
    data_dir: Path = Field(default_factory=lambda: Path.home() / ".calendarlink")

    # Server
    host: str = "127.0.0.1"
    port: int = 8888
    client_url: str = "http://localhost:5173"
    cors_allowed_origins: Annotated[list[str], NoDecode] = Field(default_factory=list)
    log_level: str = "INFO"

    @field_validator("google_oauth_scopes", "cors_allowed_origins", mode="before")
    @classmethod
    def _split_comma_list(cls, v):
        if isinstance(v, str):
            return [item.strip() for item in v.split(",") if item.strip()]
        return v

    def missing_oauth_config(self) -> list[str]:
        """Names of the provider OAuth settings that are not configured."""
        missing = []
        if not self.google_oauth_client_id:
            missing.append("CALENDARLINK_GOOGLE_OAUTH_CLIENT_ID")
        if not self.google_oauth_client_secret:
            missing.append("CALENDARLINK_GOOGLE_OAUTH_CLIENT_SECRET")
        if not self.google_oauth_redirect_uri:
            missing.append("CALENDARLINK_GOOGLE_OAUTH_REDIRECT_URI")
        return missing

    @classmethod
    def load(cls) -> Settings:
        return cls()


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the process-wide settings instance."""
    settings = Settings.load()
    logger.debug("Settings loaded (data_dir=%s)", settings.data_dir)
    return settings


def reset_settings() -> None:
    get_settings.cache_clear()


def get_config_dir() -> Path:
    """Get/create the data directory."""
    d = get_settings().data_dir
    d.mkdir(parents=True, exist_ok=True)
    return d

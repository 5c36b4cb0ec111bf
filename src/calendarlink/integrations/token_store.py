# Token Store: file-based OAuth token persistence at <data_dir>/oauth/.
# Created: 2026-02-07

from __future__ import annotations

import json
import logging
import os
import stat
import time
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Protocol

from calendarlink.config import get_config_dir

logger = logging.getLogger(__name__)


@dataclass
class TokenRecord:
    """OAuth 2.0 token set for a service."""

    service: str
    access_token: str
    refresh_token: str | None = None
    expires_at: float | None = None  # Unix timestamp
    token_type: str = "Bearer"
    scope: str = ""

    def is_expired(self, now: float | None = None) -> bool:
        if self.expires_at is None:
            return True
        now = time.time() if now is None else now
        return self.expires_at <= now

    @classmethod
    def from_dict(cls, data: dict) -> TokenRecord:
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


class TokenStoreProtocol(Protocol):
    def save(self, tokens: TokenRecord) -> None: ...

    def load(self, service: str) -> TokenRecord | None: ...

    def delete(self, service: str) -> bool: ...


def _get_oauth_dir() -> Path:
    """Get/create the OAuth token directory."""
    d = get_config_dir() / "oauth"
    d.mkdir(exist_ok=True)
    return d


class TokenStore:
    """File-based token store at <data_dir>/oauth/{service}.json.

    Files are chmod 0600 (owner-only read/write).
    """

    @staticmethod
    def _path(service: str) -> Path:
        return _get_oauth_dir() / f"{service}.json"

    def save(self, tokens: TokenRecord) -> None:
        """Write the record, replacing any previous one for the service."""
        path = self._path(tokens.service)
        temp_path = path.with_suffix(".tmp")
        temp_path.write_text(json.dumps(asdict(tokens), indent=2))
        os.chmod(temp_path, stat.S_IRUSR | stat.S_IWUSR)
        temp_path.replace(path)
        logger.info("Saved OAuth tokens for %s", tokens.service)

    def load(self, service: str) -> TokenRecord | None:
        """Stored record, or None when missing or unreadable."""
        path = self._path(service)
        if not path.exists():
            return None
        try:
            return TokenRecord.from_dict(json.loads(path.read_text()))
        except (json.JSONDecodeError, OSError, TypeError) as e:
            logger.warning("Ignoring unreadable token file %s: %s", path, e)
            return None

    def delete(self, service: str) -> bool:
        path = self._path(service)
        if not path.exists():
            return False
        path.unlink()
        logger.info("Deleted OAuth tokens for %s", service)
        return True

    def list_services(self) -> list[str]:
        """List all services with stored tokens."""
        return [f.stem for f in _get_oauth_dir().glob("*.json")]


class MemoryTokenStore:
    """Process-local token store; contents are lost on restart."""

    def __init__(self) -> None:
        self._tokens: dict[str, TokenRecord] = {}

    def save(self, tokens: TokenRecord) -> None:
        self._tokens[tokens.service] = tokens

    def load(self, service: str) -> TokenRecord | None:
        return self._tokens.get(service)

    def delete(self, service: str) -> bool:
        return self._tokens.pop(service, None) is not None

    def list_services(self) -> list[str]:
        return list(self._tokens)

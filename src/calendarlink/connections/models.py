"""Connection lifecycle data models.

Created: 2026-02-08

These models describe:
- The system's own connection status (a closed set of five states)
- Broker-reported connection candidates (transient, never persisted)
- The per-user connection record the orchestrator persists
- The status report handed back to callers

Design notes:
- Dataclasses, like the rest of the codebase
- Timestamps on persisted records are ISO 8601 strings for JSON serialization
- Candidate timestamps are datetimes so they sort correctly
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

# ============================================================================
# Enums
# ============================================================================


class ConnectionStatus(str, Enum):
    """Lifecycle state of a user's delegated calendar connection."""

    NOT_FOUND = "not_found"  # Nothing set up, or forgotten by the user
    PENDING = "pending"  # Waiting on the user to finish OAuth at the broker
    ACTIVE = "active"  # Usable; calendar operations may be invoked
    ERROR = "error"  # Broker reported a failure, or setup raised
    DISCONNECTED = "disconnected"  # Was active, a later probe failed

    @property
    def is_terminal(self) -> bool:
        return self in (ConnectionStatus.ACTIVE, ConnectionStatus.ERROR)


class Strictness(str, Enum):
    """How generously a free-text broker status is read as "active"."""

    LENIENT = "lenient"  # Initial setup: "initiated"/"enabled" count as active
    STRICT = "strict"  # Confirmation polling: only exact active terms count


# ============================================================================
# Helper Functions
# ============================================================================


def now_iso() -> str:
    """Get current UTC time as ISO 8601 string."""
    return datetime.now(UTC).isoformat()


def parse_timestamp(value: Any) -> datetime | None:
    """Parse a broker timestamp (ISO 8601 string, epoch seconds or ms)."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if isinstance(value, int | float):
        seconds = value / 1000 if value > 1e11 else value
        return datetime.fromtimestamp(seconds, tz=UTC)
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


# ============================================================================
# Broker-side views
# ============================================================================


@dataclass
class ConnectionCandidate:
    """A single broker-reported connection considered during resolution."""

    id: str
    app_name: str = ""
    status: str = ""  # Broker free text, e.g. "ACTIVE", "INITIATED"
    created_at: datetime | None = None
    redirect_url: str | None = None


@dataclass
class InitiatedConnection:
    """Broker response to starting a new connection."""

    connection_id: str
    redirect_url: str | None
    status: str = ""


@dataclass
class BrokerTool:
    """An invokable operation the broker exposes once a connection is active."""

    name: str
    description: str = ""
    app_name: str = ""
    parameters: dict[str, Any] = field(default_factory=dict)


# ============================================================================
# Persisted record
# ============================================================================


@dataclass
class UserConnection:
    """One logical connection per user, whatever the broker holds physically.

    Attributes:
        user_id: Caller-supplied identifier (usually an email)
        entity_id: Broker entity derived from user_id
        connection_id: Broker id of the chosen connection
        status: Our classification, not the broker's free text
        redirect_url: Where the user finishes OAuth; only while pending
        error: Last failure message, or the raw broker status for diagnostics
        created_at: First setup attempt
        last_updated: Last probe/poll/setup write
    """

    user_id: str
    entity_id: str
    connection_id: str | None = None
    status: ConnectionStatus = ConnectionStatus.NOT_FOUND
    redirect_url: str | None = None
    error: str | None = None
    created_at: str = field(default_factory=now_iso)
    last_updated: str = field(default_factory=now_iso)

    def touch(self) -> None:
        self.last_updated = now_iso()

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "entity_id": self.entity_id,
            "connection_id": self.connection_id,
            "status": self.status.value,
            "redirect_url": self.redirect_url,
            "error": self.error,
            "created_at": self.created_at,
            "last_updated": self.last_updated,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UserConnection:
        return cls(
            user_id=data["user_id"],
            entity_id=data["entity_id"],
            connection_id=data.get("connection_id"),
            status=ConnectionStatus(data.get("status", ConnectionStatus.NOT_FOUND.value)),
            redirect_url=data.get("redirect_url"),
            error=data.get("error"),
            created_at=data.get("created_at") or now_iso(),
            last_updated=data.get("last_updated") or now_iso(),
        )


@dataclass
class ConnectionReport:
    """What callers see: a state, an optional message and what to do next."""

    status: ConnectionStatus
    message: str = ""
    connection_id: str | None = None
    redirect_url: str | None = None
    error: str | None = None
    tools_available: int | None = None
    needs_setup: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "message": self.message,
            "connection_id": self.connection_id,
            "redirect_url": self.redirect_url,
            "error": self.error,
            "tools_available": self.tools_available,
            "needs_setup": self.needs_setup,
        }

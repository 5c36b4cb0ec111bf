# Free-text broker status -> ConnectionStatus.
# Created: 2026-02-08
#
# One function for every call site; callers choose the strictness. Rules in
# priority order:
#   1. contains a failure term                -> ERROR
#   2. equals a strict active term            -> ACTIVE
#   3. contains a loose active term           -> ACTIVE (lenient) / PENDING (strict)
#   4. contains an in-progress term           -> PENDING
#   5. empty or unrecognized                  -> ACTIVE if unknown_is_active else PENDING

from __future__ import annotations

from calendarlink.connections.models import ConnectionStatus, Strictness

FAILURE_TERMS = ("failed", "error", "cancelled", "invalid", "deleted")
STRICT_ACTIVE_TERMS = ("active", "connected", "ready", "authenticated")
LENIENT_ACTIVE_TERMS = STRICT_ACTIVE_TERMS + ("initiated", "enabled")
IN_PROGRESS_TERMS = ("initializing", "pending", "processing")

# Statuses that show a connection is alive but maybe not yet usable; used by
# duplicate resolution to rank non-active candidates.
VALID_STATE_TERMS = ("initiated", "connected", "ready", "enabled", "authenticated")


def normalize_status(raw: str | None) -> str:
    return (raw or "").strip().lower()


def is_failure_status(raw: str | None) -> bool:
    s = normalize_status(raw)
    return any(term in s for term in FAILURE_TERMS)


def is_strict_active_status(raw: str | None) -> bool:
    return normalize_status(raw) in STRICT_ACTIVE_TERMS


def is_valid_state_status(raw: str | None) -> bool:
    s = normalize_status(raw)
    return not is_failure_status(s) and any(term in s for term in VALID_STATE_TERMS)


def classify_status(
    raw: str | None,
    strictness: Strictness = Strictness.STRICT,
    unknown_is_active: bool = True,
) -> ConnectionStatus:
    """Classify a broker status string. Case and surrounding whitespace are ignored."""
    s = normalize_status(raw)

    if any(term in s for term in FAILURE_TERMS):
        return ConnectionStatus.ERROR
    if s in STRICT_ACTIVE_TERMS:
        return ConnectionStatus.ACTIVE
    if any(term in s for term in LENIENT_ACTIVE_TERMS):
        if Strictness(strictness) is Strictness.LENIENT:
            return ConnectionStatus.ACTIVE
        return ConnectionStatus.PENDING
    if any(term in s for term in IN_PROGRESS_TERMS):
        return ConnectionStatus.PENDING
    return ConnectionStatus.ACTIVE if unknown_is_active else ConnectionStatus.PENDING

# Duplicate Connection Resolver: collapse several broker connections to one.
# Created: 2026-02-08
#
# Broker-side connection creation is not idempotent; retries and double
# clicks can leave several connections for one user + app. select() picks the
# one to keep, DuplicateResolver.resolve() also deletes the rest best-effort.

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime

from calendarlink.broker.deletion import DEFAULT_STRATEGIES, DeletionStrategy, delete_connection
from calendarlink.connections.classify import is_strict_active_status, is_valid_state_status
from calendarlink.connections.models import ConnectionCandidate

logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=UTC)


@dataclass
class Resolution:
    """Outcome of duplicate resolution."""

    keep: ConnectionCandidate | None = None
    to_delete: list[ConnectionCandidate] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    undeletable: list[str] = field(default_factory=list)


def _most_recent(candidates: list[ConnectionCandidate]) -> ConnectionCandidate:
    # Ties on created_at fall back to the id so repeated runs agree.
    return max(candidates, key=lambda c: (c.created_at or _EPOCH, c.id))


def select(candidates: list[ConnectionCandidate]) -> Resolution:
    """Choose which candidate to keep; every other one is marked for deletion.

    Priority: strictly active > valid but not yet active > anything, taking
    the most recently created within the first non-empty bucket.
    """
    if not candidates:
        return Resolution()
    if len(candidates) == 1:
        return Resolution(keep=candidates[0])

    active = [c for c in candidates if is_strict_active_status(c.status)]
    valid = [c for c in candidates if is_valid_state_status(c.status)]
    if active:
        keep = _most_recent(active)
    elif valid:
        keep = _most_recent(valid)
    else:
        keep = _most_recent(candidates)

    return Resolution(keep=keep, to_delete=[c for c in candidates if c is not keep])


class DuplicateResolver:
    """Selects one connection and deletes the duplicates through the broker."""

    def __init__(
        self,
        broker,
        strategies: tuple[DeletionStrategy, ...] | list[DeletionStrategy] = DEFAULT_STRATEGIES,
    ):
        self.broker = broker
        self.strategies = strategies

    async def resolve(self, entity_id: str, candidates: list[ConnectionCandidate]) -> Resolution:
        """Select a keeper and try to delete the rest.

        A candidate no strategy can delete is recorded in ``undeletable``; it
        never prevents returning the keeper.
        """
        resolution = select(candidates)
        if resolution.keep is None or not resolution.to_delete:
            return resolution

        logger.info(
            "Entity %s has %d connections, keeping %s (status %r), deleting %d",
            entity_id,
            len(candidates),
            resolution.keep.id,
            resolution.keep.status,
            len(resolution.to_delete),
        )
        for candidate in resolution.to_delete:
            used = await delete_connection(self.broker, entity_id, candidate.id, self.strategies)
            if used is None:
                resolution.undeletable.append(candidate.id)
            else:
                resolution.deleted.append(candidate.id)

        return resolution

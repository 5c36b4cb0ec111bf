# Connection deletion strategies.
# Created: 2026-02-08
#
# Brokers expose deletion in more than one shape. Each strategy declares the
# capability protocol it needs; strategies are tried in order and the first
# one that succeeds wins. Deletion is best-effort: failures are logged, never
# raised.

from __future__ import annotations

import logging
from typing import Any, Protocol

from calendarlink.broker.protocol import (
    SupportsConnectedAccountDelete,
    SupportsConnectionDisable,
    SupportsEntityConnectionDelete,
)

logger = logging.getLogger(__name__)


class DeletionStrategy(Protocol):
    name: str

    def supports(self, client: Any) -> bool: ...

    async def delete(self, client: Any, entity_id: str, connection_id: str) -> None: ...


class EntityConnectionDelete:
    """Delete through the entity's own connection list."""

    name = "entity_connection_delete"

    def supports(self, client: Any) -> bool:
        return isinstance(client, SupportsEntityConnectionDelete)

    async def delete(self, client: Any, entity_id: str, connection_id: str) -> None:
        await client.delete_entity_connection(entity_id, connection_id)


class ConnectedAccountDelete:
    """Delete the connected account directly by id."""

    name = "connected_account_delete"

    def supports(self, client: Any) -> bool:
        return isinstance(client, SupportsConnectedAccountDelete)

    async def delete(self, client: Any, entity_id: str, connection_id: str) -> None:
        await client.delete_connected_account(connection_id)


class DisableConnection:
    """Last resort: disable the connection so it can never become active."""

    name = "disable_connection"

    def supports(self, client: Any) -> bool:
        return isinstance(client, SupportsConnectionDisable)

    async def delete(self, client: Any, entity_id: str, connection_id: str) -> None:
        await client.disable_connection(connection_id)


DEFAULT_STRATEGIES: tuple[DeletionStrategy, ...] = (
    EntityConnectionDelete(),
    ConnectedAccountDelete(),
    DisableConnection(),
)


async def delete_connection(
    client: Any,
    entity_id: str,
    connection_id: str,
    strategies: tuple[DeletionStrategy, ...] | list[DeletionStrategy] = DEFAULT_STRATEGIES,
) -> str | None:
    """Try each supported strategy in order.

    Returns the name of the strategy that worked, or None if none did.
    """
    for strategy in strategies:
        if not strategy.supports(client):
            continue
        try:
            await strategy.delete(client, entity_id, connection_id)
        except Exception as e:
            logger.warning(
                "Deleting connection %s via %s failed: %s", connection_id, strategy.name, e
            )
            continue
        logger.info("Deleted connection %s via %s", connection_id, strategy.name)
        return strategy.name

    logger.warning("Could not delete connection %s: no working deletion method", connection_id)
    return None

"""Connection broker protocols.

Created: 2026-02-08
Defines the interface the lifecycle manager needs from a connection broker.

The core protocol covers entities, connections and tool handles. Deleting a
connection is split into separate capability protocols because brokers expose
it in different shapes; see calendarlink.broker.deletion for how they are tried.
"""

from typing import Any, Protocol, runtime_checkable

from calendarlink.connections.models import BrokerTool, ConnectionCandidate, InitiatedConnection


@runtime_checkable
class BrokerClientProtocol(Protocol):
    """Protocol every broker client implements.

    All methods raise BrokerUnavailableError when the broker cannot be
    reached or answers with something unusable.
    """

    async def get_entity(self, entity_id: str) -> dict[str, Any] | None:
        """Fetch an entity. Returns None if it does not exist."""
        ...

    async def create_entity(self, entity_id: str) -> None:
        """Create an entity. "Already exists" is not an error."""
        ...

    async def list_connections(self, entity_id: str, app_name: str) -> list[ConnectionCandidate]:
        """List the entity's connections for one application."""
        ...

    async def get_connection(self, connection_id: str) -> ConnectionCandidate | None:
        """Fetch one connection. Returns None if the broker does not know it."""
        ...

    async def initiate_connection(
        self, entity_id: str, app_name: str, redirect_url: str | None = None
    ) -> InitiatedConnection:
        """Start a new connection; the user completes it at the redirect URL."""
        ...

    async def list_tools(self, entity_id: str, app_name: str) -> list[BrokerTool]:
        """Tool handles usable on behalf of the entity."""
        ...


# =========================================================================
# Deletion capabilities
# =========================================================================


@runtime_checkable
class SupportsEntityConnectionDelete(Protocol):
    async def delete_entity_connection(self, entity_id: str, connection_id: str) -> None: ...


@runtime_checkable
class SupportsConnectedAccountDelete(Protocol):
    async def delete_connected_account(self, connection_id: str) -> None: ...


@runtime_checkable
class SupportsConnectionDisable(Protocol):
    async def disable_connection(self, connection_id: str) -> None: ...

"""Connection broker access.

Created: 2026-02-08

The broker owns delegated, OAuth-protected tool connections on behalf of each
user ("entity"). This package holds the protocol the lifecycle manager
depends on, the HTTP client that implements it, and the ordered deletion
strategies used when collapsing duplicate connections.
"""

from calendarlink.broker.client import BrokerClient, parse_candidate
from calendarlink.broker.deletion import (
    DEFAULT_STRATEGIES,
    ConnectedAccountDelete,
    DeletionStrategy,
    DisableConnection,
    EntityConnectionDelete,
    delete_connection,
)
from calendarlink.broker.protocol import (
    BrokerClientProtocol,
    SupportsConnectedAccountDelete,
    SupportsConnectionDisable,
    SupportsEntityConnectionDelete,
)

__all__ = [
    "BrokerClient",
    "BrokerClientProtocol",
    "ConnectedAccountDelete",
    "DEFAULT_STRATEGIES",
    "DeletionStrategy",
    "DisableConnection",
    "EntityConnectionDelete",
    "SupportsConnectedAccountDelete",
    "SupportsConnectionDisable",
    "SupportsEntityConnectionDelete",
    "delete_connection",
    "parse_candidate",
]

"""Connection lifecycle for delegated calendar access.

Created: 2026-02-08

One logical connection per user, whatever the broker holds physically:
- models: statuses, broker candidates, persisted records, status reports
- classify: free-text broker status -> ConnectionStatus
- poller: bounded, cancellable polling until a terminal state
- resolver: collapse duplicate broker connections to one
- store: per-user record persistence (memory or JSON file)
- manager: the orchestrator callers use
"""

from calendarlink.connections.classify import classify_status
from calendarlink.connections.manager import (
    ConnectionManager,
    derive_entity_id,
    get_connection_manager,
    reset_connection_manager,
)
from calendarlink.connections.models import (
    BrokerTool,
    ConnectionCandidate,
    ConnectionReport,
    ConnectionStatus,
    InitiatedConnection,
    Strictness,
    UserConnection,
)
from calendarlink.connections.poller import PollHandle, poll_until_active, start_poll
from calendarlink.connections.resolver import DuplicateResolver, Resolution, select
from calendarlink.connections.store import (
    ConnectionStoreProtocol,
    FileConnectionStore,
    MemoryConnectionStore,
    create_connection_store,
)

__all__ = [
    "BrokerTool",
    "ConnectionCandidate",
    "ConnectionManager",
    "ConnectionReport",
    "ConnectionStatus",
    "ConnectionStoreProtocol",
    "DuplicateResolver",
    "FileConnectionStore",
    "InitiatedConnection",
    "MemoryConnectionStore",
    "PollHandle",
    "Resolution",
    "Strictness",
    "UserConnection",
    "classify_status",
    "create_connection_store",
    "derive_entity_id",
    "get_connection_manager",
    "poll_until_active",
    "reset_connection_manager",
    "select",
    "start_poll",
]

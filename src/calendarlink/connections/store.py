"""Connection record storage.

Created: 2026-02-08
Persists one UserConnection per user id.

Two implementations share ConnectionStoreProtocol:
- MemoryConnectionStore: process-local dict (lost on restart)
- FileConnectionStore: JSON file under the data dir, loaded into memory on
  start and rewritten atomically (temp file + rename) on every change

The orchestrator depends only on the protocol, so a database-backed store
can be dropped in without touching the lifecycle logic.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Protocol, runtime_checkable

from calendarlink.config import Settings, get_config_dir, get_settings
from calendarlink.connections.models import UserConnection

logger = logging.getLogger(__name__)


@runtime_checkable
class ConnectionStoreProtocol(Protocol):
    """Keyed by user id."""

    async def get(self, user_id: str) -> UserConnection | None: ...

    async def set(self, connection: UserConnection) -> None: ...

    async def delete(self, user_id: str) -> bool: ...

    async def list(self) -> list[UserConnection]: ...


class MemoryConnectionStore:
    """In-memory implementation of ConnectionStoreProtocol."""

    def __init__(self) -> None:
        self._connections: dict[str, UserConnection] = {}

    async def get(self, user_id: str) -> UserConnection | None:
        return self._connections.get(user_id)

    async def set(self, connection: UserConnection) -> None:
        self._connections[connection.user_id] = connection

    async def delete(self, user_id: str) -> bool:
        return self._connections.pop(user_id, None) is not None

    async def list(self) -> list[UserConnection]:
        return list(self._connections.values())


class FileConnectionStore(MemoryConnectionStore):
    """JSON-file backed store at <data_dir>/connections.json."""

    def __init__(self, path: Path | None = None):
        super().__init__()
        self.path = path or get_config_dir() / "connections.json"
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._load()

    def _load(self) -> None:
        if not self.path.exists():
            return
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
            for entry in data:
                conn = UserConnection.from_dict(entry)
                self._connections[conn.user_id] = conn
            logger.debug("Loaded %d connections from %s", len(self._connections), self.path)
        except (json.JSONDecodeError, OSError, KeyError, ValueError) as e:
            logger.error("Error loading %s: %s", self.path, e)

    def _save(self) -> None:
        temp_path = self.path.with_suffix(".tmp")
        try:
            with open(temp_path, "w", encoding="utf-8") as f:
                json.dump(
                    [c.to_dict() for c in self._connections.values()],
                    f,
                    indent=2,
                    ensure_ascii=False,
                )
            temp_path.replace(self.path)
        except OSError as e:
            logger.error("Error saving %s: %s", self.path, e)
            if temp_path.exists():
                temp_path.unlink()

    async def set(self, connection: UserConnection) -> None:
        await super().set(connection)
        self._save()

    async def delete(self, user_id: str) -> bool:
        deleted = await super().delete(user_id)
        if deleted:
            self._save()
        return deleted


def create_connection_store(settings: Settings | None = None) -> ConnectionStoreProtocol:
    settings = settings or get_settings()
    if settings.connection_store == "file":
        return FileConnectionStore()
    return MemoryConnectionStore()

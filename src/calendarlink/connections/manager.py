"""Connection lifecycle manager.

Created: 2026-02-08

The user-facing entry point for delegated calendar connections. Combines the
broker client, the duplicate resolver, the poller and the connection store:
- ensure_connection(): entity + resolution + short setup poll, serialized per user
- check_status(): one probe of the stored connection
- poll_connection_status() / start_poll(): user-initiated confirmation poll
- sign_out(): forget the connection (optionally deleting it at the broker)
- handle_broker_callback() / handle_webhook(): out-of-band updates from the broker

Callers only ever see UserConnection / ConnectionReport, never broker payloads.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any

from calendarlink.broker.deletion import DEFAULT_STRATEGIES, DeletionStrategy, delete_connection
from calendarlink.broker.protocol import BrokerClientProtocol
from calendarlink.config import Settings, get_settings
from calendarlink.connections.classify import classify_status, is_failure_status
from calendarlink.connections.locks import KeyedLock
from calendarlink.connections.models import (
    BrokerTool,
    ConnectionCandidate,
    ConnectionReport,
    ConnectionStatus,
    Strictness,
    UserConnection,
)
from calendarlink.connections.poller import PollHandle, poll_until_active
from calendarlink.connections.resolver import DuplicateResolver
from calendarlink.connections.store import ConnectionStoreProtocol, create_connection_store
from calendarlink.errors import (
    BrokerUnavailableError,
    ConnectionNotFoundError,
    ConnectionValidationError,
)

logger = logging.getLogger(__name__)

WEBHOOK_EVENTS = ("connection.created", "connection.updated")


def derive_entity_id(user_id: str) -> str:
    """Stable broker entity id for a user: non-alphanumerics become ``_``, lowercased."""
    return re.sub(r"[^a-zA-Z0-9]", "_", user_id).lower()


def _tracks(conn: UserConnection | None, connection_id: str) -> bool:
    """True while the stored record still points at ``connection_id``."""
    return (
        conn is not None
        and conn.status is not ConnectionStatus.NOT_FOUND
        and conn.connection_id == connection_id
    )


class ConnectionManager:
    """High-level manager for per-user broker connections.

    Only this class mutates stored connection records. Setup for one user is
    serialized; different users never wait on each other.
    """

    def __init__(
        self,
        broker: BrokerClientProtocol,
        store: ConnectionStoreProtocol | None = None,
        settings: Settings | None = None,
        strategies: tuple[DeletionStrategy, ...] | list[DeletionStrategy] = DEFAULT_STRATEGIES,
    ):
        """Initialize the manager.

        Args:
            broker: Client implementing BrokerClientProtocol
            store: Connection store. Built from settings if not provided.
            settings: Uses the cached settings if not provided.
            strategies: Ordered deletion strategies for duplicates and revocation
        """
        self.settings = settings or get_settings()
        self.broker = broker
        self.store = store or create_connection_store(self.settings)
        self.strategies = strategies
        self.resolver = DuplicateResolver(broker, strategies)
        self.app_name = self.settings.broker_app_name
        self.setup_strictness = Strictness(self.settings.setup_strictness)
        self.unknown_is_active = self.settings.unknown_status_active
        self._locks = KeyedLock()
        self._polls: dict[str, PollHandle] = {}

    # =========================================================================
    # Setup
    # =========================================================================

    async def ensure_connection(self, user_id: str) -> UserConnection:
        """Make sure the user has exactly one usable (or completable) connection.

        Returns the persisted record: ``active``, or ``pending`` with the
        redirect URL the user must visit. Any failure is persisted as
        ``error`` with its message and then re-raised.
        """
        entity_id = derive_entity_id(user_id)
        async with self._locks.acquire(user_id):
            conn = await self.store.get(user_id) or UserConnection(
                user_id=user_id, entity_id=entity_id
            )
            conn.entity_id = entity_id
            try:
                return await self._setup(conn)
            except Exception as e:
                logger.error("Connection setup failed for %s: %s", user_id, e)
                conn.status = ConnectionStatus.ERROR
                conn.error = str(e) or type(e).__name__
                conn.touch()
                await self.store.set(conn)
                raise

    async def _setup(self, conn: UserConnection) -> UserConnection:
        await self._ensure_entity(conn.entity_id)

        candidates = await self.broker.list_connections(conn.entity_id, self.app_name)
        candidates = [c for c in candidates if self._is_our_app(c)]
        resolution = await self.resolver.resolve(conn.entity_id, candidates)
        keep = resolution.keep

        if keep is not None:
            status = self._classify(keep.status, self.setup_strictness)
            if status is ConnectionStatus.PENDING:
                logger.info(
                    "Connection %s for %s is %r, polling briefly",
                    keep.id,
                    conn.user_id,
                    keep.status,
                )
                result = await poll_until_active(
                    self.broker,
                    keep.id,
                    self.settings.setup_poll_attempts,
                    self.settings.setup_poll_interval_ms,
                    strictness=self.setup_strictness,
                    unknown_is_active=self.unknown_is_active,
                )
                if result is None:
                    known = conn.redirect_url if conn.connection_id == keep.id else None
                    conn.redirect_url = keep.redirect_url or known
                    return await self._persist(conn, keep.id, ConnectionStatus.PENDING)
                keep, status = result

            if status is ConnectionStatus.ACTIVE:
                return await self._persist(conn, keep.id, ConnectionStatus.ACTIVE)

            logger.info(
                "Kept connection %s for %s failed (%r), initiating a new one",
                keep.id,
                conn.user_id,
                keep.status,
            )

        initiated = await self.broker.initiate_connection(
            conn.entity_id, self.app_name, self.settings.broker_redirect_url or None
        )
        if not initiated.connection_id:
            raise ConnectionValidationError("Broker did not return a connection id")
        if not initiated.redirect_url:
            raise ConnectionValidationError(
                f"Broker did not return a redirect URL for connection {initiated.connection_id}"
            )

        logger.info("Initiated connection %s for %s", initiated.connection_id, conn.user_id)
        conn.redirect_url = initiated.redirect_url
        return await self._persist(conn, initiated.connection_id, ConnectionStatus.PENDING)

    async def _ensure_entity(self, entity_id: str) -> None:
        if await self.broker.get_entity(entity_id) is None:
            logger.info("Creating broker entity %s", entity_id)
            await self.broker.create_entity(entity_id)

    async def _persist(
        self, conn: UserConnection, connection_id: str, status: ConnectionStatus
    ) -> UserConnection:
        conn.connection_id = connection_id
        conn.status = status
        conn.error = None
        if status is ConnectionStatus.ACTIVE:
            conn.redirect_url = None
        conn.touch()
        await self.store.set(conn)
        logger.info("Connection for %s is %s (%s)", conn.user_id, status.value, connection_id)
        return conn

    # =========================================================================
    # Status
    # =========================================================================

    async def check_status(self, user_id: str) -> ConnectionReport:
        """Probe the stored connection once and report its state.

        A broker outage never rewrites the stored record.
        """
        conn = await self.store.get(user_id)
        if conn is None or conn.status is ConnectionStatus.NOT_FOUND:
            return ConnectionReport(
                status=ConnectionStatus.NOT_FOUND,
                message="No connection found",
                needs_setup=True,
            )

        if conn.status is ConnectionStatus.ERROR:
            return ConnectionReport(
                status=ConnectionStatus.ERROR,
                message=conn.error or "Connection error",
                connection_id=conn.connection_id,
                error=conn.error,
                needs_setup=True,
            )

        if conn.status is ConnectionStatus.PENDING:
            report = await self._probe_pending(conn)
            if report is not None:
                return report

        return await self._probe_tools(conn)

    async def _probe_pending(self, conn: UserConnection) -> ConnectionReport | None:
        """Strict check of a pending connection. None means it became active."""
        pending = ConnectionReport(
            status=ConnectionStatus.PENDING,
            message="Connection pending authentication",
            connection_id=conn.connection_id,
            redirect_url=conn.redirect_url,
        )
        if not conn.connection_id:
            return pending

        try:
            candidate = await self.broker.get_connection(conn.connection_id)
        except BrokerUnavailableError as e:
            logger.warning("Could not check pending connection for %s: %s", conn.user_id, e)
            return pending

        if candidate is None:
            conn.status = ConnectionStatus.ERROR
            conn.error = "Connection not found at broker"
            conn.touch()
            await self.store.set(conn)
            return ConnectionReport(
                status=ConnectionStatus.ERROR,
                message=conn.error,
                connection_id=conn.connection_id,
                error=conn.error,
                needs_setup=True,
            )

        status = self._classify(candidate.status, Strictness.STRICT)
        await self._record_classification(conn.user_id, conn.connection_id, candidate, status)
        if status is ConnectionStatus.ACTIVE:
            return None
        if status is ConnectionStatus.PENDING:
            pending.message = (
                f"Connection is still initializing ({candidate.status}) - "
                "complete authorization or retry later"
            )
            return pending
        return ConnectionReport(
            status=ConnectionStatus.ERROR,
            message=f"Connection failed with status: {candidate.status}",
            connection_id=conn.connection_id,
            error=candidate.status,
            needs_setup=True,
        )

    async def _probe_tools(self, conn: UserConnection) -> ConnectionReport:
        try:
            tools = await self.get_user_tools(conn.user_id)
        except ConnectionNotFoundError as e:
            return ConnectionReport(
                status=ConnectionStatus.DISCONNECTED,
                message=str(e),
                connection_id=conn.connection_id,
                needs_setup=True,
            )
        except BrokerUnavailableError as e:
            return ConnectionReport(
                status=ConnectionStatus.ERROR,
                message=str(e),
                connection_id=conn.connection_id,
                error=str(e),
            )

        if not tools:
            conn.status = ConnectionStatus.DISCONNECTED
            conn.error = "No tools available"
            conn.touch()
            await self.store.set(conn)
            return ConnectionReport(
                status=ConnectionStatus.DISCONNECTED,
                message="No tools available - connection may be inactive",
                connection_id=conn.connection_id,
                needs_setup=True,
            )

        if conn.status is not ConnectionStatus.ACTIVE:
            conn.status = ConnectionStatus.ACTIVE
            conn.error = None
            conn.redirect_url = None
            conn.touch()
            await self.store.set(conn)
        return ConnectionReport(
            status=ConnectionStatus.ACTIVE,
            message="Connection is active",
            connection_id=conn.connection_id,
            tools_available=len(tools),
        )

    async def get_user_tools(self, user_id: str) -> list[BrokerTool]:
        """Tool handles for the user's connection.

        Raises ConnectionNotFoundError (and marks the record disconnected)
        when the broker holds no usable connection for the user.
        """
        conn = await self.store.get(user_id)
        if conn is None:
            raise ConnectionNotFoundError(f"No connection found for {user_id}")

        try:
            candidates = await self.broker.list_connections(conn.entity_id, self.app_name)
            candidates = [c for c in candidates if self._is_our_app(c)]
            if not candidates:
                raise ConnectionNotFoundError(
                    f"No {self.app_name} connection found for {user_id}; authorization required"
                )
            if all(is_failure_status(c.status) for c in candidates):
                statuses = ", ".join(c.status for c in candidates)
                raise ConnectionNotFoundError(
                    f"{self.app_name} connection(s) found but not usable "
                    f"(statuses: {statuses}); reauthorization required"
                )
        except ConnectionNotFoundError as e:
            if conn.status is not ConnectionStatus.NOT_FOUND:
                conn.status = ConnectionStatus.DISCONNECTED
                conn.error = str(e)
                conn.touch()
                await self.store.set(conn)
            logger.warning("%s", e)
            raise

        return await self.broker.list_tools(conn.entity_id, self.app_name)

    # =========================================================================
    # Polling
    # =========================================================================

    async def poll_connection_status(
        self,
        user_id: str,
        max_attempts: int | None = None,
        interval_ms: int | None = None,
    ) -> ConnectionReport:
        """Poll the stored connection (strictly) until active, failed or out of attempts.

        Every classification is written to the store as it happens, as long
        as the stored record still tracks the polled connection. A sign-out
        or a new setup during the poll wins over its results.
        Exhausting the attempts is reported as ``pending``, not as an error.
        """
        conn = await self.store.get(user_id)
        if conn is None or not conn.connection_id:
            raise ConnectionNotFoundError(f"No connection to poll for {user_id}")
        connection_id = conn.connection_id
        redirect_url = conn.redirect_url

        async def record(candidate: ConnectionCandidate, status: ConnectionStatus) -> None:
            await self._record_classification(user_id, connection_id, candidate, status)

        result = await poll_until_active(
            self.broker,
            connection_id,
            self.settings.poll_attempts if max_attempts is None else max_attempts,
            self.settings.poll_interval_ms if interval_ms is None else interval_ms,
            strictness=Strictness.STRICT,
            unknown_is_active=self.unknown_is_active,
            on_classified=record,
        )

        current = await self.store.get(user_id)
        if not _tracks(current, connection_id):
            logger.info("Poll of %s for %s outlived its connection record", connection_id, user_id)
            if current is None or current.status is ConnectionStatus.NOT_FOUND:
                return ConnectionReport(
                    status=ConnectionStatus.NOT_FOUND,
                    message="Connection was signed out",
                    needs_setup=True,
                )
            return ConnectionReport(
                status=current.status,
                message="Connection was replaced while polling",
                connection_id=current.connection_id,
                redirect_url=current.redirect_url,
                error=current.error,
            )

        if result is None:
            return ConnectionReport(
                status=ConnectionStatus.PENDING,
                message="Connection is still pending - complete authorization and retry",
                connection_id=connection_id,
                redirect_url=redirect_url,
            )

        candidate, status = result
        if status is ConnectionStatus.ACTIVE:
            return ConnectionReport(
                status=ConnectionStatus.ACTIVE,
                message="Connection is active",
                connection_id=candidate.id,
            )
        return ConnectionReport(
            status=ConnectionStatus.ERROR,
            message=f"Connection failed with status: {candidate.status}",
            connection_id=candidate.id,
            error=candidate.status,
            needs_setup=True,
        )

    def start_poll(
        self,
        user_id: str,
        max_attempts: int | None = None,
        interval_ms: int | None = None,
    ) -> PollHandle:
        """Start poll_connection_status in the background.

        A previous poll for the same user is cancelled first.
        """
        self.cancel_poll(user_id)
        task = asyncio.create_task(
            self.poll_connection_status(user_id, max_attempts, interval_ms),
            name=f"poll-user-{user_id}",
        )
        handle = PollHandle(task)
        self._polls[user_id] = handle
        task.add_done_callback(lambda _t: self._forget_poll(user_id, handle))
        return handle

    def cancel_poll(self, user_id: str) -> bool:
        handle = self._polls.pop(user_id, None)
        if handle is None or handle.done:
            return False
        logger.info("Cancelling connection poll for %s", user_id)
        return handle.cancel()

    def _forget_poll(self, user_id: str, handle: PollHandle) -> None:
        if self._polls.get(user_id) is handle:
            del self._polls[user_id]

    async def _record_classification(
        self,
        user_id: str,
        connection_id: str,
        candidate: ConnectionCandidate,
        status: ConnectionStatus,
    ) -> bool:
        """Persist a classification of ``connection_id``. False if the record moved on."""
        conn = await self.store.get(user_id)
        if not _tracks(conn, connection_id):
            logger.info(
                "Dropping %s result for %s: record no longer tracks it", connection_id, user_id
            )
            return False

        conn.connection_id = candidate.id
        conn.status = status
        if status is ConnectionStatus.ERROR:
            # Raw broker status kept for diagnostics.
            conn.error = candidate.status
        elif status is ConnectionStatus.ACTIVE:
            conn.error = None
            conn.redirect_url = None
        conn.touch()
        await self.store.set(conn)
        return True

    # =========================================================================
    # Sign out
    # =========================================================================

    async def sign_out(self, user_id: str, revoke: bool = False) -> bool:
        """Forget the user's connection. Returns False if nothing was stored.

        With ``revoke`` the broker connection is also deleted, best-effort.
        """
        self.cancel_poll(user_id)
        async with self._locks.acquire(user_id):
            conn = await self.store.get(user_id)
            if conn is None:
                return False

            if revoke and conn.connection_id:
                used = await delete_connection(
                    self.broker, conn.entity_id, conn.connection_id, self.strategies
                )
                if used is None:
                    logger.warning(
                        "Could not revoke connection %s for %s", conn.connection_id, user_id
                    )

            conn.status = ConnectionStatus.NOT_FOUND
            conn.connection_id = None
            conn.redirect_url = None
            conn.error = None
            conn.touch()
            await self.store.set(conn)
            logger.info("Signed out %s", user_id)
            return True

    # =========================================================================
    # Broker notifications
    # =========================================================================

    async def handle_broker_callback(
        self,
        connection_id: str | None,
        entity_id: str | None,
        status: str | None = None,
        error: str | None = None,
    ) -> UserConnection | None:
        """Apply the broker's post-authorization redirect.

        Returns the updated record, or None if the entity is unknown.
        """
        conn = await self._find_by_entity(entity_id) if entity_id else None
        if conn is None:
            logger.warning("Broker callback for unknown entity %r", entity_id)
            return None

        if error:
            conn.status = ConnectionStatus.ERROR
            conn.error = error
        else:
            conn.connection_id = connection_id or conn.connection_id
            conn.status = (
                self._classify(status, self.setup_strictness)
                if status
                else ConnectionStatus.ACTIVE
            )
            if conn.status is ConnectionStatus.ACTIVE:
                conn.error = None
                conn.redirect_url = None
            elif conn.status is ConnectionStatus.ERROR:
                conn.error = status

        conn.touch()
        await self.store.set(conn)
        logger.info("Broker callback: %s is now %s", conn.user_id, conn.status.value)
        return conn

    async def handle_webhook(self, event: str, data: dict[str, Any]) -> bool:
        """Apply a broker webhook. Returns True if a stored record changed."""
        if event not in WEBHOOK_EVENTS:
            logger.debug("Ignoring broker webhook %r", event)
            return False

        app_name = str(data.get("appName") or data.get("app_name") or "").lower()
        if self.app_name.lower() not in app_name:
            return False

        entity_id = data.get("entityId") or data.get("entity_id")
        conn = await self._find_by_entity(entity_id) if entity_id else None
        if conn is None:
            logger.warning("Webhook %s for unknown entity %r", event, entity_id)
            return False

        status = data.get("status") or ""
        conn.connection_id = data.get("connectionId") or data.get("id") or conn.connection_id
        # No status yet means the broker is still setting the connection up.
        conn.status = (
            self._classify(status, Strictness.STRICT) if status else ConnectionStatus.PENDING
        )
        if conn.status is ConnectionStatus.ERROR:
            conn.error = status
        elif conn.status is ConnectionStatus.ACTIVE:
            conn.error = None
            conn.redirect_url = None
        conn.touch()
        await self.store.set(conn)
        logger.info("Webhook %s: %s is now %s", event, conn.user_id, conn.status.value)
        return True

    async def _find_by_entity(self, entity_id: str) -> UserConnection | None:
        for conn in await self.store.list():
            if conn.entity_id == entity_id:
                return conn
        return None

    # =========================================================================
    # Diagnostics
    # =========================================================================

    async def list_connections(self) -> list[UserConnection]:
        return await self.store.list()

    async def get_stats(self) -> dict[str, Any]:
        connections = await self.store.list()
        by_status = {s.value: 0 for s in ConnectionStatus}
        for conn in connections:
            by_status[conn.status.value] += 1
        return {
            "total": len(connections),
            "by_status": by_status,
            "active_polls": sum(1 for h in self._polls.values() if not h.done),
        }

    # =========================================================================
    # Helpers
    # =========================================================================

    def _classify(self, raw: str | None, strictness: Strictness) -> ConnectionStatus:
        return classify_status(raw, strictness, self.unknown_is_active)

    def _is_our_app(self, candidate: ConnectionCandidate) -> bool:
        return not candidate.app_name or candidate.app_name.lower() == self.app_name.lower()


# =========================================================================
# Factory Function
# =========================================================================

_manager_instance: ConnectionManager | None = None


def get_connection_manager() -> ConnectionManager:
    """Get or create the connection manager singleton."""
    global _manager_instance
    if _manager_instance is None:
        from calendarlink.broker.client import BrokerClient

        _manager_instance = ConnectionManager(BrokerClient.from_settings())
    return _manager_instance


def reset_connection_manager() -> None:
    """Reset the manager singleton (for testing)."""
    global _manager_instance
    _manager_instance = None

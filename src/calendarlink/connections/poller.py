# Poll a broker connection until it reaches a terminal state.
# Created: 2026-02-08

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from calendarlink.broker.protocol import BrokerClientProtocol
from calendarlink.connections.classify import classify_status
from calendarlink.connections.models import ConnectionCandidate, ConnectionStatus, Strictness
from calendarlink.errors import BrokerUnavailableError

logger = logging.getLogger(__name__)

OnClassified = Callable[[ConnectionCandidate, ConnectionStatus], Awaitable[None]]


async def poll_until_active(
    broker: BrokerClientProtocol,
    connection_id: str,
    max_attempts: int,
    interval_ms: int,
    *,
    strictness: Strictness = Strictness.STRICT,
    unknown_is_active: bool = True,
    on_classified: OnClassified | None = None,
) -> tuple[ConnectionCandidate, ConnectionStatus] | None:
    """Fetch the connection up to ``max_attempts`` times.

    Sleeps ``interval_ms`` between attempts (not after the last one). Returns
    the candidate and its status as soon as it is ACTIVE or ERROR, or None once
    the attempts run out. A failed fetch or a connection the broker does not
    report still uses up an attempt. Cancelling the awaiting task stops the
    poll at its next suspension point.
    """
    for attempt in range(1, max_attempts + 1):
        try:
            candidate = await broker.get_connection(connection_id)
        except BrokerUnavailableError as e:
            logger.warning(
                "Polling %s: attempt %d/%d failed: %s", connection_id, attempt, max_attempts, e
            )
            candidate = None
        else:
            if candidate is None:
                logger.warning(
                    "Polling %s: connection not reported by broker (attempt %d/%d)",
                    connection_id,
                    attempt,
                    max_attempts,
                )

        if candidate is not None:
            status = classify_status(candidate.status, strictness, unknown_is_active)
            logger.debug(
                "Polling %s: attempt %d/%d status %r -> %s",
                connection_id,
                attempt,
                max_attempts,
                candidate.status,
                status.value,
            )
            if on_classified is not None:
                await on_classified(candidate, status)
            if status.is_terminal:
                logger.info(
                    "Connection %s reached %s after %d attempt(s)",
                    connection_id,
                    status.value,
                    attempt,
                )
                return candidate, status

        if attempt < max_attempts:
            await asyncio.sleep(interval_ms / 1000)

    logger.info("Connection %s still pending after %d attempts", connection_id, max_attempts)
    return None


class PollHandle:
    """A running poll that the caller may abandon.

    Await the handle for the poll result; ``cancel()`` stops it. A cancelled
    poll resolves to None rather than raising.
    """

    def __init__(self, task: asyncio.Task):
        self._task = task
        self._cancel_requested = False

    @property
    def done(self) -> bool:
        return self._task.done()

    @property
    def cancelled(self) -> bool:
        return self._task.cancelled()

    def cancel(self) -> bool:
        self._cancel_requested = True
        return self._task.cancel()

    async def result(self):
        """The poll outcome, or None when cancelled through this handle."""
        try:
            return await self._task
        except asyncio.CancelledError:
            if self._cancel_requested:
                return None
            raise

    def __await__(self):
        return self.result().__await__()


def start_poll(
    broker: BrokerClientProtocol,
    connection_id: str,
    max_attempts: int,
    interval_ms: int,
    **kwargs,
) -> PollHandle:
    """Run poll_until_active as a background task and return its handle."""
    task = asyncio.create_task(
        poll_until_active(broker, connection_id, max_attempts, interval_ms, **kwargs),
        name=f"poll-{connection_id}",
    )
    return PollHandle(task)

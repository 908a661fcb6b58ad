"""Drains the event log against the remote authority.

Events are delivered one at a time in insertion order, since reordering
could change the financial meaning of the stream (a ticket issued before
its trip started).
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from ..connection import ConnectionMonitor
from ..transport import CoreResponse, RemoteTransport
from .event_log import EventLog
from .events import Event, EventStatus

logger = logging.getLogger(__name__)

SYNC_COMMAND = "syncEvent"
DEFAULT_MAX_RETRIES = 10


class SyncStatus(Enum):
    """Outcome of one drain."""

    SUCCESS = "success"
    PARTIAL = "partial"  # Some events delivered
    FAILED = "failed"  # Nothing delivered
    IDLE = "idle"  # Nothing pending
    SKIPPED = "skipped"  # Another drain was in flight


@dataclass
class SyncResult:
    """Result of a sync operation."""

    status: SyncStatus
    attempted: int = 0
    synced: int = 0
    failed: int = 0
    abandoned: int = 0
    timestamp: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "attempted": self.attempted,
            "synced": self.synced,
            "failed": self.failed,
            "abandoned": self.abandoned,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }


def _delivered(response: CoreResponse) -> bool:
    # The remote acknowledges with truthy data; False means it refused
    return response.ok and response.data is not None and response.data is not False


class SyncEngine:
    """Delivers pending events and feeds outcomes to the circuit breaker.

    ``sync()`` never runs re-entrantly: a call made while a drain is in
    flight returns immediately with SKIPPED. The periodic loop and
    ``trigger()`` go through the same guard.
    """

    def __init__(
        self,
        log: EventLog,
        transport: RemoteTransport,
        monitor: ConnectionMonitor,
        max_retries: int = DEFAULT_MAX_RETRIES,
        interval_seconds: float = 10.0,
    ):
        """Initialize the sync engine.

        Args:
            log: Event log to drain.
            transport: Channel used to deliver events.
            monitor: Circuit breaker updated with each delivery outcome.
            max_retries: Failed attempts tolerated before an event is abandoned.
            interval_seconds: Period of the background sync loop.
        """
        self.log = log
        self._transport = transport
        self._monitor = monitor
        self.max_retries = max_retries
        self.interval_seconds = interval_seconds
        self._lock = asyncio.Lock()
        self._task: asyncio.Task | None = None
        self._triggered: set[asyncio.Task] = set()
        self._running = False
        self._last_sync: datetime | None = None

    @property
    def is_syncing(self) -> bool:
        return self._lock.locked()

    @property
    def last_sync(self) -> datetime | None:
        """Timestamp of the last completed drain."""
        return self._last_sync

    async def sync(self) -> SyncResult:
        """Attempt delivery of every event pending when the call starts.

        Returns:
            SyncResult with per-drain counts.
        """
        if self._lock.locked():
            logger.debug("Sync already in progress, skipping")
            return SyncResult(status=SyncStatus.SKIPPED, timestamp=datetime.now())

        async with self._lock:
            pending = self.log.get_pending()
            if not pending:
                return SyncResult(status=SyncStatus.IDLE, timestamp=datetime.now())

            result = SyncResult(status=SyncStatus.SUCCESS)
            for event in pending:
                await self._deliver(event, result)

            if result.synced == 0:
                result.status = SyncStatus.FAILED
            elif result.synced < result.attempted:
                result.status = SyncStatus.PARTIAL

            result.timestamp = self._last_sync = datetime.now()

        logger.info(
            f"Sync: {result.status.value}, synced={result.synced}, "
            f"failed={result.failed}, abandoned={result.abandoned}, "
            f"pending={self.log.get_pending_count()}"
        )
        return result

    async def _deliver(self, event: Event, result: SyncResult) -> None:
        """Submit one event and record the outcome durably."""
        # Skip anything settled since the snapshot was taken
        if event.status is not EventStatus.PENDING:
            return

        result.attempted += 1
        try:
            response = await self._transport.send(SYNC_COMMAND, event.to_dict())
            error = response.error
            delivered = _delivered(response)
        except Exception as e:
            error = str(e)
            delivered = False

        if delivered:
            self.log.mark_synced(event.id)
            self._monitor.record_success()
            result.synced += 1
            logger.debug(f"Synced {event.kind.value} event {event.id}")
            return

        status = self.log.record_failure(event.id, self.max_retries)
        self._monitor.record_failure()
        result.failed += 1
        if status is EventStatus.FAILED:
            result.abandoned += 1
        logger.warning(
            f"Sync failed for {event.id} "
            f"(attempt {event.retry_count}): {error or 'rejected'}"
        )

    def trigger(self) -> asyncio.Task:
        """Schedule a one-off sync on the running event loop."""
        task = asyncio.get_running_loop().create_task(self.sync())
        self._triggered.add(task)
        task.add_done_callback(self._triggered.discard)
        return task

    async def start(self) -> None:
        """Start the periodic sync loop as a background task."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info(f"Sync loop started (interval={self.interval_seconds}s)")

    async def stop(self) -> None:
        """Stop the periodic loop and wait for triggered syncs to finish."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        if self._triggered:
            await asyncio.gather(*self._triggered, return_exceptions=True)
        logger.info("Sync loop stopped")

    async def _run_loop(self) -> None:
        """Sync at a fixed interval until stopped."""
        while self._running:
            try:
                await self.sync()
            except Exception as e:
                logger.error(f"Sync loop error: {e}", exc_info=True)

            await asyncio.sleep(self.interval_seconds)

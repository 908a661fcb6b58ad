"""Collaborator-facing facade over the offline sync services."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, TypeVar

from .config import Config
from .connection import ConnectionMonitor, ConnectionState, Subscription
from .connection.monitor import Listener
from .fetch import HybridFetcher
from .store import PersistedStore
from .sync import Event, EventKind, EventLog, SyncEngine, SyncResult
from .sync.events import EventPayload
from .transport import CoreResponse, RemoteTransport, create_transport

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class EngineStatus:
    """Signals exposed to the UI."""

    is_syncing: bool
    pending_count: int
    connection_state: ConnectionState
    durability_degraded: bool

    @property
    def is_online(self) -> bool:
        return self.connection_state is ConnectionState.CONNECTED

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_online": self.is_online,
            "is_syncing": self.is_syncing,
            "pending_count": self.pending_count,
            "connection_state": self.connection_state.value,
            "durability_degraded": self.durability_degraded,
        }


class OfflineEngine:
    """One isolated set of store, log, breaker, fetcher and sync loop.

    Construct it once at startup and pass it to whatever needs it; tests
    can build as many independent instances as they like.
    """

    def __init__(
        self,
        store: PersistedStore,
        transport: RemoteTransport,
        max_failures: int = 3,
        max_retries: int = 10,
        interval_seconds: float = 10.0,
        queue_key: str = "event_queue",
        probe_command: str = "getRoutes",
        sync_on_add: bool = True,
    ):
        self.store = store
        self.transport = transport
        self.monitor = ConnectionMonitor(
            max_failures=max_failures,
            transport=transport,
            probe_command=probe_command,
        )
        self.log = EventLog(store, queue_key=queue_key)
        self.fetcher = HybridFetcher(transport, self.monitor, store)
        self.sync_engine = SyncEngine(
            self.log,
            transport,
            self.monitor,
            max_retries=max_retries,
            interval_seconds=interval_seconds,
        )
        self.sync_on_add = sync_on_add

    @classmethod
    def from_config(
        cls,
        config: Config,
        transport: RemoteTransport | None = None,
        store: PersistedStore | None = None,
    ) -> "OfflineEngine":
        """Build an engine from configuration.

        Args:
            config: Loaded configuration.
            transport: Overrides the transport selected by config.
            store: Overrides the store at ``config.store.db_path``.
        """
        if store is None:
            store = PersistedStore(config.store.db_path, namespace=config.store.namespace)
            store.connect()

        return cls(
            store=store,
            transport=transport or create_transport(config.transport),
            max_failures=config.connection.max_failures,
            max_retries=config.sync.max_retries,
            interval_seconds=config.sync.interval_seconds,
            queue_key=config.store.queue_key,
            probe_command=config.connection.probe_command,
            sync_on_add=config.sync.sync_on_add,
        )

    # ==================== Events ====================

    def add_event(
        self,
        kind: EventKind | str,
        payload: EventPayload | dict[str, Any],
    ) -> Event:
        """Record an event and, inside a running loop, kick off a sync."""
        event = self.log.add_event(kind, payload)

        if self.sync_on_add:
            try:
                self.sync_engine.trigger()
            except RuntimeError:
                pass  # No running loop; the next tick picks it up

        return event

    def get_pending_count(self) -> int:
        return self.log.get_pending_count()

    async def trigger_sync(self) -> SyncResult:
        return await self.sync_engine.sync()

    def compact(self) -> int:
        return self.log.compact()

    # ==================== Reads ====================

    async def fetch(
        self,
        command: str,
        cache_key: str | None,
        fallback: T,
        payload: Any = None,
    ) -> T:
        return await self.fetcher.fetch(command, cache_key, fallback, payload=payload)

    async def register_device(self, device: dict[str, Any]) -> CoreResponse:
        """Register this terminal with the remote authority.

        Not cached and not queued; the caller needs the live answer.
        """
        response = await self.transport.send("registerDevice", device)
        if response.ok:
            self.monitor.record_success()
        else:
            self.monitor.record_failure()
        return response

    def issue_ticket(
        self,
        trip_id: str,
        amount: float,
        phone: str | None = None,
        payment_type: str = "CASH",
    ) -> Event:
        """Record a ticket sale for delivery with the rest of the queue."""
        payload = {
            "trip_id": trip_id,
            "amount": amount,
            "payment_type": payment_type,
            "passenger_phone": phone,
        }
        return self.add_event(EventKind.TICKET_ISSUE, payload)

    # ==================== Connectivity ====================

    def get_connection_state(self) -> ConnectionState:
        return self.monitor.state

    def on_connection_change(self, listener: Listener) -> Subscription:
        return self.monitor.subscribe(listener)

    async def retry_connection(self) -> bool:
        return await self.monitor.probe()

    def get_status(self) -> EngineStatus:
        return EngineStatus(
            is_syncing=self.sync_engine.is_syncing,
            pending_count=self.log.get_pending_count(),
            connection_state=self.monitor.state,
            durability_degraded=self.log.durability_degraded,
        )

    # ==================== Lifecycle ====================

    async def start(self) -> None:
        await self.sync_engine.start()

    async def stop(self) -> None:
        await self.sync_engine.stop()

    async def close(self) -> None:
        """Stop syncing and release transport and store."""
        await self.stop()
        await self.transport.close()
        self.store.close()


async def run_engine(engine: OfflineEngine, stop_event: asyncio.Event | None = None) -> None:
    """Run the periodic sync loop until ``stop_event`` is set."""
    await engine.start()
    try:
        if stop_event is None:
            stop_event = asyncio.Event()
        await stop_event.wait()
    finally:
        await engine.stop()

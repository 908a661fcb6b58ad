"""Read path with graceful degradation.

Answers are taken from the remote authority when possible, then from the
last successful answer cached locally, then from a static default, so the
terminal always has something to show.
"""

import logging
from typing import Any, TypeVar

from ..connection import ConnectionMonitor, ConnectionState
from ..errors import StoreError
from ..store import PersistedStore
from ..transport import RemoteTransport, unwrap_data

logger = logging.getLogger(__name__)

T = TypeVar("T")

OFFLINE_ROUTES = [
    {"id": "off-1", "name": "Westlands Express (Offline)", "standard_fare": 50},
    {"id": "off-2", "name": "Rongai Direct (Offline)", "standard_fare": 100},
]


class HybridFetcher:
    """Remote first, then cache, then default.

    Explicit remote rejections and unreachable remotes are treated the
    same way: both count against the breaker and fall back to the cache.
    """

    def __init__(
        self,
        transport: RemoteTransport,
        monitor: ConnectionMonitor,
        store: PersistedStore,
    ):
        self._transport = transport
        self._monitor = monitor
        self._store = store

    async def fetch(
        self,
        command: str,
        cache_key: str | None,
        fallback: T,
        payload: Any = None,
    ) -> T:
        """Answer a query, degrading gracefully.

        Args:
            command: Remote command to run.
            cache_key: Store key for the last good answer, or None to
                disable caching for this query.
            fallback: Value returned when neither remote nor cache answers.
            payload: Command payload.

        Returns:
            Live data, cached data, or ``fallback``, in that order of preference.
        """
        if cache_key and self._monitor.state is ConnectionState.DISCONNECTED:
            logger.debug(f"Circuit open, serving '{cache_key}' locally")
            return self._from_cache(cache_key, fallback)

        try:
            response = await self._transport.send(command, payload)
        except Exception as e:
            logger.warning(f"{command} raised: {e}")
            response = None

        data = unwrap_data(response)
        if data is not None:
            self._monitor.record_success()
            if cache_key:
                try:
                    self._store.set(cache_key, data)
                except StoreError as e:
                    logger.error(f"Cache write for '{cache_key}' failed: {e}")
            return data

        self._monitor.record_failure()
        reason = response.error if response is not None else "transport error"
        logger.warning(f"{command} failed ({reason}), using local data for '{cache_key}'")

        if cache_key:
            return self._from_cache(cache_key, fallback)
        return fallback

    def _from_cache(self, cache_key: str, fallback: T) -> T:
        cached = self._store.get(cache_key)
        if cached is not None:
            return cached
        return fallback

    async def fetch_routes(self) -> list[dict[str, Any]]:
        return await self.fetch(
            "getRoutes",
            "routes",
            [dict(route) for route in OFFLINE_ROUTES],
        )

    async def fetch_terminal_context(self, operator_id: str) -> dict[str, Any]:
        return await self.fetch(
            "getTerminalContext",
            "terminal_context",
            {"active_trip": None},
            payload={"operator_id": operator_id},
        )

    async def fetch_vehicle_seats(self, vehicle_id: str) -> list[dict[str, Any]]:
        return await self.fetch(
            "getVehicleSeats",
            f"seats_{vehicle_id}",
            [],
            payload={"vehicle_id": vehicle_id},
        )

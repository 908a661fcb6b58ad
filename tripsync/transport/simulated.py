"""In-process stand-in for the remote authority.

Used when no bridge is configured (demo terminals, local development) and
by tests that need a controllable remote.
"""

import asyncio
import logging
import random
from typing import Any, Callable

from .base import FAULT_ERROR, TIMEOUT_ERROR, CoreResponse, RemoteTransport, wrap_response

logger = logging.getLogger(__name__)

SIMULATED_ROUTES = [
    {"id": "r1", "name": "CBD - Westlands", "standard_fare": 50},
    {"id": "r2", "name": "CBD - Ngong", "standard_fare": 100},
    {"id": "r3", "name": "Town - Rongai", "standard_fare": 80},
]

Handler = Callable[[Any], Any]


def _default_handlers() -> dict[str, Handler]:
    return {
        "getRoutes": lambda payload: [dict(route) for route in SIMULATED_ROUTES],
        "getTerminalContext": lambda payload: {"active_trip": None},
        "getVehicleSeats": lambda payload: [
            {"number": n, "occupied": False} for n in range(1, 15)
        ],
        "registerDevice": lambda payload: {
            "sacco_name": f"{(payload or {}).get('sacco_code') or 'LOCAL'} TRANSIT"
        },
        "issueTicket": lambda payload: {"success": True},
        "syncEvent": lambda payload: True,
    }


class SimulatedTransport(RemoteTransport):
    """Answers commands from local handlers.

    Attributes:
        online: When False every call fails as if the link were down.
        calls: (command, payload) pairs in the order they were sent.
    """

    def __init__(
        self,
        latency: float = 0.0,
        failure_rate: float = 0.0,
        handlers: dict[str, Handler] | None = None,
        seed: int | None = None,
    ):
        """Initialize the simulator.

        Args:
            latency: Seconds each call waits before answering.
            failure_rate: Probability (0-1) that a call times out.
            handlers: Extra or replacement command handlers.
            seed: Seed for the failure injection RNG.
        """
        self.latency = latency
        self.failure_rate = failure_rate
        self.online = True
        self.calls: list[tuple[str, Any]] = []
        self._handlers = _default_handlers()
        if handlers:
            self._handlers.update(handlers)
        self._random = random.Random(seed)
        self._rejections: dict[str, str] = {}

    def set_handler(self, command: str, handler: Handler) -> None:
        self._handlers[command] = handler

    def reject(self, command: str, error: str) -> None:
        """Make the remote explicitly reject a command until accepted again."""
        self._rejections[command] = error

    def accept(self, command: str) -> None:
        self._rejections.pop(command, None)

    async def send(self, command: str, payload: Any = None) -> CoreResponse:
        self.calls.append((command, payload))

        if self.latency:
            await asyncio.sleep(self.latency)

        if not self.online:
            return wrap_response(None, f"{FAULT_ERROR}: remote unreachable")

        if self.failure_rate and self._random.random() < self.failure_rate:
            return wrap_response(None, f"{TIMEOUT_ERROR}: {command}")

        if command in self._rejections:
            return wrap_response(None, self._rejections[command])

        handler = self._handlers.get(command)
        if handler is None:
            return wrap_response(None, f"Unknown command: {command}")

        try:
            return wrap_response(handler(payload))
        except Exception as e:
            logger.debug(f"Simulated handler for {command} failed: {e}")
            return wrap_response(None, str(e))

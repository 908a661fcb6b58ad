"""Connectivity circuit breaker.

Turns a count of consecutive remote failures into a coarse connection
state and notifies subscribers when that state changes.
"""

import logging
from enum import Enum
from typing import Any, Callable

from ..transport import RemoteTransport

logger = logging.getLogger(__name__)

DEFAULT_MAX_FAILURES = 3


class ConnectionState(Enum):
    CONNECTED = "CONNECTED"
    DEGRADED = "DEGRADED"
    DISCONNECTED = "DISCONNECTED"


Listener = Callable[[ConnectionState], None]


def state_for(failure_count: int, max_failures: int) -> ConnectionState:
    """Classify a consecutive failure count."""
    if failure_count <= 0:
        return ConnectionState.CONNECTED
    if failure_count < max_failures:
        return ConnectionState.DEGRADED
    return ConnectionState.DISCONNECTED


class Subscription:
    """Handle returned by ``ConnectionMonitor.subscribe``."""

    def __init__(self, monitor: "ConnectionMonitor", listener: Listener):
        self._monitor = monitor
        self._listener = listener
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def cancel(self) -> None:
        """Stop receiving notifications. Safe to call more than once."""
        if self._active:
            self._active = False
            self._monitor._remove(self._listener)


class ConnectionMonitor:
    """Tracks remote health from call outcomes.

    Listeners are called once the new state is in place, so a listener
    may call back into the monitor. All calls are expected on the event
    loop thread.
    """

    def __init__(
        self,
        max_failures: int = DEFAULT_MAX_FAILURES,
        transport: RemoteTransport | None = None,
        probe_command: str = "getRoutes",
        probe_payload: Any = None,
    ):
        """Initialize the monitor in the CONNECTED state.

        Args:
            max_failures: Consecutive failures that mark the link DISCONNECTED.
            transport: Transport used by ``probe``.
            probe_command: Lightweight command sent by ``probe``.
            probe_payload: Payload for the probe command.
        """
        if max_failures < 1:
            raise ValueError("max_failures must be at least 1")

        self.max_failures = max_failures
        self._transport = transport
        self.probe_command = probe_command
        self.probe_payload = probe_payload
        self._failure_count = 0
        self._state = ConnectionState.CONNECTED
        self._listeners: list[Listener] = []

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    def subscribe(self, listener: Listener) -> Subscription:
        """Register a state change listener.

        Returns:
            Subscription whose ``cancel()`` removes the listener.
        """
        self._listeners.append(listener)
        return Subscription(self, listener)

    def _remove(self, listener: Listener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def _set(self, failure_count: int, state: ConnectionState | None = None) -> None:
        """Update counters, then notify listeners if the state changed."""
        new_state = state or state_for(failure_count, self.max_failures)
        changed = new_state is not self._state
        self._failure_count = failure_count
        self._state = new_state

        if changed:
            logger.info(f"Connection state -> {new_state.value} (failures={failure_count})")
            self._notify(list(self._listeners), new_state)

    def _notify(self, listeners: list[Listener], state: ConnectionState) -> None:
        for listener in listeners:
            try:
                listener(state)
            except Exception as e:
                logger.error(f"Connection listener failed: {e}", exc_info=True)

    def record_failure(self) -> ConnectionState:
        """Count one failed remote call."""
        self._set(self._failure_count + 1)
        return self._state

    def record_success(self) -> ConnectionState:
        """Reset the breaker after a successful remote call."""
        self._set(0)
        return self._state

    def reset(self) -> None:
        """Return to CONNECTED without a remote call."""
        self._set(0)

    async def probe(self) -> bool:
        """Manually retry the connection with one lightweight call.

        The state goes to DEGRADED while the probe is in flight. A failed
        probe forces DISCONNECTED whatever the previous failure count.

        Returns:
            True if the remote answered successfully.
        """
        if self._transport is None:
            raise RuntimeError("ConnectionMonitor has no transport to probe")

        self._set(self._failure_count, ConnectionState.DEGRADED)

        try:
            response = await self._transport.send(self.probe_command, self.probe_payload)
            ok = response.ok
        except Exception as e:
            logger.warning(f"Connection probe raised: {e}")
            ok = False

        if ok:
            self.record_success()
            return True

        self._set(
            max(self._failure_count, self.max_failures),
            ConnectionState.DISCONNECTED,
        )
        return False

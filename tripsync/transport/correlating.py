"""Request/response correlation over message-oriented channels."""

import asyncio
import logging
import uuid
from abc import abstractmethod
from typing import Any

from .base import FAULT_ERROR, TIMEOUT_ERROR, CoreResponse, RemoteTransport, wrap_response

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 12.0


class CorrelatingTransport(RemoteTransport):
    """Transport that matches replies to requests by a generated request id.

    Subclasses implement ``_dispatch`` to put an envelope on the wire and
    call ``deliver`` when a reply arrives. A request with no reply inside
    the timeout resolves as a CORE_TIMEOUT failure and its correlation
    record is dropped, so a late reply is discarded instead of being taken
    as the answer to a newer request.
    """

    def __init__(self, timeout: float = DEFAULT_TIMEOUT):
        """Initialize the transport.

        Args:
            timeout: Seconds to wait for a reply before failing the call.
        """
        self.timeout = timeout
        self._pending: dict[str, asyncio.Future] = {}

    @property
    def pending_count(self) -> int:
        """Number of requests awaiting a reply."""
        return len(self._pending)

    @abstractmethod
    async def _dispatch(self, request_id: str, command: str, payload: Any) -> None:
        """Put a request on the wire.

        Raising marks the request as a BRIDGE_FAULT.
        """

    async def send(self, command: str, payload: Any = None) -> CoreResponse:
        request_id = str(uuid.uuid4())
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future

        try:
            await self._dispatch(request_id, command, payload)
        except Exception as e:
            self._pending.pop(request_id, None)
            logger.warning(f"Dispatch of {command} failed: {e}")
            return wrap_response(None, f"{FAULT_ERROR}: {e}")

        try:
            return await asyncio.wait_for(asyncio.shield(future), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning(f"No reply to {command} within {self.timeout}s")
            return wrap_response(None, f"{TIMEOUT_ERROR}: {command}")
        finally:
            self._pending.pop(request_id, None)
            if not future.done():
                future.cancel()

    def deliver(self, request_id: str | None, data: Any = None, error: str | None = None) -> bool:
        """Resolve a pending request with its reply.

        Must be called from the event loop thread.

        Args:
            request_id: Correlation id echoed by the remote side.
            data: Reply payload.
            error: Error message if the remote side rejected the command.

        Returns:
            True if the reply matched a pending request.
        """
        future = self._pending.pop(request_id, None) if request_id else None
        if future is None or future.done():
            logger.debug(f"Discarding reply for unknown or expired request {request_id}")
            return False

        future.set_result(wrap_response(data, error))
        return True

    async def close(self) -> None:
        """Fail every request still waiting for a reply."""
        for request_id, future in list(self._pending.items()):
            if not future.done():
                future.set_result(wrap_response(None, f"{FAULT_ERROR}: transport closed"))
        self._pending.clear()

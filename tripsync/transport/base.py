"""Abstract request/response channel to the remote authority."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

TIMEOUT_ERROR = "CORE_TIMEOUT"
FAULT_ERROR = "BRIDGE_FAULT"


@dataclass
class CoreResponse:
    """Reply to a remote command."""

    ok: bool
    data: Any = None
    error: str | None = None
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())

    @property
    def is_timeout(self) -> bool:
        return self.error is not None and self.error.startswith(TIMEOUT_ERROR)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "data": self.data,
            "error": self.error,
            "timestamp": self.timestamp,
        }


def wrap_response(data: Any, error: str | None = None) -> CoreResponse:
    """Build a CoreResponse; it is ok exactly when there is no error."""
    return CoreResponse(ok=not error, data=data, error=error)


def unwrap_data(response: CoreResponse | None) -> Any | None:
    """Return the response data if the call succeeded, else None."""
    if response is not None and response.ok and response.data is not None:
        return response.data
    return None


class RemoteTransport(ABC):
    """Request/response primitive used by the sync engine and fetcher.

    Implementations must not raise for transport-level faults: timeouts,
    refused connections and remote rejections all come back as a
    CoreResponse with ``ok=False``.
    """

    @abstractmethod
    async def send(self, command: str, payload: Any = None) -> CoreResponse:
        """Send a command and wait for its reply."""

    async def close(self) -> None:
        """Release any resources held by the transport."""

"""HTTP transport to the remote authority."""

import asyncio
import logging
from typing import Any

import httpx

from .base import FAULT_ERROR, TIMEOUT_ERROR
from .correlating import DEFAULT_TIMEOUT, CorrelatingTransport

logger = logging.getLogger(__name__)


class HttpTransport(CorrelatingTransport):
    """Sends each command as a JSON POST to ``<endpoint>/<command>``.

    The request body carries the request id, and the reply is delivered by
    the id the server echoes back. Replies without an id are taken as the
    answer to the request that produced them.
    """

    def __init__(self, endpoint: str, timeout: float = DEFAULT_TIMEOUT):
        """Initialize the transport.

        Args:
            endpoint: Base URL of the remote API (e.g., "https://core.example/api").
            timeout: Request timeout in seconds.
        """
        super().__init__(timeout=timeout)
        self.endpoint = endpoint.rstrip("/")
        self._client: httpx.AsyncClient | None = None
        self._tasks: set[asyncio.Task] = set()

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.endpoint,
                timeout=self.timeout,
            )
        return self._client

    async def _dispatch(self, request_id: str, command: str, payload: Any) -> None:
        client = self._get_client()
        task = asyncio.create_task(self._post(client, request_id, command, payload))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _post(
        self,
        client: httpx.AsyncClient,
        request_id: str,
        command: str,
        payload: Any,
    ) -> None:
        body = {"requestId": request_id, "command": command, "payload": payload}

        try:
            response = await client.post(f"/{command}", json=body)
        except httpx.TimeoutException:
            self.deliver(request_id, error=f"{TIMEOUT_ERROR}: {command}")
            return
        except httpx.HTTPError as e:
            logger.debug(f"{command} failed: {e}")
            self.deliver(request_id, error=f"{FAULT_ERROR}: {e}")
            return

        if response.status_code >= 400:
            self.deliver(request_id, error=f"HTTP {response.status_code}: {response.text}")
            return

        try:
            reply = response.json()
        except ValueError:
            self.deliver(request_id, error=f"{FAULT_ERROR}: malformed reply to {command}")
            return

        if not isinstance(reply, dict):
            self.deliver(request_id, data=reply)
            return

        reply_id = reply.get("requestId", request_id)
        if reply_id != request_id:
            logger.warning(f"Reply id {reply_id} does not match request {request_id}")

        error = reply.get("error")
        if error is None and reply.get("ok") is False:
            error = "Remote rejected command"
        self.deliver(reply_id, data=reply.get("data"), error=error)

    async def close(self) -> None:
        """Close the HTTP client and fail outstanding requests."""
        await super().close()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        if self._client:
            await self._client.aclose()
            self._client = None

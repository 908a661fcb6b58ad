"""Tests for remote transports."""

import asyncio
import json
from unittest.mock import MagicMock

import httpx
import pytest

from tripsync.config import MQTTTransportConfig, TransportConfig
from tripsync.transport import (
    CoreResponse,
    CorrelatingTransport,
    SimulatedTransport,
    create_transport,
    unwrap_data,
    wrap_response,
)
from tripsync.transport.http import HttpTransport
from tripsync.transport.mqtt import MqttTransport


class RecordingTransport(CorrelatingTransport):
    """Correlating transport whose wire is a list."""

    def __init__(self, timeout: float = 1.0, fail_dispatch: bool = False):
        super().__init__(timeout=timeout)
        self.sent: list[tuple[str, str, object]] = []
        self.fail_dispatch = fail_dispatch

    async def _dispatch(self, request_id, command, payload):
        if self.fail_dispatch:
            raise ConnectionError("bridge not mounted")
        self.sent.append((request_id, command, payload))


class TestCoreResponse:
    """Tests for the response envelope helpers."""

    def test_wrap_success(self):
        response = wrap_response([1, 2])

        assert response.ok is True
        assert response.data == [1, 2]
        assert response.error is None
        assert response.timestamp

    def test_wrap_error(self):
        response = wrap_response(None, "CORE_TIMEOUT: getRoutes")

        assert response.ok is False
        assert response.is_timeout is True

    def test_unwrap(self):
        assert unwrap_data(wrap_response({"a": 1})) == {"a": 1}
        assert unwrap_data(wrap_response(None)) is None
        assert unwrap_data(wrap_response({"a": 1}, "rejected")) is None
        assert unwrap_data(None) is None

    def test_to_dict(self):
        data = CoreResponse(ok=False, error="nope", timestamp="2026-01-01T00:00:00").to_dict()

        assert data == {
            "ok": False,
            "data": None,
            "error": "nope",
            "timestamp": "2026-01-01T00:00:00",
        }


class TestCorrelatingTransport:
    """Tests for request id correlation and timeouts."""

    @pytest.mark.asyncio
    async def test_reply_matched_by_request_id(self):
        """Test a delivered reply resolves the matching request."""
        transport = RecordingTransport()

        task = asyncio.create_task(transport.send("getRoutes", {"x": 1}))
        await asyncio.sleep(0)
        request_id, command, payload = transport.sent[0]
        assert command == "getRoutes"
        assert payload == {"x": 1}

        assert transport.deliver(request_id, data=["r1"]) is True
        response = await task

        assert response.ok is True
        assert response.data == ["r1"]
        assert transport.pending_count == 0

    @pytest.mark.asyncio
    async def test_concurrent_requests_not_crossed(self):
        """Test replies out of order reach the right callers."""
        transport = RecordingTransport()

        first = asyncio.create_task(transport.send("a"))
        second = asyncio.create_task(transport.send("b"))
        await asyncio.sleep(0)
        (first_id, _, _), (second_id, _, _) = transport.sent

        transport.deliver(second_id, data="for-b")
        transport.deliver(first_id, data="for-a")

        assert (await first).data == "for-a"
        assert (await second).data == "for-b"

    @pytest.mark.asyncio
    async def test_remote_error(self):
        transport = RecordingTransport()

        task = asyncio.create_task(transport.send("issueTicket"))
        await asyncio.sleep(0)
        transport.deliver(transport.sent[0][0], error="Trip closed")
        response = await task

        assert response.ok is False
        assert response.error == "Trip closed"

    @pytest.mark.asyncio
    async def test_timeout_removes_correlation_record(self):
        """Test an unanswered request times out and late replies are dropped."""
        transport = RecordingTransport(timeout=0.05)

        response = await transport.send("getRoutes")

        assert response.ok is False
        assert response.error == "CORE_TIMEOUT: getRoutes"
        assert transport.pending_count == 0

        late_id = transport.sent[0][0]
        assert transport.deliver(late_id, data=["stale"]) is False

    @pytest.mark.asyncio
    async def test_late_reply_not_taken_by_next_request(self):
        """Test a stale reply cannot answer a newer request."""
        transport = RecordingTransport(timeout=0.05)
        await transport.send("getRoutes")
        stale_id = transport.sent[0][0]

        task = asyncio.create_task(transport.send("getRoutes"))
        await asyncio.sleep(0)
        transport.deliver(stale_id, data=["stale"])
        transport.deliver(transport.sent[1][0], data=["fresh"])

        assert (await task).data == ["fresh"]

    @pytest.mark.asyncio
    async def test_unknown_reply_ignored(self):
        transport = RecordingTransport()

        assert transport.deliver("never-sent", data=1) is False
        assert transport.deliver(None, data=1) is False

    @pytest.mark.asyncio
    async def test_dispatch_failure(self):
        """Test a dispatch error resolves as a bridge fault."""
        transport = RecordingTransport(fail_dispatch=True)

        response = await transport.send("getRoutes")

        assert response.ok is False
        assert response.error.startswith("BRIDGE_FAULT")
        assert transport.pending_count == 0

    @pytest.mark.asyncio
    async def test_close_fails_pending(self):
        transport = RecordingTransport()

        task = asyncio.create_task(transport.send("getRoutes"))
        await asyncio.sleep(0)
        await transport.close()
        response = await task

        assert response.ok is False
        assert "closed" in response.error


def _http_transport(handler, timeout: float = 1.0) -> HttpTransport:
    transport = HttpTransport("http://core.test/api", timeout=timeout)
    transport._client = httpx.AsyncClient(
        base_url=transport.endpoint,
        transport=httpx.MockTransport(handler),
    )
    return transport


class TestHttpTransport:
    """Tests for the HTTP transport."""

    def test_endpoint_trailing_slash(self):
        transport = HttpTransport("http://core.test/api/")

        assert transport.endpoint == "http://core.test/api"

    @pytest.mark.asyncio
    async def test_success(self):
        """Test the command is posted and the echoed reply delivered."""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            seen["path"] = request.url.path
            seen["body"] = body
            return httpx.Response(
                200,
                json={"requestId": body["requestId"], "ok": True, "data": True},
            )

        transport = _http_transport(handler)
        response = await transport.send("syncEvent", {"id": "evt-1"})
        await transport.close()

        assert response.ok is True
        assert response.data is True
        assert seen["path"] == "/api/syncEvent"
        assert seen["body"]["command"] == "syncEvent"
        assert seen["body"]["payload"] == {"id": "evt-1"}

    @pytest.mark.asyncio
    async def test_reply_without_request_id(self):
        def handler(request):
            return httpx.Response(200, json={"ok": True, "data": [{"id": "r1"}]})

        transport = _http_transport(handler)
        response = await transport.send("getRoutes")
        await transport.close()

        assert response.data == [{"id": "r1"}]

    @pytest.mark.asyncio
    async def test_rejection(self):
        def handler(request):
            return httpx.Response(200, json={"ok": False, "error": "Invalid SACCO code"})

        transport = _http_transport(handler)
        response = await transport.send("registerDevice", {"sacco_code": "ERR"})
        await transport.close()

        assert response.ok is False
        assert response.error == "Invalid SACCO code"

    @pytest.mark.asyncio
    async def test_http_error_status(self):
        def handler(request):
            return httpx.Response(503, text="maintenance")

        transport = _http_transport(handler)
        response = await transport.send("getRoutes")
        await transport.close()

        assert response.ok is False
        assert response.error == "HTTP 503: maintenance"

    @pytest.mark.asyncio
    async def test_connection_refused(self):
        def handler(request):
            raise httpx.ConnectError("connection refused")

        transport = _http_transport(handler)
        response = await transport.send("getRoutes")
        await transport.close()

        assert response.ok is False
        assert response.error.startswith("BRIDGE_FAULT")

    @pytest.mark.asyncio
    async def test_mismatched_reply_times_out(self):
        """Test a reply for another request id is not accepted."""
        def handler(request):
            return httpx.Response(200, json={"requestId": "someone-else", "ok": True, "data": 1})

        transport = _http_transport(handler, timeout=0.1)
        response = await transport.send("getRoutes")
        await transport.close()

        assert response.ok is False
        assert response.is_timeout is True

    @pytest.mark.asyncio
    async def test_close_waits_for_in_flight_posts(self):
        """Test closing mid-request leaves no request task running."""
        started = asyncio.Event()

        async def handler(request):
            started.set()
            await asyncio.sleep(10)
            return httpx.Response(200, json={"ok": True, "data": 1})

        transport = _http_transport(handler)
        send = asyncio.create_task(transport.send("getRoutes"))
        await started.wait()
        posts = list(transport._tasks)

        await transport.close()
        response = await send

        assert posts and all(task.done() for task in posts)
        assert transport._tasks == set()
        assert response.ok is False
        assert transport._client is None

    @pytest.mark.asyncio
    async def test_malformed_json(self):
        def handler(request):
            return httpx.Response(200, text="<html>")

        transport = _http_transport(handler)
        response = await transport.send("getRoutes")
        await transport.close()

        assert response.ok is False


class TestMqttTransport:
    """Tests for MQTT reply handling."""

    @pytest.fixture
    def transport(self):
        return MqttTransport(MQTTTransportConfig(topic_prefix="fleet/kbx"), timeout=1.0)

    def test_topics(self, transport):
        assert transport.reply_topic == "fleet/kbx/reply"
        assert transport.command_topic("syncEvent") == "fleet/kbx/command/syncEvent"

    @pytest.mark.asyncio
    async def test_dispatch_when_disconnected(self, transport):
        """Test sending without a broker connection is a bridge fault."""
        response = await transport.send("getRoutes")

        assert response.ok is False
        assert response.error.startswith("BRIDGE_FAULT")

    @pytest.mark.asyncio
    async def test_round_trip_through_handlers(self, transport):
        """Test a published command is answered by a reply message."""
        transport._connected = True
        transport._loop = asyncio.get_running_loop()
        published = []

        def publish(topic, message):
            published.append((topic, json.loads(message)))
            return MagicMock(rc=0)

        transport._client = MagicMock()
        transport._client.publish = publish

        task = asyncio.create_task(transport.send("getRoutes"))
        await asyncio.sleep(0)
        topic, envelope = published[0]
        assert topic == "fleet/kbx/command/getRoutes"

        reply = MagicMock()
        reply.topic = transport.reply_topic
        reply.payload = json.dumps(
            {"requestId": envelope["requestId"], "ok": True, "data": ["r1"]}
        ).encode()
        transport._handle_message(transport._client, None, reply)

        response = await task
        assert response.data == ["r1"]

    def test_malformed_reply_ignored(self, transport):
        transport._loop = MagicMock()
        reply = MagicMock()
        reply.topic = "fleet/kbx/reply"
        reply.payload = b"not json"

        transport._handle_message(None, None, reply)

        transport._loop.call_soon_threadsafe.assert_not_called()


class TestSimulatedTransport:
    """Tests for the in-process simulator."""

    @pytest.mark.asyncio
    async def test_default_handlers(self):
        transport = SimulatedTransport()

        routes = await transport.send("getRoutes")
        device = await transport.send("registerDevice", {"sacco_code": "KBX"})

        assert routes.ok is True
        assert routes.data[0]["id"] == "r1"
        assert device.data == {"sacco_name": "KBX TRANSIT"}

    @pytest.mark.asyncio
    async def test_offline(self):
        transport = SimulatedTransport()
        transport.online = False

        response = await transport.send("getRoutes")

        assert response.ok is False
        assert transport.calls == [("getRoutes", None)]

    @pytest.mark.asyncio
    async def test_reject_and_accept(self):
        transport = SimulatedTransport()
        transport.reject("issueTicket", "Trip closed")

        assert (await transport.send("issueTicket")).error == "Trip closed"

        transport.accept("issueTicket")
        assert (await transport.send("issueTicket")).ok is True

    @pytest.mark.asyncio
    async def test_failure_injection(self):
        transport = SimulatedTransport(failure_rate=1.0, seed=1)

        response = await transport.send("getRoutes")

        assert response.is_timeout is True

    @pytest.mark.asyncio
    async def test_unknown_command(self):
        response = await SimulatedTransport().send("launchRocket")

        assert response.ok is False


class TestCreateTransport:
    """Tests for transport selection from config."""

    def test_http(self):
        transport = create_transport(TransportConfig(kind="http", timeout_ms=5000))

        assert isinstance(transport, HttpTransport)
        assert transport.timeout == 5.0

    def test_mqtt(self):
        assert isinstance(create_transport(TransportConfig(kind="mqtt")), MqttTransport)

    def test_simulated(self):
        assert isinstance(create_transport(TransportConfig(kind="simulated")), SimulatedTransport)

"""MQTT transport: commands and replies as JSON messages on a broker."""

import asyncio
import json
import logging
from typing import Any

import paho.mqtt.client as mqtt

from ..config import MQTTTransportConfig
from .correlating import DEFAULT_TIMEOUT, CorrelatingTransport

logger = logging.getLogger(__name__)


class MqttTransport(CorrelatingTransport):
    """Publishes commands to ``<prefix>/command/<name>`` and correlates
    replies arriving on ``<prefix>/reply`` by request id."""

    def __init__(self, config: MQTTTransportConfig, timeout: float = DEFAULT_TIMEOUT):
        super().__init__(timeout=timeout)
        self.config = config

        self._client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2)
        self._client.on_connect = self._handle_connect
        self._client.on_message = self._handle_message
        self._client.on_disconnect = self._handle_disconnect

        self._connected = False
        self._loop: asyncio.AbstractEventLoop | None = None

    @property
    def reply_topic(self) -> str:
        return f"{self.config.topic_prefix}/reply"

    def command_topic(self, command: str) -> str:
        return f"{self.config.topic_prefix}/command/{command}"

    def _handle_connect(
        self,
        client: mqtt.Client,
        userdata: Any,
        flags: Any,
        reason_code: Any,
        properties: Any = None,
    ) -> None:
        """Handle connection to broker."""
        if reason_code == 0:
            self._connected = True
            client.subscribe(self.reply_topic)
            logger.info(
                f"Connected to MQTT broker at {self.config.broker}:{self.config.port}, "
                f"awaiting replies on {self.reply_topic}"
            )
        else:
            logger.error(f"Failed to connect to MQTT broker: {reason_code}")

    def _handle_message(
        self,
        client: mqtt.Client,
        userdata: Any,
        msg: mqtt.MQTTMessage,
    ) -> None:
        """Hand a reply from the network thread to the event loop."""
        try:
            reply = json.loads(msg.payload.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring malformed reply on {msg.topic}: {e}")
            return

        if not isinstance(reply, dict) or self._loop is None:
            return

        error = reply.get("error")
        if error is None and reply.get("ok") is False:
            error = "Remote rejected command"

        self._loop.call_soon_threadsafe(
            self.deliver, reply.get("requestId"), reply.get("data"), error
        )

    def _handle_disconnect(
        self,
        client: mqtt.Client,
        userdata: Any,
        disconnect_flags: Any,
        reason_code: Any,
        properties: Any = None,
    ) -> None:
        """Handle disconnection from broker."""
        self._connected = False
        logger.warning(f"Disconnected from MQTT broker: {reason_code}")

    async def connect(self) -> bool:
        """Connect to the MQTT broker.

        Returns:
            True if connection successful.
        """
        self._loop = asyncio.get_running_loop()

        if self.config.username and self.config.password:
            self._client.username_pw_set(self.config.username, self.config.password)

        try:
            self._client.connect(self.config.broker, self.config.port, keepalive=60)
            self._client.loop_start()

            # Wait for connection
            for _ in range(50):  # 5 second timeout
                if self._connected:
                    return True
                await asyncio.sleep(0.1)

            logger.error("Timeout waiting for MQTT connection")
            return False

        except Exception as e:
            logger.error(f"Failed to connect to MQTT broker: {e}")
            return False

    async def _dispatch(self, request_id: str, command: str, payload: Any) -> None:
        if not self._connected:
            raise ConnectionError("not connected to broker")

        message = json.dumps({"requestId": request_id, "payload": payload})
        result = self._client.publish(self.command_topic(command), message)
        if result.rc != mqtt.MQTT_ERR_SUCCESS:
            raise ConnectionError(f"publish failed with rc={result.rc}")

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def close(self) -> None:
        """Disconnect from the broker and fail outstanding requests."""
        await super().close()
        self._client.loop_stop()
        self._client.disconnect()
        self._connected = False

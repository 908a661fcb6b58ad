"""Request/response channels to the remote authority."""

from ..config import TransportConfig
from .base import CoreResponse, RemoteTransport, unwrap_data, wrap_response
from .correlating import CorrelatingTransport
from .simulated import SimulatedTransport


def create_transport(config: TransportConfig) -> RemoteTransport:
    """Build the transport selected by ``config.kind``.

    The MQTT transport still has to be connected with ``await connect()``.
    """
    if config.kind == "http":
        from .http import HttpTransport

        return HttpTransport(config.endpoint, timeout=config.timeout_seconds)

    if config.kind == "mqtt":
        from .mqtt import MqttTransport

        return MqttTransport(config.mqtt, timeout=config.timeout_seconds)

    return SimulatedTransport()


__all__ = [
    "CoreResponse",
    "CorrelatingTransport",
    "RemoteTransport",
    "SimulatedTransport",
    "create_transport",
    "unwrap_data",
    "wrap_response",
]

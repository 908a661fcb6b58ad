"""Configuration loading for tripsync."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigError

TRANSPORT_KINDS = ("http", "mqtt", "simulated")


@dataclass
class NodeConfig:
    name: str = "tripsync-terminal"


@dataclass
class MQTTTransportConfig:
    broker: str = "localhost"
    port: int = 1883
    topic_prefix: str = "tripsync"
    username: str | None = None
    password: str | None = None


@dataclass
class TransportConfig:
    """Configuration for the remote request/response channel."""

    kind: str = "http"  # "http", "mqtt" or "simulated"
    endpoint: str = "http://localhost:8080/api"
    timeout_ms: int = 12000
    mqtt: MQTTTransportConfig = field(default_factory=MQTTTransportConfig)

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000.0


@dataclass
class ConnectionConfig:
    """Configuration for the connectivity circuit breaker."""

    max_failures: int = 3
    probe_command: str = "getRoutes"


@dataclass
class SyncConfig:
    """Configuration for the event drain loop."""

    enabled: bool = True
    interval_seconds: float = 10.0
    max_retries: int = 10
    sync_on_add: bool = True


@dataclass
class StoreConfig:
    db_path: str = "~/.tripsync/store.db"
    namespace: str = "tripsync"
    queue_key: str = "event_queue"


@dataclass
class ApiConfig:
    host: str = "127.0.0.1"
    port: int = 8090


@dataclass
class Config:
    node: NodeConfig = field(default_factory=NodeConfig)
    transport: TransportConfig = field(default_factory=TransportConfig)
    connection: ConnectionConfig = field(default_factory=ConnectionConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    api: ApiConfig = field(default_factory=ApiConfig)


def _get_env(key: str, default: Any = None) -> Any:
    """Get environment variable with TRIPSYNC_ prefix."""
    return os.environ.get(f"TRIPSYNC_{key}", default)


def _is_true(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


def _apply_env_overrides(config: Config) -> Config:
    """Apply environment variable overrides to config."""
    if name := _get_env("NODE_NAME"):
        config.node.name = name

    # Transport overrides
    if kind := _get_env("TRANSPORT_KIND"):
        config.transport.kind = kind
    if endpoint := _get_env("TRANSPORT_ENDPOINT"):
        config.transport.endpoint = endpoint
    if timeout := _get_env("TRANSPORT_TIMEOUT_MS"):
        config.transport.timeout_ms = int(timeout)
    if broker := _get_env("MQTT_BROKER"):
        config.transport.mqtt.broker = broker
    if port := _get_env("MQTT_PORT"):
        config.transport.mqtt.port = int(port)
    if username := _get_env("MQTT_USERNAME"):
        config.transport.mqtt.username = username
    if password := _get_env("MQTT_PASSWORD"):
        config.transport.mqtt.password = password

    # Breaker overrides
    if max_failures := _get_env("MAX_FAILURES"):
        config.connection.max_failures = int(max_failures)

    # Sync overrides
    if sync_enabled := _get_env("SYNC_ENABLED"):
        config.sync.enabled = _is_true(sync_enabled)
    if interval := _get_env("SYNC_INTERVAL"):
        config.sync.interval_seconds = float(interval)
    if max_retries := _get_env("SYNC_MAX_RETRIES"):
        config.sync.max_retries = int(max_retries)

    # Store overrides
    if db_path := _get_env("DB_PATH"):
        config.store.db_path = db_path

    return config


def _validate(config: Config) -> None:
    """Reject values the engine cannot run with."""
    if config.transport.kind not in TRANSPORT_KINDS:
        raise ConfigError(
            f"Unknown transport kind '{config.transport.kind}', "
            f"expected one of {', '.join(TRANSPORT_KINDS)}"
        )
    if config.transport.timeout_ms <= 0:
        raise ConfigError("transport.timeout_ms must be positive")
    if config.connection.max_failures < 1:
        raise ConfigError("connection.max_failures must be at least 1")
    if config.sync.max_retries < 0:
        raise ConfigError("sync.max_retries must not be negative")
    if config.sync.interval_seconds <= 0:
        raise ConfigError("sync.interval_seconds must be positive")


def load_config(config_path: str | Path | None = None) -> Config:
    """Load configuration from YAML file with environment variable overrides.

    Args:
        config_path: Path to YAML config file. If None, uses default config.

    Returns:
        Loaded and validated Config object.

    Raises:
        ConfigError: If the file cannot be parsed or a value is invalid.
    """
    config = Config()

    if config_path:
        path = Path(config_path)
        if path.exists():
            try:
                with open(path) as f:
                    data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigError(f"Invalid YAML in {path}: {e}") from e

            if "node" in data:
                config.node = NodeConfig(
                    name=data["node"].get("name", config.node.name)
                )

            # Parse transport config
            if "transport" in data:
                transport_data = data["transport"]
                mqtt = MQTTTransportConfig()
                if "mqtt" in transport_data:
                    mqtt_data = transport_data["mqtt"]
                    mqtt = MQTTTransportConfig(
                        broker=mqtt_data.get("broker", mqtt.broker),
                        port=mqtt_data.get("port", mqtt.port),
                        topic_prefix=mqtt_data.get("topic_prefix", mqtt.topic_prefix),
                        username=mqtt_data.get("username"),
                        password=mqtt_data.get("password"),
                    )

                config.transport = TransportConfig(
                    kind=transport_data.get("kind", config.transport.kind),
                    endpoint=transport_data.get("endpoint", config.transport.endpoint),
                    timeout_ms=transport_data.get(
                        "timeout_ms", config.transport.timeout_ms
                    ),
                    mqtt=mqtt,
                )

            # Parse breaker config
            if "connection" in data:
                conn_data = data["connection"]
                config.connection = ConnectionConfig(
                    max_failures=conn_data.get(
                        "max_failures", config.connection.max_failures
                    ),
                    probe_command=conn_data.get(
                        "probe_command", config.connection.probe_command
                    ),
                )

            # Parse sync config
            if "sync" in data:
                sync_data = data["sync"]
                config.sync = SyncConfig(
                    enabled=sync_data.get("enabled", config.sync.enabled),
                    interval_seconds=sync_data.get(
                        "interval_seconds", config.sync.interval_seconds
                    ),
                    max_retries=sync_data.get("max_retries", config.sync.max_retries),
                    sync_on_add=sync_data.get("sync_on_add", config.sync.sync_on_add),
                )

            if "store" in data:
                store_data = data["store"]
                config.store = StoreConfig(
                    db_path=store_data.get("db_path", config.store.db_path),
                    namespace=store_data.get("namespace", config.store.namespace),
                    queue_key=store_data.get("queue_key", config.store.queue_key),
                )

            if "api" in data:
                api_data = data["api"]
                config.api = ApiConfig(
                    host=api_data.get("host", config.api.host),
                    port=api_data.get("port", config.api.port),
                )

    # Apply environment variable overrides
    try:
        config = _apply_env_overrides(config)
    except ValueError as e:
        raise ConfigError(f"Invalid environment override: {e}") from e

    _validate(config)
    return config

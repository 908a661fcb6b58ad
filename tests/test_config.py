"""Tests for configuration loading."""

import pytest

from tripsync.config import Config, load_config
from tripsync.errors import ConfigError


class TestDefaults:
    """Tests for default configuration values."""

    def test_default_config(self):
        """Test defaults match the reference deployment."""
        config = Config()

        assert config.transport.kind == "http"
        assert config.transport.timeout_ms == 12000
        assert config.transport.timeout_seconds == 12.0
        assert config.connection.max_failures == 3
        assert config.sync.max_retries == 10
        assert config.store.queue_key == "event_queue"

    def test_load_without_path(self):
        """Test load_config with no file returns defaults."""
        config = load_config(None)

        assert config.node.name == "tripsync-terminal"

    def test_load_missing_file(self, tmp_path):
        """Test a missing file falls back to defaults."""
        config = load_config(tmp_path / "nope.yaml")

        assert config.sync.interval_seconds == 10.0


class TestYamlLoading:
    """Tests for YAML parsing."""

    def test_load_full_file(self, tmp_path):
        """Test every section is read from YAML."""
        path = tmp_path / "config.yaml"
        path.write_text(
            """
node:
  name: bus-kbx-123
transport:
  kind: mqtt
  timeout_ms: 5000
  mqtt:
    broker: broker.local
    port: 8883
    topic_prefix: fleet/kbx
connection:
  max_failures: 5
  probe_command: getCrew
sync:
  interval_seconds: 15
  max_retries: 4
  sync_on_add: false
store:
  db_path: /tmp/tripsync.db
  namespace: kbx
api:
  port: 9000
"""
        )

        config = load_config(path)

        assert config.node.name == "bus-kbx-123"
        assert config.transport.kind == "mqtt"
        assert config.transport.timeout_seconds == 5.0
        assert config.transport.mqtt.broker == "broker.local"
        assert config.transport.mqtt.topic_prefix == "fleet/kbx"
        assert config.connection.max_failures == 5
        assert config.connection.probe_command == "getCrew"
        assert config.sync.interval_seconds == 15
        assert config.sync.max_retries == 4
        assert config.sync.sync_on_add is False
        assert config.store.namespace == "kbx"
        assert config.store.queue_key == "event_queue"
        assert config.api.port == 9000

    def test_partial_section_keeps_defaults(self, tmp_path):
        """Test keys missing from a section keep their defaults."""
        path = tmp_path / "config.yaml"
        path.write_text("sync:\n  max_retries: 2\n")

        config = load_config(path)

        assert config.sync.max_retries == 2
        assert config.sync.interval_seconds == 10.0

    def test_empty_file(self, tmp_path):
        """Test an empty file is treated as defaults."""
        path = tmp_path / "config.yaml"
        path.write_text("")

        config = load_config(path)

        assert config.connection.max_failures == 3

    def test_invalid_yaml(self, tmp_path):
        """Test malformed YAML raises ConfigError."""
        path = tmp_path / "config.yaml"
        path.write_text("sync: [unclosed\n")

        with pytest.raises(ConfigError):
            load_config(path)


class TestEnvOverrides:
    """Tests for TRIPSYNC_* environment overrides."""

    def test_env_overrides(self, monkeypatch):
        """Test environment variables override file values."""
        monkeypatch.setenv("TRIPSYNC_NODE_NAME", "env-node")
        monkeypatch.setenv("TRIPSYNC_TRANSPORT_KIND", "simulated")
        monkeypatch.setenv("TRIPSYNC_TRANSPORT_TIMEOUT_MS", "3000")
        monkeypatch.setenv("TRIPSYNC_MAX_FAILURES", "7")
        monkeypatch.setenv("TRIPSYNC_SYNC_ENABLED", "no")
        monkeypatch.setenv("TRIPSYNC_SYNC_INTERVAL", "5")

        config = load_config(None)

        assert config.node.name == "env-node"
        assert config.transport.kind == "simulated"
        assert config.transport.timeout_ms == 3000
        assert config.connection.max_failures == 7
        assert config.sync.enabled is False
        assert config.sync.interval_seconds == 5.0

    def test_non_numeric_override(self, monkeypatch):
        """Test a non-numeric override raises ConfigError."""
        monkeypatch.setenv("TRIPSYNC_MAX_FAILURES", "many")

        with pytest.raises(ConfigError):
            load_config(None)


class TestValidation:
    """Tests for value validation."""

    @pytest.mark.parametrize(
        "yaml_text",
        [
            "transport:\n  kind: carrier-pigeon\n",
            "transport:\n  timeout_ms: 0\n",
            "connection:\n  max_failures: 0\n",
            "sync:\n  max_retries: -1\n",
            "sync:\n  interval_seconds: 0\n",
        ],
    )
    def test_rejects_invalid_values(self, tmp_path, yaml_text):
        """Test values the engine cannot run with are rejected."""
        path = tmp_path / "config.yaml"
        path.write_text(yaml_text)

        with pytest.raises(ConfigError):
            load_config(path)

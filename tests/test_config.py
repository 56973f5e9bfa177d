"""Tests for config module."""

from pathlib import Path

import yaml

from keyrelay.config import (
    DEFAULT_ALLOWED_ORIGINS,
    Config,
    LivenessConfig,
    RelayConfig,
    get_config_path,
    load_config,
)


class TestConfigDefaults:
    """Test default configuration values."""

    def test_default_config_values(self):
        """Config has sensible defaults when no file exists."""
        config = Config()

        assert config.port == 3000
        assert config.bind_address == "0.0.0.0"
        assert config.log_level == "INFO"
        assert config.log_file is None
        assert config.allowed_origins == DEFAULT_ALLOWED_ORIGINS

    def test_default_liveness_values(self):
        liveness = LivenessConfig()

        assert liveness.probe_interval == 30.0
        assert liveness.connection_timeout == 60.0
        assert liveness.cleanup_interval == 300.0
        assert liveness.reap_idle_devices is False

    def test_default_relay_values(self):
        relay = RelayConfig()

        assert relay.send_timeout == 5.0
        assert relay.handler_timeout == 10.0
        assert relay.outbox_size == 256

    def test_allowed_origins_not_shared(self):
        """Each config gets its own origins list."""
        first = Config()
        first.allowed_origins.append("https://other.example")

        assert "https://other.example" not in Config().allowed_origins


class TestGetConfigPath:
    """Test config path resolution."""

    def test_get_config_path_default(self):
        """Default config path is ~/.config/keyrelay/config.yaml."""
        path = get_config_path()
        assert path == Path.home() / ".config" / "keyrelay" / "config.yaml"

    def test_get_config_path_custom(self):
        """Can override config path."""
        custom = Path("/custom/config.yaml")
        assert get_config_path(custom) == custom


class TestLoadConfig:
    """Test config loading."""

    def test_load_config_no_file_returns_defaults(self, tmp_path):
        """Config returns defaults when no file exists."""
        config = load_config(tmp_path / "nonexistent.yaml", environ={})

        assert config.port == 3000
        assert config.log_level == "INFO"

    def test_load_config_from_file(self, tmp_path):
        """Config loads values from YAML file."""
        config_file = tmp_path / "config.yaml"
        config_file.write_text(
            yaml.dump(
                {
                    "port": 9000,
                    "bind_address": "127.0.0.1",
                    "log_level": "DEBUG",
                    "allowed_origins": ["https://app.example"],
                }
            )
        )

        config = load_config(config_file, environ={})

        assert config.port == 9000
        assert config.bind_address == "127.0.0.1"
        assert config.log_level == "DEBUG"
        assert config.allowed_origins == ["https://app.example"]

    def test_config_file_overrides_defaults(self, tmp_path):
        """File values override defaults, missing values use defaults."""
        config_file = tmp_path / "config.yaml"
        config_file.write_text(yaml.dump({"port": 9000}))

        config = load_config(config_file, environ={})

        assert config.port == 9000
        assert config.bind_address == "0.0.0.0"
        assert config.log_level == "INFO"

    def test_load_nested_sections(self, tmp_path):
        config_file = tmp_path / "config.yaml"
        config_file.write_text(
            yaml.dump(
                {
                    "liveness": {"probe_interval": 5, "reap_idle_devices": True},
                    "relay": {"outbox_size": 16},
                }
            )
        )

        config = load_config(config_file, environ={})

        assert config.liveness.probe_interval == 5
        assert config.liveness.reap_idle_devices is True
        assert config.liveness.connection_timeout == 60.0
        assert config.relay.outbox_size == 16
        assert config.relay.send_timeout == 5.0

    def test_empty_file_returns_defaults(self, tmp_path):
        config_file = tmp_path / "config.yaml"
        config_file.write_text("")

        assert load_config(config_file, environ={}) == Config()

    def test_invalid_yaml_returns_defaults(self, tmp_path):
        config_file = tmp_path / "config.yaml"
        config_file.write_text("port: [unclosed")

        assert load_config(config_file, environ={}) == Config()

    def test_non_mapping_yaml_returns_defaults(self, tmp_path):
        config_file = tmp_path / "config.yaml"
        config_file.write_text("- just\n- a list\n")

        assert load_config(config_file, environ={}) == Config()

    def test_injected_file_reader(self):
        """File reader can be injected for testing."""
        seen = []

        def reader(path):
            seen.append(path)
            return {"port": 4000}

        config = load_config(Path("/virtual.yaml"), file_reader=reader, environ={})

        assert seen == [Path("/virtual.yaml")]
        assert config.port == 4000


class TestPortEnvironment:
    """PORT environment variable handling."""

    def test_port_env_overrides_default(self, tmp_path):
        config = load_config(tmp_path / "missing.yaml", environ={"PORT": "8080"})

        assert config.port == 8080

    def test_port_env_overrides_file(self, tmp_path):
        config_file = tmp_path / "config.yaml"
        config_file.write_text(yaml.dump({"port": 9000}))

        config = load_config(config_file, environ={"PORT": "8080"})

        assert config.port == 8080

    def test_non_numeric_port_env_ignored(self, tmp_path):
        config = load_config(tmp_path / "missing.yaml", environ={"PORT": "http"})

        assert config.port == 3000

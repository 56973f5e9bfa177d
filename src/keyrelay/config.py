"""Configuration management for the signaling relay."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Mapping

import yaml


DEFAULT_ALLOWED_ORIGINS = [
    "https://yourapp.com",
    "http://localhost:3000",
    "http://localhost:19000",
    "http://localhost:19006",
]


@dataclass
class LivenessConfig:
    """Liveness probe and stale-state reaper configuration."""

    probe_interval: float = 30.0  # seconds between WebSocket pings
    connection_timeout: float = 60.0  # negotiation (and idle device) max age
    cleanup_interval: float = 300.0  # seconds between reaper sweeps
    reap_idle_devices: bool = False  # also reap devices by heartbeat age


@dataclass
class RelayConfig:
    """Message handling configuration."""

    send_timeout: float = 5.0  # per-frame send timeout (seconds)
    handler_timeout: float = 10.0  # max time for one inbound message
    outbox_size: int = 256  # queued frames per connection before it is dropped


@dataclass
class Config:
    """Relay configuration."""

    port: int = 3000
    bind_address: str = "0.0.0.0"
    log_level: str = "INFO"
    log_file: str | None = None
    allowed_origins: list[str] = field(
        default_factory=lambda: DEFAULT_ALLOWED_ORIGINS.copy()
    )
    liveness: LivenessConfig = field(default_factory=LivenessConfig)
    relay: RelayConfig = field(default_factory=RelayConfig)


def get_config_path(custom_path: Path | None = None) -> Path:
    """Get the configuration file path.

    Args:
        custom_path: Override path. If None, returns default.

    Returns:
        Path to config file.
    """
    if custom_path is not None:
        return custom_path
    return Path.home() / ".config" / "keyrelay" / "config.yaml"


def _default_file_reader(path: Path) -> dict[str, Any] | None:
    """Default file reader that loads YAML from disk."""
    if not path.exists():
        return None
    try:
        content = path.read_text()
        if not content.strip():
            return None
        data = yaml.safe_load(content)
    except yaml.YAMLError:
        return None
    return data if isinstance(data, dict) else None


def _port_from_env(environ: Mapping[str, str], default: int) -> int:
    value = environ.get("PORT")
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def load_config(
    path: Path | None = None,
    file_reader: Callable[[Path], dict[str, Any] | None] | None = None,
    environ: Mapping[str, str] | None = None,
) -> Config:
    """Load configuration from file.

    The ``PORT`` environment variable, when set, overrides the port
    from the file.

    Args:
        path: Path to config file. If None, uses default path.
        file_reader: Injectable file reader for testing.
        environ: Injectable environment for testing.

    Returns:
        Config object with values from file or defaults.
    """
    config_path = get_config_path(path)
    reader = file_reader or _default_file_reader
    env = os.environ if environ is None else environ

    data = reader(config_path)

    if data is None:
        config = Config()
        config.port = _port_from_env(env, config.port)
        return config

    # Parse liveness config section
    liveness_data = data.get("liveness", {})
    liveness_config = LivenessConfig(
        probe_interval=liveness_data.get(
            "probe_interval", LivenessConfig.probe_interval
        ),
        connection_timeout=liveness_data.get(
            "connection_timeout", LivenessConfig.connection_timeout
        ),
        cleanup_interval=liveness_data.get(
            "cleanup_interval", LivenessConfig.cleanup_interval
        ),
        reap_idle_devices=liveness_data.get(
            "reap_idle_devices", LivenessConfig.reap_idle_devices
        ),
    )

    # Parse relay config section
    relay_data = data.get("relay", {})
    relay_config = RelayConfig(
        send_timeout=relay_data.get("send_timeout", RelayConfig.send_timeout),
        handler_timeout=relay_data.get(
            "handler_timeout", RelayConfig.handler_timeout
        ),
        outbox_size=relay_data.get("outbox_size", RelayConfig.outbox_size),
    )

    return Config(
        port=_port_from_env(env, data.get("port", Config.port)),
        bind_address=data.get("bind_address", Config.bind_address),
        log_level=data.get("log_level", Config.log_level),
        log_file=data.get("log_file", Config.log_file),
        allowed_origins=data.get("allowed_origins", DEFAULT_ALLOWED_ORIGINS.copy()),
        liveness=liveness_config,
        relay=relay_config,
    )

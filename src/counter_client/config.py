"""
Configuration dataclasses for the counter client.

This module defines the configuration tree used throughout the client
(broker endpoint, reconnection policy, heartbeat timing, persistence and
logging) together with JSON file loading/saving and environment overrides.
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

from .exceptions import ConfigError


DEFAULT_STATE_FILE = Path.home() / ".counter_client" / "state.json"
DEFAULT_CONFIG_FILE = Path.home() / ".counter_client" / "config.json"

ENV_PREFIX = "COUNTER_CLIENT_"


@dataclass
class BrokerConfig:
    """MQTT broker endpoint reached over WebSocket."""

    host: str = "192.168.149.148"
    port: int = 8083
    path: str = "/mqtt"
    transport: str = "websockets"  # 'websockets' or 'tcp'
    username: Optional[str] = None
    password: Optional[str] = None
    keepalive_seconds: int = 60
    tls: bool = False

    @property
    def url(self) -> str:
        """Broker address in ws://host:port/path form (for display and logs)."""
        if self.transport == "websockets":
            scheme = "wss" if self.tls else "ws"
            return f"{scheme}://{self.host}:{self.port}{self.path}"
        scheme = "mqtts" if self.tls else "mqtt"
        return f"{scheme}://{self.host}:{self.port}"


@dataclass
class ReconnectConfig:
    """Automatic reconnection: fixed delay, unbounded attempts."""

    enabled: bool = True
    delay_seconds: float = 5.0
    connect_timeout_seconds: float = 10.0


@dataclass
class HeartbeatConfig:
    """Heartbeat timing derived from the server's liveness threshold."""

    liveness_threshold_seconds: float = 30.0

    @property
    def interval_seconds(self) -> float:
        """Heartbeat period: half of the server's liveness threshold."""
        return self.liveness_threshold_seconds / 2


@dataclass
class PersistenceConfig:
    """Location of the persisted key-value state."""

    state_file_path: Path = field(default_factory=lambda: DEFAULT_STATE_FILE)


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "info"
    output_format: str = "text"  # 'json', 'text', 'both'


@dataclass
class ClientConfig:
    """Main configuration combining all sub-configurations."""

    broker: BrokerConfig = field(default_factory=BrokerConfig)
    reconnect: ReconnectConfig = field(default_factory=ReconnectConfig)
    heartbeat: HeartbeatConfig = field(default_factory=HeartbeatConfig)
    persistence: PersistenceConfig = field(default_factory=PersistenceConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    language: str = "th"  # 'th' or 'en'


def create_default_config(
    language: str = "th",
    state_file: Optional[Path] = None,
) -> ClientConfig:
    """
    Create a default client configuration.

    Args:
        language: Status message language ('th' or 'en')
        state_file: Path to the persisted state file

    Returns:
        ClientConfig with default settings
    """
    return ClientConfig(
        persistence=PersistenceConfig(
            state_file_path=state_file or DEFAULT_STATE_FILE,
        ),
        language=language,
    )


def config_to_dict(config: ClientConfig) -> dict:
    """Serialize a ClientConfig into JSON-compatible primitives."""
    return {
        "broker": {
            "host": config.broker.host,
            "port": config.broker.port,
            "path": config.broker.path,
            "transport": config.broker.transport,
            "username": config.broker.username,
            "password": config.broker.password,
            "keepalive_seconds": config.broker.keepalive_seconds,
            "tls": config.broker.tls,
        },
        "reconnect": {
            "enabled": config.reconnect.enabled,
            "delay_seconds": config.reconnect.delay_seconds,
            "connect_timeout_seconds": config.reconnect.connect_timeout_seconds,
        },
        "heartbeat": {
            "liveness_threshold_seconds": config.heartbeat.liveness_threshold_seconds,
        },
        "persistence": {
            "state_file_path": str(config.persistence.state_file_path),
        },
        "logging": {
            "level": config.logging.level,
            "output_format": config.logging.output_format,
        },
        "language": config.language,
    }


def _section(data: dict, name: str) -> dict:
    value = data.get(name, {})
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(
            code="invalid_section",
            message=f"Config section '{name}' must be an object",
            details={"section": name},
        )
    return value


def config_from_dict(data: dict) -> ClientConfig:
    """
    Build a ClientConfig from parsed JSON.

    Missing keys fall back to defaults.

    Raises:
        ConfigError: If a section or value has the wrong type
    """
    if not isinstance(data, dict):
        raise ConfigError(
            code="invalid_config",
            message="Configuration must be a JSON object",
        )

    defaults = ClientConfig()
    broker_data = _section(data, "broker")
    reconnect_data = _section(data, "reconnect")
    heartbeat_data = _section(data, "heartbeat")
    persistence_data = _section(data, "persistence")
    logging_data = _section(data, "logging")

    try:
        broker = BrokerConfig(
            host=str(broker_data.get("host", defaults.broker.host)),
            port=int(broker_data.get("port", defaults.broker.port)),
            path=str(broker_data.get("path", defaults.broker.path)),
            transport=str(broker_data.get("transport", defaults.broker.transport)),
            username=broker_data.get("username"),
            password=broker_data.get("password"),
            keepalive_seconds=int(
                broker_data.get("keepalive_seconds", defaults.broker.keepalive_seconds)
            ),
            tls=bool(broker_data.get("tls", defaults.broker.tls)),
        )
        reconnect = ReconnectConfig(
            enabled=bool(reconnect_data.get("enabled", defaults.reconnect.enabled)),
            delay_seconds=float(
                reconnect_data.get("delay_seconds", defaults.reconnect.delay_seconds)
            ),
            connect_timeout_seconds=float(
                reconnect_data.get(
                    "connect_timeout_seconds",
                    defaults.reconnect.connect_timeout_seconds,
                )
            ),
        )
        heartbeat = HeartbeatConfig(
            liveness_threshold_seconds=float(
                heartbeat_data.get(
                    "liveness_threshold_seconds",
                    defaults.heartbeat.liveness_threshold_seconds,
                )
            ),
        )
    except (TypeError, ValueError) as e:
        raise ConfigError(
            code="invalid_value",
            message=f"Invalid configuration value: {e}",
        )

    if broker.transport not in ("websockets", "tcp"):
        raise ConfigError(
            code="invalid_value",
            message=f"Unsupported broker transport: {broker.transport}",
            details={"transport": broker.transport},
        )

    state_file_path = persistence_data.get("state_file_path")
    persistence = PersistenceConfig(
        state_file_path=Path(state_file_path) if state_file_path else DEFAULT_STATE_FILE,
    )

    logging_config = LoggingConfig(
        level=logging_data.get("level", defaults.logging.level),
        output_format=logging_data.get("output_format", defaults.logging.output_format),
    )

    return ClientConfig(
        broker=broker,
        reconnect=reconnect,
        heartbeat=heartbeat,
        persistence=persistence,
        logging=logging_config,
        language=data.get("language", defaults.language),
    )


def load_config_from_file(config_path: Path) -> Optional[ClientConfig]:
    """
    Load configuration from a JSON file.

    Args:
        config_path: Path to the configuration file

    Returns:
        ClientConfig if the file exists, None otherwise

    Raises:
        ConfigError: If the file cannot be read or parsed
    """
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        return None
    except json.JSONDecodeError as e:
        raise ConfigError(
            code="parse_error",
            message=f"Failed to parse config file: {e}",
            details={"file_path": str(config_path)},
        )
    except OSError as e:
        raise ConfigError(
            code="io_error",
            message=f"Failed to read config file: {e}",
            details={"file_path": str(config_path)},
        )

    return config_from_dict(data)


def save_config_to_file(config: ClientConfig, config_path: Path) -> bool:
    """
    Save configuration to a JSON file.

    Args:
        config: ClientConfig to save
        config_path: Path to save the configuration

    Returns:
        True if successful, False otherwise
    """
    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w", encoding="utf-8") as f:
            json.dump(config_to_dict(config), f, indent=2, ensure_ascii=False)
        return True
    except OSError:
        return False


def apply_env_overrides(
    config: ClientConfig,
    environ: Mapping[str, str],
) -> ClientConfig:
    """
    Apply COUNTER_CLIENT_* environment overrides in place.

    Args:
        config: Configuration to update
        environ: Environment mapping (usually os.environ after load_dotenv)

    Returns:
        The same ClientConfig instance

    Raises:
        ConfigError: If a numeric override cannot be parsed
    """
    def get(name: str) -> Optional[str]:
        value = environ.get(ENV_PREFIX + name)
        if value is None or not value.strip():
            return None
        return value.strip()

    host = get("BROKER_HOST")
    if host:
        config.broker.host = host

    port = get("BROKER_PORT")
    if port:
        try:
            config.broker.port = int(port)
        except ValueError:
            raise ConfigError(
                code="invalid_value",
                message=f"{ENV_PREFIX}BROKER_PORT is not an integer: {port}",
            )

    username = get("BROKER_USERNAME")
    if username:
        config.broker.username = username

    password = get("BROKER_PASSWORD")
    if password:
        config.broker.password = password

    state_file = get("STATE_FILE")
    if state_file:
        config.persistence.state_file_path = Path(state_file)

    language = get("LANGUAGE")
    if language:
        config.language = language.lower()

    return config


def validate_config(config: ClientConfig) -> list[str]:
    """
    Check a configuration for values the client cannot run with.

    Returns:
        List of problem descriptions (empty if the configuration is usable)
    """
    problems = []

    if not config.broker.host:
        problems.append("broker.host must not be empty")
    if not 0 < config.broker.port < 65536:
        problems.append(f"broker.port out of range: {config.broker.port}")
    if config.broker.transport == "websockets" and not config.broker.path.startswith("/"):
        problems.append(f"broker.path must start with '/': {config.broker.path}")
    if config.reconnect.delay_seconds <= 0:
        problems.append("reconnect.delay_seconds must be positive")
    if config.reconnect.connect_timeout_seconds <= 0:
        problems.append("reconnect.connect_timeout_seconds must be positive")
    if config.heartbeat.liveness_threshold_seconds <= 0:
        problems.append("heartbeat.liveness_threshold_seconds must be positive")
    if config.logging.level not in ("debug", "info", "warn", "error"):
        problems.append(f"Unsupported logging.level: {config.logging.level}")
    if config.logging.output_format not in ("json", "text", "both"):
        problems.append(f"Unsupported logging.output_format: {config.logging.output_format}")
    if config.language not in ("th", "en"):
        problems.append(f"Unsupported language: {config.language}")

    return problems

"""
Counter Client - MQTT-over-WebSocket counter client.

This package keeps a persistent client identity, mirrors a server-driven
counter, reports liveness over MQTT and survives broker outages with
fixed-delay reconnection.
"""

__version__ = "0.1.0"
__author__ = "Counter Client Team"

from counter_client.exceptions import (
    CounterClientError,
    ConfigError,
    PersistenceError,
    TransportError,
    PayloadError,
    IdentityError,
)
from counter_client.enums import (
    ConnectionStatus,
    TransportEventType,
    TopicAction,
    ResponseStatus,
    PresenceStatus,
    LogLevel,
)
from counter_client.config import (
    BrokerConfig,
    ReconnectConfig,
    HeartbeatConfig,
    PersistenceConfig,
    LoggingConfig,
    ClientConfig,
    create_default_config,
    load_config_from_file,
    save_config_to_file,
    apply_env_overrides,
    validate_config,
)
from counter_client.models import (
    CounterState,
    ClientSnapshot,
    TransportEvent,
    StatusPayload,
    CountAck,
    GetCountResponse,
    ChangeIdResponse,
)
from counter_client.state_store import (
    KeyValueStore,
)
from counter_client.identity_store import (
    IdentityStore,
    generate_client_id,
    validate_client_id,
)
from counter_client.counter_store import (
    CounterStore,
    parse_count,
)
from counter_client.topics import (
    classify,
    subscription_topics,
)
from counter_client.state import (
    StateHolder,
)
from counter_client.message_handler import (
    MessageHandler,
    HandleResult,
)
from counter_client.heartbeat import (
    HeartbeatPublisher,
)
from counter_client.transport import (
    Transport,
    MqttTransport,
)
from counter_client.connection_manager import (
    ConnectionManager,
)
from counter_client.audit_logger import (
    AuditLogger,
    LogEntry,
)
from counter_client.i18n import (
    get_message,
    get_all_message_keys,
    has_translation,
    get_missing_translations,
    validate_translations,
    TRANSLATIONS,
    SUPPORTED_LANGUAGES,
    DEFAULT_LANGUAGE,
)
from counter_client.cli import (
    main as cli_main,
    create_parser,
    format_snapshot,
)

__all__ = [
    # Exceptions
    "CounterClientError",
    "ConfigError",
    "PersistenceError",
    "TransportError",
    "PayloadError",
    "IdentityError",
    # Enums
    "ConnectionStatus",
    "TransportEventType",
    "TopicAction",
    "ResponseStatus",
    "PresenceStatus",
    "LogLevel",
    # Configuration
    "BrokerConfig",
    "ReconnectConfig",
    "HeartbeatConfig",
    "PersistenceConfig",
    "LoggingConfig",
    "ClientConfig",
    "create_default_config",
    "load_config_from_file",
    "save_config_to_file",
    "apply_env_overrides",
    "validate_config",
    # Models
    "CounterState",
    "ClientSnapshot",
    "TransportEvent",
    "StatusPayload",
    "CountAck",
    "GetCountResponse",
    "ChangeIdResponse",
    # Persistence
    "KeyValueStore",
    "IdentityStore",
    "generate_client_id",
    "validate_client_id",
    "CounterStore",
    "parse_count",
    # Topics
    "classify",
    "subscription_topics",
    # State
    "StateHolder",
    # Message Handler
    "MessageHandler",
    "HandleResult",
    # Heartbeat
    "HeartbeatPublisher",
    # Transport
    "Transport",
    "MqttTransport",
    # Connection Manager
    "ConnectionManager",
    # Audit Logger
    "AuditLogger",
    "LogEntry",
    # I18n
    "get_message",
    "get_all_message_keys",
    "has_translation",
    "get_missing_translations",
    "validate_translations",
    "TRANSLATIONS",
    "SUPPORTED_LANGUAGES",
    "DEFAULT_LANGUAGE",
    # CLI
    "cli_main",
    "create_parser",
    "format_snapshot",
]

"""
Enumeration types for the counter client.

These enums provide type-safe constants for connection states, transport
events, topic actions and payload status fields.
"""

from enum import Enum


class ConnectionStatus(Enum):
    """Observable state of the connection manager."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class TransportEventType(Enum):
    """Events delivered by a transport session."""

    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    CONNECTION_LOST = "connection_lost"
    ERROR = "error"
    CLOSED = "closed"
    OFFLINE = "offline"
    MESSAGE = "message"


class TopicAction(Enum):
    """Inbound topic actions, in dispatch precedence order."""

    CHANGE_ID = "change_id"
    GET_COUNT = "get_count"
    COUNT = "count"


class ResponseStatus(Enum):
    """Status field of a change_id response."""

    SUCCESS = "success"
    ERROR = "error"


class PresenceStatus(Enum):
    """Online flag carried by status payloads."""

    ONLINE = "online"
    OFFLINE = "offline"


class LogLevel(Enum):
    """Logging severity levels."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"

"""
Data models for the counter client.

This module defines the persisted counter state, the read-only snapshot
handed to the display surface, transport events, and the outbound JSON
payloads.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from .enums import ConnectionStatus, PresenceStatus, ResponseStatus, TransportEventType


def utc_now_iso() -> str:
    """Current UTC time as ISO-8601 with millisecond precision and a Z suffix."""
    now = datetime.now(timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass
class CounterState:
    """Last counter value received from the server."""

    count: int
    updated_at: Optional[str] = None


@dataclass(frozen=True)
class ClientSnapshot:
    """Read-only view of the client state for the display surface."""

    client_id: Optional[str]
    count: int
    last_updated: Optional[str]
    status: ConnectionStatus
    reconnect_attempts: int
    last_disconnect_at: Optional[str]
    message: str
    heartbeat_active: bool

    @property
    def is_connected(self) -> bool:
        return self.status == ConnectionStatus.CONNECTED

    @property
    def is_connecting(self) -> bool:
        return self.status == ConnectionStatus.CONNECTING


@dataclass
class TransportEvent:
    """
    A single event from a transport session.

    `generation` identifies the session that produced the event; the
    connection manager discards events from sessions it has already torn down.
    """

    type: TransportEventType
    generation: int = 0
    topic: Optional[str] = None
    payload: bytes = b""
    reason: Optional[str] = None  # 'not_found', 'refused', 'timeout', 'reset'
    error: Optional[str] = None


@dataclass
class StatusPayload:
    """Heartbeat/status message published on clients/status."""

    client_id: str
    timestamp: str
    count: int
    status: PresenceStatus

    def to_dict(self) -> dict:
        return {
            "client_id": self.client_id,
            "timestamp": self.timestamp,
            "count": self.count,
            "status": self.status.value,
        }


@dataclass
class CountAck:
    """Acknowledgment of a received counter update."""

    client_id: str
    count: int
    timestamp: str

    def to_dict(self) -> dict:
        return {
            "client_id": self.client_id,
            "count": self.count,
            "timestamp": self.timestamp,
        }


@dataclass
class GetCountResponse:
    """Answer to a server get_count request."""

    client_id: str
    count: int
    timestamp: str

    def to_dict(self) -> dict:
        return {
            "client_id": self.client_id,
            "count": self.count,
            "timestamp": self.timestamp,
        }


@dataclass
class ChangeIdResponse:
    """
    Answer to a server change_id request.

    The success form carries a timestamp, the error form carries the error
    message and a null new_client_id.
    """

    old_client_id: Optional[str]
    new_client_id: Optional[str]
    status: ResponseStatus
    timestamp: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        data = {
            "old_client_id": self.old_client_id,
            "new_client_id": self.new_client_id,
            "status": self.status.value,
        }
        if self.status == ResponseStatus.SUCCESS:
            data["timestamp"] = self.timestamp
        else:
            data["error"] = self.error
        return data

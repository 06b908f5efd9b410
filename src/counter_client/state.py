"""
Client state holder.

StateHolder is the single owner of the mutable client state: identity,
counter, and connection fields. The display surface only ever sees frozen
ClientSnapshot objects, either by asking for one or by registering a listener
that is called after every committed change.
"""

from dataclasses import replace
from typing import Callable, Optional

from .audit_logger import AuditLogger
from .enums import ConnectionStatus
from .models import ClientSnapshot


SnapshotListener = Callable[[ClientSnapshot], None]


class StateHolder:
    """Mutable client state exposed as read-only snapshots."""

    COMPONENT = "StateHolder"

    FIELDS = frozenset({
        "client_id",
        "count",
        "last_updated",
        "status",
        "reconnect_attempts",
        "last_disconnect_at",
        "message",
        "heartbeat_active",
    })

    def __init__(
        self,
        client_id: Optional[str] = None,
        count: int = 0,
        last_updated: Optional[str] = None,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        self._snapshot = ClientSnapshot(
            client_id=client_id,
            count=count,
            last_updated=last_updated,
            status=ConnectionStatus.DISCONNECTED,
            reconnect_attempts=0,
            last_disconnect_at=None,
            message="",
            heartbeat_active=False,
        )
        self._listeners: list[SnapshotListener] = []
        self._logger = logger

    def snapshot(self) -> ClientSnapshot:
        """Return the current state."""
        return self._snapshot

    @property
    def client_id(self) -> Optional[str]:
        return self._snapshot.client_id

    @property
    def count(self) -> int:
        return self._snapshot.count

    @property
    def status(self) -> ConnectionStatus:
        return self._snapshot.status

    @property
    def reconnect_attempts(self) -> int:
        return self._snapshot.reconnect_attempts

    def update(self, **changes) -> ClientSnapshot:
        """
        Commit one or more field changes as a single state transition.

        Listeners are notified once, and only if something changed.

        Raises:
            ValueError: If an unknown field name is given
        """
        unknown = set(changes) - self.FIELDS
        if unknown:
            raise ValueError(f"Unknown state fields: {sorted(unknown)}")

        new_snapshot = replace(self._snapshot, **changes)
        if new_snapshot == self._snapshot:
            return self._snapshot

        self._snapshot = new_snapshot
        self._notify(new_snapshot)
        return new_snapshot

    def add_listener(self, listener: SnapshotListener) -> Callable[[], None]:
        """
        Register a listener for committed changes.

        Returns:
            A function that removes the listener
        """
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _notify(self, snapshot: ClientSnapshot) -> None:
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                # A faulty display must not break state transitions
                if self._logger:
                    self._logger.log_error(self.COMPONENT, "Snapshot listener failed", error=e)

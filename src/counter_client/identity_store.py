"""
Identity Store module.

Persists the short client identifier that the broker session and every
client-scoped topic are keyed by. The identifier survives restarts unless the
user resets all data or the server assigns a new one.
"""

import uuid
from typing import Optional

from .audit_logger import AuditLogger
from .enums import LogLevel
from .exceptions import IdentityError, PersistenceError
from .state_store import ALL_KEYS, KEY_CLIENT_ID, KeyValueStore


MAX_CLIENT_ID_LENGTH = 64
FORBIDDEN_ID_CHARS = frozenset("/+#")


def generate_client_id() -> str:
    """Generate a short random identifier (8 hex characters)."""
    return uuid.uuid4().hex[:8]


def validate_client_id(value: object) -> str:
    """
    Check that a value can be used as a client identifier.

    The identifier becomes an MQTT topic segment, so topic separators and
    wildcards are rejected.

    Raises:
        IdentityError: If the value is not a usable identifier
    """
    if not isinstance(value, str) or not value:
        raise IdentityError(
            code="invalid_client_id",
            message="new_client_id must be a non-empty string",
            details={"value": repr(value)},
        )
    if len(value) > MAX_CLIENT_ID_LENGTH:
        raise IdentityError(
            code="invalid_client_id",
            message=f"new_client_id is longer than {MAX_CLIENT_ID_LENGTH} characters",
            details={"length": len(value)},
        )
    if any(ch in FORBIDDEN_ID_CHARS or ch.isspace() for ch in value):
        raise IdentityError(
            code="invalid_client_id",
            message="new_client_id contains whitespace or MQTT topic characters",
            details={"value": value},
        )
    return value


class IdentityStore:
    """Loads, creates, replaces and resets the persisted client identifier."""

    COMPONENT = "IdentityStore"

    def __init__(self, store: KeyValueStore, logger: Optional[AuditLogger] = None) -> None:
        self._store = store
        self._logger = logger

    def load_or_create(self) -> Optional[str]:
        """
        Return the persisted identifier, creating and persisting one if absent.

        Returns:
            The client identifier, or None if storage failed (logged)
        """
        try:
            client_id = self._store.get(KEY_CLIENT_ID)
            if client_id:
                try:
                    return validate_client_id(client_id)
                except IdentityError:
                    self._log(LogLevel.WARN, "Stored client ID is unusable, generating a new one", {
                        "stored_client_id": client_id,
                    })

            client_id = generate_client_id()
            self._store.set_many({KEY_CLIENT_ID: client_id})
            self._log(LogLevel.INFO, "Generated new client ID", {"client_id": client_id})
            return client_id
        except PersistenceError as e:
            if self._logger:
                self._logger.log_error(self.COMPONENT, "Client ID unavailable for this session", error=e)
            return None

    def save(self, client_id: str) -> str:
        """
        Persist a new identifier.

        Raises:
            IdentityError: If the identifier is not usable
            PersistenceError: If it cannot be written
        """
        validate_client_id(client_id)
        self._store.set_many({KEY_CLIENT_ID: client_id})
        return client_id

    def reset(self) -> str:
        """
        Clear the identifier and dependent counter state, then persist a fresh one.

        Returns:
            The new identifier

        Raises:
            PersistenceError: If storage cannot be written
        """
        self._store.remove_many(ALL_KEYS)
        self._log(LogLevel.INFO, "All stored data cleared", {})
        client_id = generate_client_id()
        self._store.set_many({KEY_CLIENT_ID: client_id})
        self._log(LogLevel.INFO, "Generated new client ID", {"client_id": client_id})
        return client_id

    def _log(self, level: LogLevel, message: str, data: dict) -> None:
        if self._logger:
            self._logger.log(level, self.COMPONENT, message, data)

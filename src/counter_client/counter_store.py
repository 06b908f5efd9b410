"""
Counter Store module.

Persists the last counter value together with the timestamp of the update
that produced it. Both keys are always written in one atomic write.
"""

from typing import Optional

from .audit_logger import AuditLogger
from .exceptions import PersistenceError
from .models import CounterState
from .state_store import KEY_COUNT, KEY_LAST_UPDATED, KeyValueStore


# CPython's default limit for int-from-string conversion
MAX_COUNT_DIGITS = 4300


def parse_count(text: str) -> Optional[int]:
    """Parse a base-10 integer, returning None for anything else."""
    text = text.strip()
    digits = text[1:] if text[:1] in ("-", "+") else text
    if not digits or not digits.isascii() or not digits.isdigit():
        return None
    if len(digits) > MAX_COUNT_DIGITS:
        return None
    try:
        return int(text)
    except ValueError:
        # Beyond the interpreter's integer string conversion limit
        return None


class CounterStore:
    """Loads, saves and clears the persisted counter state."""

    COMPONENT = "CounterStore"

    def __init__(self, store: KeyValueStore, logger: Optional[AuditLogger] = None) -> None:
        self._store = store
        self._logger = logger

    def load(self) -> Optional[CounterState]:
        """
        Load the persisted counter.

        Returns:
            CounterState, or None if either key is missing, the count does not
            parse, or storage cannot be read
        """
        try:
            values = self._store.get_many([KEY_COUNT, KEY_LAST_UPDATED])
        except PersistenceError as e:
            if self._logger:
                self._logger.log_error(self.COMPONENT, "Failed to load saved count", error=e)
            return None

        raw_count = values[KEY_COUNT]
        updated_at = values[KEY_LAST_UPDATED]
        if raw_count is None or updated_at is None:
            return None

        count = parse_count(raw_count)
        if count is None:
            return None

        return CounterState(count=count, updated_at=updated_at)

    def save(self, count: int, updated_at: str) -> None:
        """
        Persist count and timestamp together.

        Raises:
            PersistenceError: If storage cannot be written
        """
        self._store.set_many({
            KEY_COUNT: str(count),
            KEY_LAST_UPDATED: updated_at,
        })

    def clear(self) -> None:
        """
        Remove the persisted count and timestamp.

        Raises:
            PersistenceError: If storage cannot be written
        """
        self._store.remove_many([KEY_COUNT, KEY_LAST_UPDATED])

"""
State Store module for persistent client state.

This module provides a small key-value store backed by a single JSON file.
Values are strings. Every write replaces the whole file atomically, so a
multi-key update is either fully visible or not visible at all.
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Iterable, Mapping, Optional

from .exceptions import PersistenceError


# Persisted keys
KEY_CLIENT_ID = "client_id"
KEY_COUNT = "mqtt_count"
KEY_LAST_UPDATED = "last_updated"

ALL_KEYS = (KEY_CLIENT_ID, KEY_COUNT, KEY_LAST_UPDATED)


class KeyValueStore:
    """
    File-backed string key-value storage.

    A missing file, malformed JSON, or a top level that is not an object all
    read as an empty store. Non-string values read as absent.
    """

    def __init__(self, file_path: Path) -> None:
        """
        Initialize the key-value store.

        Args:
            file_path: Path to the state file (JSON format)
        """
        self._file_path = Path(file_path)

    def _read(self) -> dict[str, str]:
        """
        Read the whole store.

        Raises:
            PersistenceError: If the file exists but cannot be read
        """
        try:
            with open(self._file_path, "rb") as f:
                raw = f.read()
        except FileNotFoundError:
            return {}
        except OSError as e:
            raise PersistenceError(
                code="io_error",
                message=f"Failed to read state file: {e}",
                details={"file_path": str(self._file_path)},
            )

        # Undecodable bytes, bad JSON and oversized numbers all read as empty
        try:
            data = json.loads(raw.decode("utf-8"))
        except (ValueError, RecursionError):
            return {}

        if not isinstance(data, dict):
            return {}

        return {
            key: value
            for key, value in data.items()
            if isinstance(key, str) and isinstance(value, str)
        }

    def _write(self, data: Mapping[str, str]) -> None:
        """
        Replace the store contents atomically.

        Raises:
            PersistenceError: If the file cannot be written
        """
        try:
            self._file_path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                dir=str(self._file_path.parent),
                prefix=f".{self._file_path.name}.",
                suffix=".tmp",
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(dict(data), f, indent=2, sort_keys=True, ensure_ascii=False)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_path, self._file_path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        except OSError as e:
            raise PersistenceError(
                code="io_error",
                message=f"Failed to write state file: {e}",
                details={"file_path": str(self._file_path)},
            )

    def get(self, key: str) -> Optional[str]:
        """Get a single value, or None if unset."""
        return self._read().get(key)

    def get_many(self, keys: Iterable[str]) -> dict[str, Optional[str]]:
        """Get several values from one consistent read."""
        data = self._read()
        return {key: data.get(key) for key in keys}

    def set_many(self, values: Mapping[str, str]) -> None:
        """Set several values in a single atomic write."""
        data = self._read()
        data.update(values)
        self._write(data)

    def remove_many(self, keys: Iterable[str]) -> None:
        """Remove several keys in a single atomic write."""
        data = self._read()
        for key in keys:
            data.pop(key, None)
        self._write(data)

    @property
    def file_path(self) -> Path:
        """Get the state file path."""
        return self._file_path

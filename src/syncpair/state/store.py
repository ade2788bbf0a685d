"""Durable key/value settings store backed by a JSON file."""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from copy import deepcopy
from pathlib import Path
from typing import Any

from .errors import StoreError

LOGGER = logging.getLogger(__name__)

SETTINGS_FILENAME = "settings.json"


class SettingsStore:
    """Thread-safe string-keyed store persisted as a single JSON object.

    Writes are last-writer-wins per key. Passing ``path=None`` keeps the
    data in memory only, which is what the tests use.
    """

    def __init__(self, path: Path | None = None) -> None:
        """Initialize the store and load any existing data.

        Args:
            path: JSON file backing the store, or None for an in-memory store.

        Raises:
            StoreError: If an existing file cannot be parsed.
        """
        self._path = path.expanduser() if path is not None else None
        self._lock = threading.Lock()
        self._data: dict[str, Any] = self._load()

    @property
    def path(self) -> Path | None:
        """Return the backing file path, if any."""
        return self._path

    def get(self, key: str, default: Any = None) -> Any:
        """Return a copy of the value stored under ``key``."""
        with self._lock:
            if key not in self._data:
                return default
            return deepcopy(self._data[key])

    def set(self, key: str, value: Any) -> None:
        """Store ``value`` under ``key`` and flush to disk."""
        with self._lock:
            self._data[key] = deepcopy(value)
            self._flush()

    def delete(self, key: str) -> None:
        """Remove ``key`` if present and flush to disk."""
        with self._lock:
            if self._data.pop(key, None) is not None:
                self._flush()

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._data)

    def _load(self) -> dict[str, Any]:
        if self._path is None or not self._path.exists():
            return {}
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8") or "{}")
        except json.JSONDecodeError as exc:
            raise StoreError(f"Invalid settings data in {self._path}: {exc}") from exc
        if not isinstance(raw, dict):
            raise StoreError(f"Settings file {self._path} must contain a JSON object.")
        return raw

    def _flush(self) -> None:
        if self._path is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self._path.parent, prefix=".settings-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(self._data, handle, indent=2)
            os.replace(tmp_name, self._path)
        except OSError as exc:
            Path(tmp_name).unlink(missing_ok=True)
            raise StoreError(f"Failed to write settings to {self._path}: {exc}") from exc
        LOGGER.debug("Settings flushed to %s", self._path)


__all__ = ["SettingsStore", "SETTINGS_FILENAME"]

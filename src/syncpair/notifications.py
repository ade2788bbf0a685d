"""User-facing notifications keyed by a stable id.

A notification posted under an existing key replaces the previous one, so a
long-running operation can update a single entry instead of stacking
messages.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Literal

from rich.console import Console

LOGGER = logging.getLogger(__name__)

Level = Literal["info", "success", "warning", "error", "loading"]

_STYLES: dict[str, str] = {
    "info": "cyan",
    "success": "green",
    "warning": "yellow",
    "error": "red",
    "loading": "magenta",
}


@dataclass(slots=True)
class Notification:
    """A single status message.

    Attributes:
        key: Stable id; posting the same key again replaces the entry.
        message: Human-readable text.
        level: Severity used for rendering.
        created_at: Wall-clock time the message was posted.
    """

    key: str
    message: str
    level: Level = "info"
    created_at: float = field(default_factory=time.time)


Sink = Callable[[Notification], None]


class NotificationCenter:
    """Keep the latest notification per key and fan them out to sinks."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._latest: dict[str, Notification] = {}
        self._sinks: list[Sink] = []

    def subscribe(self, sink: Sink) -> Callable[[], None]:
        """Register ``sink`` and return a callable that unregisters it."""
        with self._lock:
            self._sinks.append(sink)

        def _unsubscribe() -> None:
            with self._lock:
                if sink in self._sinks:
                    self._sinks.remove(sink)

        return _unsubscribe

    def notify(self, key: str, message: str, level: Level = "info") -> Notification:
        notification = Notification(key=key, message=message, level=level)
        with self._lock:
            self._latest[key] = notification
            sinks = list(self._sinks)
        for sink in sinks:
            try:
                sink(notification)
            except Exception:  # pragma: no cover - sink bug
                LOGGER.exception("Notification sink failed for %s", key)
        return notification

    def dismiss(self, key: str) -> None:
        with self._lock:
            self._latest.pop(key, None)

    def get(self, key: str) -> Notification | None:
        with self._lock:
            return self._latest.get(key)

    def active(self) -> list[Notification]:
        """Return current notifications, oldest first."""
        with self._lock:
            return sorted(self._latest.values(), key=lambda item: item.created_at)


class ConsoleSink:
    """Render notifications with rich."""

    def __init__(self, console: Console | None = None) -> None:
        self._console = console or Console(stderr=True)

    def __call__(self, notification: Notification) -> None:
        style = _STYLES.get(notification.level, "white")
        self._console.print(f"[{style}]{notification.message}[/{style}]")


__all__ = ["ConsoleSink", "Level", "Notification", "NotificationCenter"]

"""Filesystem watch service that feeds the upload queue."""

from __future__ import annotations

import logging
import os
import queue
import threading
from pathlib import Path
from typing import Callable, Iterator, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from syncpair.state import CredentialStore
from syncpair.upload import ChangeEvent, ChangeKind, UploadQueueManager

LOGGER = logging.getLogger(__name__)

_STOP = None


class WatchService:
    """Watch one folder at a time and forward its changes to the upload queue.

    Starting a watch first replays every existing file as an ``initial``
    event, then hands over to a recursive watchdog observer. Observer
    callbacks only enqueue; a dispatch thread drains the queue into the
    manager so slow filtering never blocks watchdog.
    """

    def __init__(
        self,
        manager: UploadQueueManager,
        *,
        store: Optional[CredentialStore] = None,
        observer_factory: Callable[[], object] = Observer,
    ) -> None:
        """Initialize the watch service.

        Args:
            manager: Upload queue that receives change events.
            store: Credential store used to record recently watched folders.
            observer_factory: Factory returning a watchdog observer.
        """
        self._manager = manager
        self._store = store
        self._observer_factory = observer_factory
        self._observer: object | None = None
        self._queue: queue.Queue[Optional[ChangeEvent]] = queue.Queue()
        self._dispatcher: Optional[threading.Thread] = None
        self._root: Optional[Path] = None
        self._lock = threading.Lock()

    # ------------------------------------------------------------------ #
    # Public API                                                         #
    # ------------------------------------------------------------------ #

    @property
    def root(self) -> Optional[Path]:
        return self._root

    @property
    def running(self) -> bool:
        return self._observer is not None

    def start(self, root: Path, *, snapshot: bool = True) -> Path:
        """Stop any current watch and start watching ``root``.

        Args:
            root: Folder to watch.
            snapshot: Whether to emit ``initial`` events for existing files.

        Returns:
            Path: The resolved folder being watched.

        Raises:
            ValueError: If ``root`` is not a directory.
        """
        resolved = root.expanduser().resolve()
        if not resolved.is_dir():
            raise ValueError(f"{resolved} is not a directory.")

        self.stop()
        with self._lock:
            self._root = resolved
            self._manager.root = resolved
            if self._store is not None:
                self._store.push_recent(str(resolved))

            self._manager.start()
            self._queue = queue.Queue()
            self._dispatcher = threading.Thread(
                target=self._dispatch_loop,
                args=(self._queue,),
                name="syncpair-watch-dispatch",
                daemon=True,
            )
            self._dispatcher.start()

            if snapshot:
                count = 0
                for path in iter_files(resolved):
                    self._queue.put(ChangeEvent(path=path, kind=ChangeKind.INITIAL))
                    count += 1
                LOGGER.info("Queued %d existing file(s) from %s", count, resolved)

            observer = self._observer_factory()
            handler = _WatchEventHandler(self._queue)
            observer.schedule(handler, str(resolved), recursive=True)  # type: ignore[attr-defined]
            observer.start()  # type: ignore[attr-defined]
            self._observer = observer
        LOGGER.info("Watching %s", resolved)
        return resolved

    def stop(self) -> None:
        """Tear down the observer and cancel pending upload timers."""
        with self._lock:
            observer, self._observer = self._observer, None
            dispatcher, self._dispatcher = self._dispatcher, None
            if observer is not None:
                observer.stop()  # type: ignore[attr-defined]
                observer.join(timeout=5)  # type: ignore[attr-defined]
            if dispatcher is not None:
                # Unblock the queue so the dispatch loop exits.
                self._queue.put(_STOP)
                dispatcher.join(timeout=5)
            if observer is not None or dispatcher is not None:
                self._manager.stop()
                LOGGER.info("Stopped watching %s", self._root)

    def wait(self, stop_event: threading.Event, poll_seconds: float = 0.5) -> None:
        """Block until ``stop_event`` is set, then stop watching."""
        try:
            while not stop_event.wait(poll_seconds):
                pass
        finally:
            self.stop()

    # ------------------------------------------------------------------ #
    # Internal helpers                                                   #
    # ------------------------------------------------------------------ #

    def _dispatch_loop(self, events: "queue.Queue[Optional[ChangeEvent]]") -> None:
        while True:
            event = events.get()
            if event is _STOP:
                return
            try:
                self._manager.on_change_event(event)
            except Exception:  # pragma: no cover - bad event
                LOGGER.exception("Failed to handle change event for %s", event.path)


def iter_files(root: Path) -> Iterator[Path]:
    """Yield every regular file under ``root`` in a stable order."""
    for directory, dirnames, filenames in os.walk(root):
        dirnames.sort()
        for name in sorted(filenames):
            path = Path(directory) / name
            if path.is_file():
                yield path


class _WatchEventHandler(FileSystemEventHandler):
    """Forward filesystem events into the service queue."""

    def __init__(self, queue_handle: "queue.Queue[Optional[ChangeEvent]]") -> None:
        self._queue = queue_handle

    def on_created(self, event: FileSystemEvent) -> None:
        self._enqueue(event.src_path, ChangeKind.CREATED, event.is_directory)

    def on_modified(self, event: FileSystemEvent) -> None:
        self._enqueue(event.src_path, ChangeKind.MODIFIED, event.is_directory)

    def on_deleted(self, event: FileSystemEvent) -> None:
        self._enqueue(event.src_path, ChangeKind.DELETED, event.is_directory)

    def on_moved(self, event: FileSystemEvent) -> None:
        self._enqueue(event.src_path, ChangeKind.DELETED, event.is_directory)
        self._enqueue(getattr(event, "dest_path", ""), ChangeKind.MOVED, event.is_directory)

    def _enqueue(self, raw_path: str | bytes, kind: ChangeKind, is_directory: bool) -> None:
        if is_directory or not raw_path:
            return
        path = Path(os.fsdecode(raw_path))
        self._queue.put(ChangeEvent(path=path, kind=kind))


__all__ = ["WatchService", "iter_files"]

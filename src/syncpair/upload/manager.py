"""Debounced, bounded-concurrency upload queue."""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from functools import partial
from pathlib import Path
from typing import Any, Callable, Deque, Mapping, Optional, Union

from syncpair.config import MAX_CONCURRENT_UPLOADS, UploadConfig, validate_model
from syncpair.notifications import Level, NotificationCenter
from syncpair.state import CredentialStore

from .models import (
    ChangeEvent,
    ChangeKind,
    UploadEvent,
    UploadEventKind,
    UploadItem,
    UploadProgress,
    UploadStatus,
)
from .patterns import matching_pattern, relative_path
from .transport import Uploader

LOGGER = logging.getLogger(__name__)

UploadCallback = Callable[[UploadEvent], None]


class UploadQueueManager:
    """Turn change events into uploads.

    Each path moves through ``pending`` (debounce timer running), ``queued``
    (waiting for a slot in FIFO order), and ``uploading`` before it ends up
    ``uploaded`` or ``failed``. At most one upload per path is in flight; an
    event that arrives for a path while it uploads is held back and
    re-debounced once the running upload finishes.

    Timers are deadlines kept in plain mappings. :meth:`process_due` fires
    whatever is due; :meth:`start` runs it on a background thread, and tests
    call it directly with an injected clock.
    """

    def __init__(
        self,
        config: UploadConfig,
        uploader: Uploader,
        *,
        root: Optional[Path] = None,
        store: Optional[CredentialStore] = None,
        notifications: Optional[NotificationCenter] = None,
        executor: Optional[Executor] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._lock = threading.RLock()
        self._wakeup = threading.Condition(self._lock)
        self._config = config
        self._uploader = uploader
        self._root = root
        self._store = store
        self._notifications = notifications
        self._owns_executor = executor is None
        self._executor: Executor = executor or ThreadPoolExecutor(
            max_workers=MAX_CONCURRENT_UPLOADS, thread_name_prefix="syncpair-upload"
        )
        self._clock = clock

        self._pending: dict[str, tuple[float, UploadItem]] = {}
        self._admission: Deque[UploadItem] = deque()
        self._retry: dict[str, tuple[float, UploadItem]] = {}
        self._deferred: dict[str, UploadItem] = {}
        self._in_flight: dict[str, Future[Any]] = {}
        self._statuses: dict[str, UploadStatus] = {}
        self._uploaded = 0
        self._failed = 0
        self._current: Optional[str] = None
        self._admitting = False
        self._closed = False

        self._subscribers: list[UploadCallback] = []
        self._outbox: list[UploadEvent] = []
        self._thread: Optional[threading.Thread] = None

    # ------------------------------------------------------------------ #
    # Properties                                                         #
    # ------------------------------------------------------------------ #

    @property
    def config(self) -> UploadConfig:
        return self._config

    @property
    def root(self) -> Optional[Path]:
        return self._root

    @root.setter
    def root(self, value: Optional[Path]) -> None:
        with self._lock:
            self._root = value

    @property
    def running(self) -> bool:
        with self._lock:
            return self._thread is not None and self._thread.is_alive()

    @property
    def progress(self) -> UploadProgress:
        with self._lock:
            return self._progress()

    def status_of(self, path: Union[str, Path]) -> Optional[UploadStatus]:
        """Return the status recorded for an absolute path or a relative path string."""
        with self._lock:
            key = relative_path(path, self._root) if isinstance(path, Path) else path
            return self._statuses.get(key)

    def statuses(self) -> dict[str, UploadStatus]:
        with self._lock:
            return dict(self._statuses)

    def in_flight(self) -> list[str]:
        with self._lock:
            return list(self._in_flight)

    def subscribe(self, callback: UploadCallback) -> Callable[[], None]:
        """Register ``callback`` for status, progress, success, and failure events.

        Returns:
            Callable[[], None]: Handle that removes the subscription.
        """
        with self._lock:
            self._subscribers.append(callback)

        def _unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return _unsubscribe

    # ------------------------------------------------------------------ #
    # Operations                                                         #
    # ------------------------------------------------------------------ #

    def on_change_event(self, event: ChangeEvent) -> Optional[UploadStatus]:
        """Filter a change event and (re)start the debounce timer for its path.

        Args:
            event: Change reported by the watcher.

        Returns:
            Optional[UploadStatus]: Resulting status, or None when the event
            only cancelled work (deletes, vanished files).
        """
        with self._lock:
            result = self._accept(event)
            self._wakeup.notify_all()
        self._dispatch()
        return result

    def _accept(self, event: ChangeEvent) -> Optional[UploadStatus]:
        config = self._config
        relative = relative_path(event.path, self._root)

        if not config.enabled:
            return self._ignore(relative, "uploads disabled")
        if event.kind is ChangeKind.INITIAL and config.ignore_existing_files:
            return self._ignore(relative, "pre-existing file")
        pattern = matching_pattern(relative, config.ignored_patterns)
        if pattern is not None:
            return self._ignore(relative, f"matches {pattern!r}")

        if event.kind is ChangeKind.DELETED:
            if self._cancel(relative) is not None:
                self._statuses.pop(relative, None)
                self._publish_progress()
            return None
        if event.path.is_dir():
            return self._ignore(relative, "not a file")
        if not event.path.exists():
            LOGGER.debug("Skipping vanished path %s", relative)
            return None

        now = self._clock()
        previous = self._cancel(relative)
        item = UploadItem(
            path=event.path,
            relative_path=relative,
            first_seen=previous.first_seen if previous is not None else now,
        )
        if relative in self._in_flight:
            self._deferred[relative] = item
            self._publish_progress()
            return UploadStatus.PENDING

        self._pending[relative] = (now + config.upload_delay_ms / 1000.0, item)
        self._set_status(relative, UploadStatus.PENDING)
        return UploadStatus.PENDING

    def process_due(self, now: Optional[float] = None) -> None:
        """Promote expired debounce and retry timers, then fill free upload slots."""
        with self._lock:
            current = self._clock() if now is None else now
            due = sorted(
                (deadline, relative)
                for relative, (deadline, _) in self._pending.items()
                if deadline <= current
            )
            for _, relative in due:
                _, item = self._pending.pop(relative)
                self._admission.append(item)
                self._set_status(relative, UploadStatus.QUEUED)

            retries = sorted(
                (deadline, relative)
                for relative, (deadline, _) in self._retry.items()
                if deadline <= current
            )
            for _, relative in retries:
                _, item = self._retry.pop(relative)
                self._admission.append(item)

            self._admit()
        self._dispatch()

    def next_deadline(self) -> Optional[float]:
        with self._lock:
            deadlines = [deadline for deadline, _ in self._pending.values()]
            deadlines.extend(deadline for deadline, _ in self._retry.values())
            return min(deadlines) if deadlines else None

    def clear_queue(self) -> None:
        """Drop every pending and queued item; uploads already running continue."""
        with self._lock:
            dropped = set(self._pending) | set(self._retry) | set(self._deferred)
            dropped.update(item.relative_path for item in self._admission)
            self._pending.clear()
            self._retry.clear()
            self._deferred.clear()
            self._admission.clear()
            for relative in dropped:
                if relative not in self._in_flight:
                    self._statuses.pop(relative, None)
            self._publish_progress()
            self._wakeup.notify_all()
        LOGGER.info("Cleared %d queued upload(s)", len(dropped))
        self._dispatch()

    def update_config(self, new_config: Union[UploadConfig, Mapping[str, Any]]) -> UploadConfig:
        """Validate and apply a new upload configuration.

        Args:
            new_config: Full configuration, or a mapping of fields to change.

        Returns:
            UploadConfig: The configuration now in effect.

        Raises:
            ConfigError: If the values are invalid; the current configuration
                is left untouched.
            StoreError: If the configuration cannot be persisted.
        """
        if isinstance(new_config, UploadConfig):
            data = new_config.model_dump()
        else:
            data = {**self._config.model_dump(), **dict(new_config)}
        candidate = validate_model(UploadConfig, data)

        if self._store is not None:
            self._store.save_upload_config(candidate)

        with self._lock:
            self._config = candidate
            self._admit()
            self._wakeup.notify_all()
        LOGGER.info(
            "Upload config updated (enabled=%s, max_concurrent_uploads=%d, delay=%dms)",
            candidate.enabled,
            candidate.max_concurrent_uploads,
            candidate.upload_delay_ms,
        )
        self._dispatch()
        return candidate

    # ------------------------------------------------------------------ #
    # Lifecycle                                                          #
    # ------------------------------------------------------------------ #

    def start(self) -> None:
        """Fire timers from a background thread until :meth:`stop` is called."""
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                raise RuntimeError("UploadQueueManager is already running.")
            self._closed = False
            self._thread = threading.Thread(
                target=self._run_loop, name="syncpair-upload-timers", daemon=True
            )
            self._thread.start()

    def stop(self) -> None:
        """Cancel every pending timer and stop the timer thread.

        Uploads already in flight complete or fail on their own; they are
        not retried afterwards.
        """
        with self._lock:
            self._closed = True
            thread = self._thread
            self._thread = None
        self.clear_queue()
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=5)

    def close(self) -> None:
        self.stop()
        if self._owns_executor:
            self._executor.shutdown(wait=False)

    def _run_loop(self) -> None:
        while True:
            with self._lock:
                if self._closed:
                    return
                deadline = self.next_deadline()
                timeout = None if deadline is None else deadline - self._clock()
                if timeout is None or timeout > 0:
                    self._wakeup.wait(timeout)
                if self._closed:
                    return
            try:
                self.process_due()
            except Exception:  # pragma: no cover - timer loop
                LOGGER.exception("Upload timer tick failed")

    # ------------------------------------------------------------------ #
    # Internal helpers                                                   #
    # ------------------------------------------------------------------ #

    def _admit(self) -> None:
        if self._admitting:
            return
        self._admitting = True
        try:
            held: list[UploadItem] = []
            while self._admission and len(self._in_flight) < self._config.max_concurrent_uploads:
                item = self._admission.popleft()
                if item.relative_path in self._in_flight:
                    held.append(item)
                    continue
                if not self._start_upload(item):
                    break
            self._admission.extendleft(reversed(held))
        finally:
            self._admitting = False

    def _start_upload(self, item: UploadItem) -> bool:
        relative = item.relative_path
        try:
            future = self._executor.submit(self._uploader.upload, item, self._config)
        except RuntimeError as exc:
            LOGGER.error("Could not schedule upload for %s: %s", relative, exc)
            self._admission.appendleft(item)
            return False
        self._in_flight[relative] = future
        self._current = relative
        self._set_status(relative, UploadStatus.UPLOADING)
        LOGGER.debug("Uploading %s (attempt %d)", relative, item.retry_count + 1)
        future.add_done_callback(partial(self._on_upload_done, item))
        return True

    def _on_upload_done(self, item: UploadItem, future: Future[Any]) -> None:
        relative = item.relative_path
        with self._lock:
            self._in_flight.pop(relative, None)
            if self._current == relative:
                self._current = next(iter(self._in_flight), None)

            error: Optional[BaseException]
            if future.cancelled():
                error = RuntimeError("upload cancelled")
            else:
                error = future.exception()

            newer = self._deferred.pop(relative, None)
            if error is None:
                self._uploaded += 1
                self._set_status(relative, UploadStatus.UPLOADED)
                self._outbox.append(UploadEvent(UploadEventKind.SUCCESS, relative_path=relative))
                self._notify(relative, f"Uploaded {relative}", "success")
                LOGGER.info("Uploaded %s", relative)
            elif newer is None:
                self._handle_failure(item, error)
            else:
                LOGGER.info("Upload of %s failed; a newer change will be sent instead", relative)

            if newer is not None and not self._closed:
                now = self._clock()
                self._pending[relative] = (now + self._config.upload_delay_ms / 1000.0, newer)
                self._set_status(relative, UploadStatus.PENDING)

            self._admit()
            self._publish_progress()
            self._wakeup.notify_all()
        self._dispatch()

    def _handle_failure(self, item: UploadItem, error: BaseException) -> None:
        relative = item.relative_path
        if item.retry_count < self._config.max_retries and not self._closed:
            item.retry_count += 1
            deadline = self._clock() + self._config.retry_delay_seconds
            self._retry[relative] = (deadline, item)
            self._set_status(relative, UploadStatus.QUEUED)
            LOGGER.warning(
                "Upload of %s failed (retry %d/%d): %s",
                relative,
                item.retry_count,
                self._config.max_retries,
                error,
            )
            return

        self._failed += 1
        self._set_status(relative, UploadStatus.FAILED)
        self._outbox.append(
            UploadEvent(UploadEventKind.FAILURE, relative_path=relative, error=str(error))
        )
        self._notify(relative, f"Failed to upload {relative}: {error}", "error")
        LOGGER.error("Upload of %s failed permanently: %s", relative, error)

    def _cancel(self, relative: str) -> Optional[UploadItem]:
        """Remove ``relative`` from every waiting stage and return what was there."""
        found: Optional[UploadItem] = None
        pending = self._pending.pop(relative, None)
        if pending is not None:
            found = pending[1]
        retry = self._retry.pop(relative, None)
        if retry is not None:
            found = found or retry[1]
        deferred = self._deferred.pop(relative, None)
        found = found or deferred
        for queued in [entry for entry in self._admission if entry.relative_path == relative]:
            self._admission.remove(queued)
            found = found or queued
        return found

    def _ignore(self, relative: str, reason: str) -> UploadStatus:
        LOGGER.debug("Ignoring %s (%s)", relative, reason)
        self._cancel(relative)
        if relative in self._in_flight:
            self._publish_progress()
        else:
            self._set_status(relative, UploadStatus.IGNORED)
        return UploadStatus.IGNORED

    def _set_status(self, relative: str, status: UploadStatus) -> None:
        self._statuses[relative] = status
        self._outbox.append(UploadEvent(UploadEventKind.STATUS, relative_path=relative, status=status))
        self._publish_progress()

    def _progress(self) -> UploadProgress:
        return UploadProgress(
            total_queued=len(self._pending)
            + len(self._admission)
            + len(self._retry)
            + len(self._deferred),
            total_uploaded=self._uploaded,
            total_failed=self._failed,
            current_uploading=self._current,
        )

    def _publish_progress(self) -> None:
        self._outbox.append(UploadEvent(UploadEventKind.PROGRESS, progress=self._progress()))

    def _notify(self, relative: str, message: str, level: Level) -> None:
        if self._notifications is not None:
            self._notifications.notify(f"upload:{relative}", message, level)

    def _dispatch(self) -> None:
        with self._lock:
            events, self._outbox = self._outbox, []
            subscribers = list(self._subscribers)
        for event in events:
            for callback in subscribers:
                try:
                    callback(event)
                except Exception:  # pragma: no cover - subscriber bug
                    LOGGER.exception("Upload subscriber failed")


__all__ = ["UploadQueueManager"]

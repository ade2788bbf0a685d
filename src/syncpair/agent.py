"""Wire the agent's components together and tear them down in order."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Executor
from pathlib import Path
from typing import Callable, Optional

import syncpair
from syncpair.api import DeviceDescriptor, SyncApiClient
from syncpair.config import SyncPairConfig
from syncpair.enrollment import EnrollmentCode, EnrollmentSession, collect_device_descriptor
from syncpair.guard import AccessDecision, SessionGuard
from syncpair.heartbeat import HeartbeatService
from syncpair.notifications import NotificationCenter
from syncpair.state import CredentialStore
from syncpair.upload import (
    ChangeEvent,
    ChangeKind,
    PresignedUploader,
    UploadEvent,
    UploadEventKind,
    UploadQueueManager,
    UploadStatus,
    relative_path,
)
from syncpair.watch import WatchService

LOGGER = logging.getLogger(__name__)

_SETTLED = frozenset({UploadStatus.UPLOADED, UploadStatus.FAILED, UploadStatus.IGNORED})


class NotSignedInError(Exception):
    """Raised when an operation needs a valid session and none is stored."""


class SyncAgent:
    """Composition root for the enrollment, upload, and heartbeat services.

    Every collaborator can be injected; anything not supplied is built from
    ``config``.
    """

    def __init__(
        self,
        config: SyncPairConfig,
        *,
        state_dir: Optional[Path] = None,
        client: Optional[SyncApiClient] = None,
        store: Optional[CredentialStore] = None,
        device: Optional[DeviceDescriptor] = None,
        notifications: Optional[NotificationCenter] = None,
        executor: Optional[Executor] = None,
    ) -> None:
        self.config = config
        self.state_dir = (state_dir or Path(config.storage.state_dir)).expanduser()
        self.notifications = notifications or NotificationCenter()
        self.store = store or CredentialStore.open(self.state_dir)
        self.client = client or SyncApiClient(
            config.server.base_url,
            timeout=config.server.request_timeout_seconds,
            verify_ssl=config.server.verify_ssl,
        )
        self._device = device
        self.guard = SessionGuard(self.store)
        self.uploads = UploadQueueManager(
            self.store.load_upload_config(config.upload),
            PresignedUploader(self.client, self.store.get_token),
            store=self.store,
            notifications=self.notifications,
            executor=executor,
        )
        self.watcher = WatchService(self.uploads, store=self.store)
        self._heartbeat: Optional[HeartbeatService] = None
        self._enrollment: Optional[EnrollmentSession] = None

    def __enter__(self) -> "SyncAgent":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def device(self) -> DeviceDescriptor:
        if self._device is None:
            self._device = collect_device_descriptor(self.state_dir)
        return self._device

    @property
    def heartbeat(self) -> HeartbeatService:
        if self._heartbeat is None:
            self._heartbeat = HeartbeatService(
                self.client,
                self.store.get_token,
                self.device.device_fingerprint,
                syncpair.__version__,
                settings=self.config.heartbeat,
            )
        return self._heartbeat

    def check_access(self) -> AccessDecision:
        return self.guard.check_access()

    def enrollment_session(
        self, *, on_code: Optional[Callable[[EnrollmentCode], None]] = None
    ) -> EnrollmentSession:
        self._enrollment = EnrollmentSession(
            self.client,
            self.store,
            self.device,
            settings=self.config.enrollment,
            notifications=self.notifications,
            on_code=on_code,
            on_signed_in=self._on_signed_in,
        )
        return self._enrollment

    def run_enrollment(
        self,
        *,
        on_code: Optional[Callable[[EnrollmentCode], None]] = None,
        stop_event: Optional[threading.Event] = None,
    ) -> AccessDecision:
        """Pair the device unless a valid session already exists.

        Args:
            on_code: Called with every code as it is displayed.
            stop_event: Aborts the pairing loop when set.

        Returns:
            AccessDecision: Access state after pairing finished or was aborted.
        """
        decision = self.check_access()
        if decision.authenticated:
            return decision
        session = self.enrollment_session(on_code=on_code)
        session.run(stop_event)
        return self.check_access()

    def start_watching(self, root: Path) -> Path:
        """Start uploading changes under ``root``.

        Raises:
            NotSignedInError: If no valid session is stored.
            ValueError: If ``root`` is not a directory.
        """
        decision = self.check_access()
        if not decision.authenticated:
            raise NotSignedInError("Sign in with `syncpair login` before watching a folder.")
        resolved = self.watcher.start(root)
        self.heartbeat.start()
        return resolved

    def upload_file(
        self,
        path: Path,
        *,
        root: Optional[Path] = None,
        timeout: Optional[float] = None,
    ) -> Optional[UploadStatus]:
        """Queue a single file by hand and wait until its upload settles.

        Args:
            path: File to upload.
            root: Folder the uploaded name is relative to. Defaults to the
                watched folder, or the file's own folder when nothing is watched.
            timeout: Seconds to wait; None waits until the upload settles.

        Returns:
            Optional[UploadStatus]: Final status, the current one on timeout,
            or None when the file vanished before it was queued.

        Raises:
            NotSignedInError: If no valid session is stored.
            ValueError: If ``path`` is not a file.
        """
        if not self.check_access().authenticated:
            raise NotSignedInError("Sign in with `syncpair login` before uploading.")
        resolved = path.expanduser().resolve()
        if not resolved.is_file():
            raise ValueError(f"{resolved} is not a file.")
        if root is not None:
            self.uploads.root = root.expanduser().resolve()
        elif not self.watcher.running:
            self.uploads.root = resolved.parent
        relative = relative_path(resolved, self.uploads.root)

        settled = threading.Event()

        def _on_event(event: UploadEvent) -> None:
            if (
                event.kind is UploadEventKind.STATUS
                and event.relative_path == relative
                and event.status in _SETTLED
            ):
                settled.set()

        unsubscribe = self.uploads.subscribe(_on_event)
        try:
            if not self.uploads.running:
                self.uploads.start()
            status = self.uploads.on_change_event(
                ChangeEvent(path=resolved, kind=ChangeKind.MODIFIED)
            )
            if status is None or status in _SETTLED:
                return status
            settled.wait(timeout)
            return self.uploads.status_of(relative)
        finally:
            unsubscribe()

    def stop_watching(self) -> None:
        self.watcher.stop()

    def sign_out(self) -> None:
        """Stop background work and forget the stored token."""
        self.watcher.stop()
        if self._heartbeat is not None:
            self._heartbeat.stop()
        self.guard.sign_out()
        self.notifications.notify("session", "Signed out", "info")

    def close(self) -> None:
        if self._enrollment is not None:
            self._enrollment.stop()
        self.watcher.stop()
        if self._heartbeat is not None:
            self._heartbeat.stop()
        self.uploads.close()
        self.client.close()

    def _on_signed_in(self) -> None:
        decision = self.guard.check_access()
        if decision.authenticated and self.config.heartbeat.enabled:
            self.heartbeat.start()


__all__ = ["NotSignedInError", "SyncAgent"]

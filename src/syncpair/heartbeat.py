"""Periodic liveness ping while the device is signed in."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from syncpair.api import HeartbeatResponse, SyncApiClient, SyncApiError
from syncpair.config.models import HeartbeatSettings

LOGGER = logging.getLogger(__name__)

OFFLINE_STATUS = "offline"


@dataclass(slots=True, frozen=True)
class HeartbeatStatus:
    """Latest heartbeat outcome.

    Attributes:
        response: Last response, with ``status`` forced to ``offline`` after a failure.
        error: Message from the most recent failure, cleared on success.
        checked_at: Wall-clock time of the most recent attempt.
    """

    response: Optional[HeartbeatResponse] = None
    error: Optional[str] = None
    checked_at: Optional[float] = None

    @property
    def online(self) -> bool:
        return self.error is None and self.response is not None


class HeartbeatService:
    def __init__(
        self,
        client: SyncApiClient,
        token_provider: Callable[[], Optional[str]],
        device_fingerprint: str,
        app_version: str,
        *,
        settings: HeartbeatSettings | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._client = client
        self._token_provider = token_provider
        self._device_fingerprint = device_fingerprint
        self._app_version = app_version
        self._settings = settings or HeartbeatSettings()
        self._clock = clock
        self._status = HeartbeatStatus()
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def status(self) -> HeartbeatStatus:
        with self._lock:
            return self._status

    def beat(self) -> HeartbeatStatus:
        """Send one heartbeat and record the outcome.

        Returns:
            HeartbeatStatus: Updated status; failures never raise.
        """
        token = self._token_provider()
        now = self._clock()
        if token is None:
            return self._record_failure("not signed in", now)
        try:
            response = self._client.heartbeat(
                token,
                self._device_fingerprint,
                self._app_version,
                endpoint=self._settings.endpoint,
            )
        except SyncApiError as exc:
            LOGGER.warning("Heartbeat failed: %s", exc)
            return self._record_failure(str(exc), now)

        status = HeartbeatStatus(response=response, checked_at=now)
        with self._lock:
            self._status = status
        LOGGER.debug("Heartbeat ok (status=%s)", response.status)
        return status

    def _record_failure(self, message: str, now: float) -> HeartbeatStatus:
        with self._lock:
            previous = self._status.response or HeartbeatResponse()
            self._status = HeartbeatStatus(
                response=previous.model_copy(update={"status": OFFLINE_STATUS}),
                error=message,
                checked_at=now,
            )
            return self._status

    def start(self) -> None:
        if not self._settings.enabled:
            LOGGER.info("Heartbeat disabled by configuration")
            return
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="syncpair-heartbeat", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None

    def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.beat()
            except Exception:  # pragma: no cover
                LOGGER.exception("Heartbeat tick failed")
            self._stop_event.wait(self._settings.interval_seconds)


__all__ = ["HeartbeatService", "HeartbeatStatus", "OFFLINE_STATUS"]

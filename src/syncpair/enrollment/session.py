"""Pairing flow: rotate a one-time code, poll for completion, store the token."""

from __future__ import annotations

import logging
import secrets
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional

from syncpair.api import DeviceDescriptor, SyncApiClient, SyncApiError
from syncpair.config.models import EnrollmentSettings
from syncpair.notifications import NotificationCenter
from syncpair.state import CredentialError, CredentialStore, StoreError, decode_claims

LOGGER = logging.getLogger(__name__)

CODE_NOTIFICATION_KEY = "enrollment-code"
SIGNIN_NOTIFICATION_KEY = "enrollment-signin"


class EnrollmentState(str, Enum):
    """Lifecycle of a pairing attempt."""

    IDLE = "idle"
    CODE_REQUESTED = "code_requested"
    CODE_DISPLAYED = "code_displayed"
    POLLING = "polling"
    CODE_EXPIRED = "code_expired"
    SIGNING_IN = "signing_in"
    SIGNED_IN = "signed_in"


@dataclass(slots=True, frozen=True)
class EnrollmentCode:
    """A six-digit pairing code.

    Attributes:
        code: Digits shown to the user.
        expires_at: Server-provided expiry, when known.
        decoy: True when the code was generated locally after a failed request.
    """

    code: str
    expires_at: Optional[datetime] = None
    decoy: bool = False

    def display(self) -> str:
        return f"{self.code[:3]}-{self.code[3:]}"

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now


@dataclass(slots=True, frozen=True)
class PollResult:
    enrolled: bool
    signin_token: Optional[str] = None
    organization_id: Optional[str] = None
    organization_name: Optional[str] = None


def decoy_code() -> str:
    """Return a random six-digit code used when the server cannot be reached."""
    return f"{secrets.randbelow(1_000_000):06d}"


def parse_expiry(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        LOGGER.debug("Ignoring unparseable code expiry %r", value)
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class EnrollmentSession:
    """Drive a device through pairing.

    The session owns two timers: the code refresh interval and the poll
    interval. Both are plain deadlines evaluated by :meth:`tick`, so the
    whole flow runs on one thread (:meth:`run`) and can be stepped
    deterministically in tests.
    """

    def __init__(
        self,
        client: SyncApiClient,
        store: CredentialStore,
        device: DeviceDescriptor,
        *,
        settings: EnrollmentSettings | None = None,
        notifications: NotificationCenter | None = None,
        on_code: Callable[[EnrollmentCode], None] | None = None,
        on_signed_in: Callable[[], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._client = client
        self._store = store
        self._device = device
        self._settings = settings or EnrollmentSettings()
        self._notifications = notifications or NotificationCenter()
        self._on_code = on_code
        self._on_signed_in = on_signed_in
        self._clock = clock
        self._wall_clock = wall_clock

        self._state = EnrollmentState.IDLE
        self._code: Optional[EnrollmentCode] = None
        self._next_refresh: Optional[float] = None
        self._expiry_refresh_at: Optional[float] = None
        self._next_poll: Optional[float] = None
        self._claim_lock = threading.Lock()
        self._claimed = False
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # ------------------------------------------------------------------ #
    # Properties                                                         #
    # ------------------------------------------------------------------ #

    @property
    def state(self) -> EnrollmentState:
        return self._state

    @property
    def code(self) -> Optional[EnrollmentCode]:
        return self._code

    @property
    def signed_in(self) -> bool:
        return self._state is EnrollmentState.SIGNED_IN

    @property
    def finished(self) -> bool:
        return self._state in (EnrollmentState.SIGNING_IN, EnrollmentState.SIGNED_IN)

    # ------------------------------------------------------------------ #
    # Protocol steps                                                     #
    # ------------------------------------------------------------------ #

    def request_code(
        self,
        device: Optional[DeviceDescriptor] = None,
        organization_id: Optional[str] = None,
    ) -> EnrollmentCode:
        """Fetch a fresh pairing code, falling back to a decoy on failure.

        Args:
            device: Descriptor to send; defaults to this device.
            organization_id: Organization hint; defaults to the stored id.

        Returns:
            EnrollmentCode: The code now on display.
        """
        self._state = EnrollmentState.CODE_REQUESTED
        if organization_id is None:
            organization_id = self._store.get_organization_id()
        try:
            response = self._client.get_code(device or self._device, organization_id)
        except SyncApiError as exc:
            LOGGER.warning("Failed to fetch enrollment code: %s", exc)
            self._notifications.notify(
                CODE_NOTIFICATION_KEY, "Failed to fetch enrollment code", "error"
            )
            code = EnrollmentCode(code=decoy_code(), decoy=True)
        else:
            code = EnrollmentCode(
                code=str(response.otp_code),
                expires_at=parse_expiry(response.expires_at),
            )
            self._notifications.dismiss(CODE_NOTIFICATION_KEY)

        self._code = code
        self._state = EnrollmentState.CODE_DISPLAYED
        if self._on_code is not None:
            self._on_code(code)
        return code

    def poll_once(self, device_fingerprint: Optional[str] = None) -> PollResult:
        """Ask the server once whether pairing has completed.

        Args:
            device_fingerprint: Fingerprint to poll for; defaults to this device.

        Returns:
            PollResult: Enrollment flag and, when enrolled, the signin token.

        Raises:
            SyncApiError: On transport or protocol failures.
        """
        response = self._client.poll_enrollment(
            device_fingerprint or self._device.device_fingerprint
        )
        enrolled = bool(response.success and response.enrolled)
        return PollResult(
            enrolled=enrolled,
            signin_token=response.signin_token if enrolled else None,
            organization_id=response.organization_id,
            organization_name=response.organization_name,
        )

    def handle_poll_result(self, result: PollResult) -> bool:
        """Start the token exchange for the first result carrying a signin token.

        Args:
            result: Outcome of :meth:`poll_once`.

        Returns:
            bool: True if this call performed the exchange.
        """
        if not result.enrolled or not result.signin_token:
            return False
        if not self._claim():
            LOGGER.debug("Ignoring duplicate signin token; exchange already claimed")
            return False
        self._exchange(result.signin_token, result.organization_id)
        return True

    def _claim(self) -> bool:
        with self._claim_lock:
            if self._claimed:
                return False
            self._claimed = True
            return True

    def _release_claim(self) -> None:
        with self._claim_lock:
            self._claimed = False

    def _exchange(self, token: str, response_organization_id: Optional[str]) -> None:
        self._state = EnrollmentState.SIGNING_IN
        self._next_poll = None
        self._next_refresh = None
        self._notifications.notify(
            SIGNIN_NOTIFICATION_KEY, "Pairing to your organization...", "loading"
        )

        try:
            self._store.set_token(token)
        except StoreError as exc:
            LOGGER.error("Could not persist signin token: %s", exc)
            self._notifications.notify(SIGNIN_NOTIFICATION_KEY, "Failed to pair device", "error")
            self._state = EnrollmentState.POLLING
            self._release_claim()
            return

        organization_id = response_organization_id
        try:
            organization_id = decode_claims(token).organization_id or organization_id
        except CredentialError as exc:
            LOGGER.info("Signin token carries no readable claims: %s", exc)
        if organization_id:
            try:
                self._store.set_organization_id(organization_id)
            except StoreError as exc:
                LOGGER.warning("Could not persist organization id: %s", exc)

        try:
            self._client.finish_enrollment(token, self._device.device_fingerprint)
        except SyncApiError as exc:
            LOGGER.warning("Finish enrollment failed; keeping local credential: %s", exc)

        self._state = EnrollmentState.SIGNED_IN
        self._notifications.notify(SIGNIN_NOTIFICATION_KEY, "Successfully paired device", "success")
        LOGGER.info("Device paired (organization=%s)", organization_id or "unknown")
        if self._on_signed_in is not None:
            self._on_signed_in()

    # ------------------------------------------------------------------ #
    # Scheduling                                                         #
    # ------------------------------------------------------------------ #

    def tick(self) -> Optional[float]:
        """Run whichever timers are due.

        Returns:
            Optional[float]: Seconds until the next deadline, or None once
            the session no longer needs scheduling.
        """
        if self.finished:
            return None

        now = self._clock()
        code = self._code
        if code is not None and code.is_expired(self._wall_clock()):
            self._state = EnrollmentState.CODE_EXPIRED
            # Early refreshes for expiry happen at most once per refresh interval.
            last = self._expiry_refresh_at
            if last is None or now - last >= self._settings.code_refresh_seconds:
                self._expiry_refresh_at = now
                self._next_refresh = now

        if self._next_refresh is None or now >= self._next_refresh:
            try:
                self.request_code()
            except Exception:  # pragma: no cover - callback bug
                LOGGER.exception("Code refresh failed")
            self._next_refresh = now + self._settings.code_refresh_seconds
            if self._next_poll is None:
                self._next_poll = now

        if self._next_poll is not None and now >= self._next_poll:
            self._next_poll = now + self._settings.poll_interval_seconds
            self._poll_tick()

        if self.finished:
            return None
        deadlines = [value for value in (self._next_refresh, self._next_poll) if value is not None]
        return max(0.0, min(deadlines) - self._clock())

    def _poll_tick(self) -> None:
        self._state = EnrollmentState.POLLING
        try:
            result = self.poll_once()
        except SyncApiError as exc:
            LOGGER.debug("Enrollment poll failed: %s", exc)
            return
        try:
            self.handle_poll_result(result)
        except Exception:  # pragma: no cover - callback bug
            LOGGER.exception("Handling poll result failed")

    def run(self, stop_event: threading.Event | None = None) -> bool:
        """Block until the device is paired or ``stop_event`` is set.

        Returns:
            bool: True if pairing completed.
        """
        event = stop_event or self._stop_event
        while not event.is_set():
            timeout = self.tick()
            if timeout is None:
                break
            event.wait(timeout)
        return self.signed_in

    def start(self) -> None:
        """Run the pairing loop on a background thread."""
        if self._thread is not None and self._thread.is_alive():
            raise RuntimeError("EnrollmentSession is already running.")
        self._stop_event.clear()
        self._thread = threading.Thread(target=self.run, name="syncpair-enrollment", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Cancel the refresh and poll timers and wait for the loop to exit."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None
        self._next_refresh = None
        self._next_poll = None
        if not self.finished:
            self._state = EnrollmentState.IDLE


__all__ = [
    "EnrollmentCode",
    "EnrollmentSession",
    "EnrollmentState",
    "PollResult",
    "decoy_code",
    "parse_expiry",
]

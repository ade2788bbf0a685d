"""Gate protected views on the stored credential."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from syncpair.state import Credential, CredentialError, CredentialStore

LOGGER = logging.getLogger(__name__)


class AccessState(str, Enum):
    AUTHENTICATED = "authenticated"
    UNAUTHENTICATED = "unauthenticated"


@dataclass(slots=True, frozen=True)
class AccessDecision:
    """Outcome of a guard check.

    Attributes:
        state: Whether protected views may be shown.
        credential: The valid credential when authenticated.
        reason: Short explanation when unauthenticated.
    """

    state: AccessState
    credential: Optional[Credential] = None
    reason: Optional[str] = None

    @property
    def authenticated(self) -> bool:
        return self.state is AccessState.AUTHENTICATED


class SessionGuard:
    """Decide whether the device holds a usable session.

    A missing token, a token that cannot be decoded, a token without an
    expiry, or one expiring at or before now all deny access. Expired and
    unreadable tokens are cleared so the next launch starts at enrollment.
    """

    def __init__(
        self,
        store: CredentialStore,
        *,
        on_redirect: Optional[Callable[[AccessDecision], None]] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._on_redirect = on_redirect
        self._clock = clock

    def check_access(self) -> AccessDecision:
        """Return the current access decision. Never raises."""
        try:
            decision = self._evaluate()
        except Exception as exc:
            LOGGER.warning("Credential check failed; treating as signed out: %s", exc)
            decision = AccessDecision(AccessState.UNAUTHENTICATED, reason="storage error")

        if not decision.authenticated and self._on_redirect is not None:
            try:
                self._on_redirect(decision)
            except Exception:
                LOGGER.exception("Redirect to enrollment failed")
        return decision

    def sign_out(self) -> None:
        """Forget the stored token."""
        self._store.clear_token()

    def _evaluate(self) -> AccessDecision:
        if self._store.get_token() is None:
            return AccessDecision(AccessState.UNAUTHENTICATED, reason="no credential")
        credential = self._load_credential()
        if credential is None:
            self._store.clear_token()
            return AccessDecision(AccessState.UNAUTHENTICATED, reason="unreadable credential")
        if credential.claims.is_expired(self._clock()):
            LOGGER.info("Stored credential expired; clearing it")
            self._store.clear_token()
            return AccessDecision(AccessState.UNAUTHENTICATED, reason="expired")
        return AccessDecision(AccessState.AUTHENTICATED, credential=credential)

    def _load_credential(self) -> Optional[Credential]:
        try:
            return self._store.load_credential()
        except CredentialError as exc:
            LOGGER.warning("%s", exc)
            return None


__all__ = ["AccessDecision", "AccessState", "SessionGuard"]

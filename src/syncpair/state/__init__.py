"""Credential and settings persistence for the syncpair agent."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import jwt
from pydantic import ValidationError

from syncpair.config import UploadConfig

from .errors import CredentialError, StoreError
from .models import Credential, TokenClaims
from .store import SETTINGS_FILENAME, SettingsStore

LOGGER = logging.getLogger(__name__)

TOKEN_KEY = "token"
ORGANIZATION_ID_KEY = "organization_id"
RECENT_DIRS_KEY = "recentDirs"
UPLOAD_CONFIG_KEY = "upload_config"
MAX_RECENT_DIRS = 5


def decode_claims(token: str) -> TokenClaims:
    """Decode the token payload without verifying its signature.

    Args:
        token: Bearer token as issued by the server.

    Returns:
        TokenClaims: Claims the agent cares about.

    Raises:
        CredentialError: If the token is not a decodable JWT or its claims are malformed.
    """
    try:
        payload = jwt.decode(
            token,
            options={"verify_signature": False, "verify_exp": False, "verify_aud": False},
        )
    except jwt.PyJWTError as exc:
        raise CredentialError(f"Stored token cannot be decoded: {exc}") from exc
    try:
        return TokenClaims.model_validate(payload)
    except ValidationError as exc:
        raise CredentialError(f"Stored token carries malformed claims: {exc}") from exc


class CredentialStore:
    """Typed accessors over the settings store.

    This is the only place that knows the settings keys; every other
    component goes through it.
    """

    def __init__(self, settings: SettingsStore) -> None:
        self._settings = settings

    @classmethod
    def open(cls, state_dir: Path) -> "CredentialStore":
        """Open the store kept under ``state_dir``."""
        return cls(SettingsStore(state_dir.expanduser() / SETTINGS_FILENAME))

    @property
    def settings(self) -> SettingsStore:
        return self._settings

    # Token -------------------------------------------------------------

    def get_token(self) -> Optional[str]:
        token = self._settings.get(TOKEN_KEY)
        return token if isinstance(token, str) and token else None

    def set_token(self, token: str) -> None:
        """Persist the bearer token verbatim."""
        self._settings.set(TOKEN_KEY, token)

    def clear_token(self) -> None:
        self._settings.delete(TOKEN_KEY)
        LOGGER.info("Stored credential cleared")

    def load_credential(self) -> Optional[Credential]:
        """Return the stored credential with decoded claims, or None when absent.

        Raises:
            CredentialError: If a token is stored but cannot be decoded.
        """
        token = self.get_token()
        if token is None:
            return None
        claims = decode_claims(token)
        return Credential(
            token=token,
            claims=claims,
            organization_id=self.get_organization_id() or claims.organization_id,
        )

    # Organization --------------------------------------------------------

    def get_organization_id(self) -> Optional[str]:
        value = self._settings.get(ORGANIZATION_ID_KEY)
        return str(value) if value else None

    def set_organization_id(self, organization_id: str) -> None:
        self._settings.set(ORGANIZATION_ID_KEY, organization_id)

    # Recent directories ------------------------------------------------

    def recent_dirs(self) -> list[str]:
        value = self._settings.get(RECENT_DIRS_KEY, [])
        if not isinstance(value, list):
            return []
        return [str(entry) for entry in value]

    def push_recent(self, directory: str | Path) -> list[str]:
        """Move ``directory`` to the head of the recent list, keeping at most five.

        Args:
            directory: Directory that was just opened.

        Returns:
            list[str]: The updated list, most recent first.
        """
        entry = str(directory)
        updated = [entry, *(item for item in self.recent_dirs() if item != entry)]
        updated = updated[:MAX_RECENT_DIRS]
        self._settings.set(RECENT_DIRS_KEY, updated)
        return updated

    # Upload configuration ----------------------------------------------

    def load_upload_config(self, default: UploadConfig | None = None) -> UploadConfig:
        """Return the persisted upload configuration, falling back to ``default``."""
        fallback = default or UploadConfig()
        raw = self._settings.get(UPLOAD_CONFIG_KEY)
        if not isinstance(raw, dict):
            return fallback
        try:
            return UploadConfig.model_validate(raw)
        except ValidationError as exc:
            LOGGER.warning("Ignoring invalid persisted upload config: %s", exc)
            return fallback

    def save_upload_config(self, config: UploadConfig) -> None:
        self._settings.set(UPLOAD_CONFIG_KEY, config.model_dump(mode="json"))


__all__ = [
    "CredentialStore",
    "Credential",
    "CredentialError",
    "SettingsStore",
    "StoreError",
    "TokenClaims",
    "decode_claims",
    "MAX_RECENT_DIRS",
    "ORGANIZATION_ID_KEY",
    "RECENT_DIRS_KEY",
    "TOKEN_KEY",
    "UPLOAD_CONFIG_KEY",
]

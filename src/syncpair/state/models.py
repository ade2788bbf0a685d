"""Credential models decoded from the stored session token."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class TokenClaims(BaseModel):
    """Claims carried by the session token.

    Only the fields the agent reads are modelled; anything else in the
    payload is ignored.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    organization_id: Optional[str] = Field(default=None, alias="org_id")
    organization_name: Optional[str] = Field(default=None, alias="org_name")
    organization_image_url: Optional[str] = Field(default=None, alias="org_image_url")
    expires_at: Optional[float] = Field(default=None, alias="exp")
    scope: Optional[str] = None

    def is_expired(self, now: float) -> bool:
        """Return True when the expiry is missing or at/before ``now``."""
        return self.expires_at is None or self.expires_at <= now

    @property
    def expires_at_datetime(self) -> Optional[datetime]:
        if self.expires_at is None:
            return None
        return datetime.fromtimestamp(self.expires_at, tz=timezone.utc)


class Credential(BaseModel):
    """Session token plus its decoded claims and the stored organization id."""

    token: str
    claims: TokenClaims = Field(default_factory=TokenClaims)
    organization_id: Optional[str] = None

    @property
    def organization_name(self) -> Optional[str]:
        return self.claims.organization_name


__all__ = ["TokenClaims", "Credential"]

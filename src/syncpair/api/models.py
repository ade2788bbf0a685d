"""Wire models for the `/api/sync/*` endpoints."""

from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class WireModel(BaseModel):
    """Responses may grow fields; unknown keys are ignored."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class DeviceDescriptor(BaseModel):
    """Immutable snapshot of the machine, sent when requesting a pairing code.

    Attributes:
        hostname: Machine hostname.
        platform: Platform name (Windows, macOS, Linux).
        release: OS release string.
        arch: CPU architecture (x64, arm64, x86, ...).
        cpus: Logical CPU count.
        total_memory: Total memory in whole GB.
        os_type: OS family.
        device_id: Random id persisted on first run.
        device_fingerprint: Stable hash derived from the machine id.
    """

    model_config = ConfigDict(frozen=True)

    hostname: str
    platform: str
    release: str
    arch: str
    cpus: int
    total_memory: int
    os_type: str
    device_id: str
    device_fingerprint: str


class CodeResponse(WireModel):
    success: bool = False
    otp_code: Optional[str] = None
    expires_at: Optional[str] = None


class PollResponse(WireModel):
    success: bool = False
    enrolled: bool = False
    signin_token: Optional[str] = None
    organization_id: Optional[str] = None
    organization_name: Optional[str] = None


class HeartbeatResponse(WireModel):
    status: str = "unknown"
    first_seen: Optional[str] = None
    last_seen: Optional[str] = None
    app_version: Optional[str] = None


class FileCheckItem(WireModel):
    file_name: str = Field(serialization_alias="fileName")
    content_type: str = Field(serialization_alias="contentType")
    sha256: Optional[str] = None


class FileCheckResult(WireModel):
    file_name: str
    status: Literal["exists", "needs_upload"]
    file_id: str
    upload_url: Optional[str] = None
    sha256: Optional[str] = None


class PresignedBatchResponse(WireModel):
    success: bool = False
    message: str = ""
    files: List[FileCheckResult] = Field(default_factory=list)


__all__ = [
    "CodeResponse",
    "DeviceDescriptor",
    "FileCheckItem",
    "FileCheckResult",
    "HeartbeatResponse",
    "PollResponse",
    "PresignedBatchResponse",
]

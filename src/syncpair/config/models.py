"""Configuration models describing syncpair settings."""

from __future__ import annotations

from typing import List

from pydantic import BaseModel, ConfigDict, Field, field_validator

MIN_CONCURRENT_UPLOADS = 1
MAX_CONCURRENT_UPLOADS = 20

DEFAULT_IGNORED_PATTERNS = ["*.tmp", ".git/**", "node_modules/**", ".DS_Store"]


class SyncPairBaseModel(BaseModel):
    """Shared configuration for syncpair Pydantic models."""

    model_config = ConfigDict(extra="forbid")


class ServerSettings(SyncPairBaseModel):
    """Remote API settings.

    Attributes:
        base_url: Base URL hosting the `/api/sync/*` endpoints.
        request_timeout_seconds: Timeout applied to each HTTP request.
        verify_ssl: Whether TLS certificates are verified.
    """

    base_url: str = "http://localhost:3000"
    request_timeout_seconds: float = 15.0
    verify_ssl: bool = True

    @field_validator("base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")


class EnrollmentSettings(SyncPairBaseModel):
    """Timing for the pairing flow.

    Attributes:
        code_refresh_seconds: Interval between one-time code rotations.
        poll_interval_seconds: Interval between enrollment polls.
        enroll_page_url: Page where a user enters the displayed code.
    """

    code_refresh_seconds: float = Field(default=60.0, gt=0)
    poll_interval_seconds: float = Field(default=1.0, gt=0)
    enroll_page_url: str = "https://platform.labric.co/enroll"


class UploadConfig(SyncPairBaseModel):
    """Upload queue behavior.

    Attributes:
        enabled: Whether change events are uploaded at all.
        server_url: Base URL receiving file uploads.
        ignored_patterns: Ordered, unique glob patterns matched against relative paths.
        upload_delay_ms: Quiet period before a changed file is queued.
        max_concurrent_uploads: Ceiling on simultaneous uploads.
        ignore_existing_files: Skip files found in the initial folder snapshot.
        max_retries: Retries after a failed attempt before the upload is marked failed.
        retry_delay_seconds: Wait between a failed attempt and the next one.
    """

    enabled: bool = True
    server_url: str = "http://localhost:3000"
    ignored_patterns: List[str] = Field(default_factory=lambda: list(DEFAULT_IGNORED_PATTERNS))
    upload_delay_ms: int = Field(default=2000, ge=0)
    max_concurrent_uploads: int = Field(
        default=5, ge=MIN_CONCURRENT_UPLOADS, le=MAX_CONCURRENT_UPLOADS
    )
    ignore_existing_files: bool = False
    max_retries: int = Field(default=2, ge=0)
    retry_delay_seconds: float = Field(default=5.0, ge=0)

    @field_validator("server_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("ignored_patterns")
    @classmethod
    def _dedupe_patterns(cls, value: List[str]) -> List[str]:
        seen: dict[str, None] = {}
        for pattern in value:
            cleaned = pattern.strip()
            if cleaned:
                seen.setdefault(cleaned, None)
        return list(seen)


class HeartbeatSettings(SyncPairBaseModel):
    """Liveness ping settings.

    Attributes:
        enabled: Whether heartbeats are sent while signed in.
        interval_seconds: Interval between heartbeats.
        endpoint: Path appended to the server base URL.
    """

    enabled: bool = True
    interval_seconds: float = Field(default=30.0, gt=0)
    endpoint: str = "/api/sync/heartbeat"


class StorageSettings(SyncPairBaseModel):
    """Where local state lives.

    Attributes:
        state_dir: Directory holding settings.json, device_id.txt, and logs.
    """

    state_dir: str = "~/.syncpair"


class LoggingSettings(SyncPairBaseModel):
    """Runtime logging configuration.

    Attributes:
        level: Logging verbosity level.
        max_size_mb: Maximum log size before rotation.
        backup_count: Number of historical log files to retain.
    """

    level: str = "INFO"
    max_size_mb: int = 10
    backup_count: int = 5


class CLIOptions(SyncPairBaseModel):
    """CLI presentation defaults.

    Attributes:
        quiet_default: Whether commands suppress non-error output by default.
    """

    quiet_default: bool = False


class SyncPairConfig(SyncPairBaseModel):
    """Top-level configuration struct for syncpair."""

    server: ServerSettings = Field(default_factory=ServerSettings)
    enrollment: EnrollmentSettings = Field(default_factory=EnrollmentSettings)
    upload: UploadConfig = Field(default_factory=UploadConfig)
    heartbeat: HeartbeatSettings = Field(default_factory=HeartbeatSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    cli: CLIOptions = Field(default_factory=CLIOptions)


__all__ = [
    "SyncPairBaseModel",
    "ServerSettings",
    "EnrollmentSettings",
    "UploadConfig",
    "HeartbeatSettings",
    "StorageSettings",
    "LoggingSettings",
    "CLIOptions",
    "SyncPairConfig",
    "MIN_CONCURRENT_UPLOADS",
    "MAX_CONCURRENT_UPLOADS",
    "DEFAULT_IGNORED_PATTERNS",
]

"""Data structures shared by the upload queue and its observers."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional


class UploadStatus(str, Enum):
    """Per-path upload state."""

    PENDING = "pending"
    QUEUED = "queued"
    UPLOADING = "uploading"
    UPLOADED = "uploaded"
    FAILED = "failed"
    IGNORED = "ignored"


class ChangeKind(str, Enum):
    """Filesystem change reported by the watcher."""

    INITIAL = "initial"
    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"
    MOVED = "moved"


@dataclass(slots=True, frozen=True)
class ChangeEvent:
    """A single change notification.

    Attributes:
        path: Absolute path of the file. For moves this is the destination.
        kind: What happened to the file.
        timestamp: Wall-clock time the watcher observed the change.
    """

    path: Path
    kind: ChangeKind = ChangeKind.MODIFIED
    timestamp: float = field(default_factory=time.time)


@dataclass(slots=True)
class UploadItem:
    """A file waiting for, or undergoing, upload."""

    path: Path
    relative_path: str
    first_seen: float
    retry_count: int = 0


@dataclass(slots=True, frozen=True)
class UploadProgress:
    total_queued: int = 0
    total_uploaded: int = 0
    total_failed: int = 0
    current_uploading: Optional[str] = None


class UploadEventKind(str, Enum):
    STATUS = "status"
    PROGRESS = "progress"
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass(slots=True, frozen=True)
class UploadEvent:
    """Notification published to queue subscribers.

    Attributes:
        kind: Event category.
        relative_path: Path the event concerns; None for progress events.
        status: New status for ``STATUS`` events.
        error: Failure message for ``FAILURE`` events.
        progress: Aggregate counters for ``PROGRESS`` events.
    """

    kind: UploadEventKind
    relative_path: Optional[str] = None
    status: Optional[UploadStatus] = None
    error: Optional[str] = None
    progress: Optional[UploadProgress] = None


__all__ = [
    "ChangeEvent",
    "ChangeKind",
    "UploadEvent",
    "UploadEventKind",
    "UploadItem",
    "UploadProgress",
    "UploadStatus",
]

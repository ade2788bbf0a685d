"""Upload queue: filtering, debouncing, and bounded-concurrency transfer."""

from .manager import UploadQueueManager
from .models import (
    ChangeEvent,
    ChangeKind,
    UploadEvent,
    UploadEventKind,
    UploadItem,
    UploadProgress,
    UploadStatus,
)
from .patterns import matching_pattern, relative_path, should_ignore
from .transport import PresignedUploader, UploadError, Uploader

__all__ = [
    "ChangeEvent",
    "ChangeKind",
    "PresignedUploader",
    "UploadError",
    "UploadEvent",
    "UploadEventKind",
    "UploadItem",
    "UploadProgress",
    "UploadQueueManager",
    "UploadStatus",
    "Uploader",
    "matching_pattern",
    "relative_path",
    "should_ignore",
]

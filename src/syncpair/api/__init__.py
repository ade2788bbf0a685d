"""Client for the remote sync API."""

from .client import SyncApiClient, create_session
from .errors import ProtocolError, SyncApiError, TransportError
from .models import (
    CodeResponse,
    DeviceDescriptor,
    FileCheckItem,
    FileCheckResult,
    HeartbeatResponse,
    PollResponse,
)

__all__ = [
    "CodeResponse",
    "DeviceDescriptor",
    "FileCheckItem",
    "FileCheckResult",
    "HeartbeatResponse",
    "PollResponse",
    "ProtocolError",
    "SyncApiClient",
    "SyncApiError",
    "TransportError",
    "create_session",
]

"""Errors raised by the sync API client."""


class SyncApiError(Exception):
    """Base exception for sync API calls.

    Every subclass is recoverable: callers convert it into a notification
    and try again on their next scheduled tick.
    """


class TransportError(SyncApiError):
    """Raised when the server is unreachable or answers with a non-2xx status."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ProtocolError(SyncApiError):
    """Raised when a response body is malformed or reports ``success: false``."""

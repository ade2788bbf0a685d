"""Settings store errors."""


class StoreError(Exception):
    """Base exception for settings store operations."""


class CredentialError(StoreError):
    """Raised when a stored credential cannot be decoded."""

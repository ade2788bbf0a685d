"""Device pairing."""

from .device import collect_device_descriptor, device_fingerprint
from .session import (
    EnrollmentCode,
    EnrollmentSession,
    EnrollmentState,
    PollResult,
)

__all__ = [
    "EnrollmentCode",
    "EnrollmentSession",
    "EnrollmentState",
    "PollResult",
    "collect_device_descriptor",
    "device_fingerprint",
]

"""Collect the device descriptor sent during pairing."""

from __future__ import annotations

import hashlib
import logging
import os
import platform
import uuid
from pathlib import Path
from typing import Optional

from syncpair.api.models import DeviceDescriptor

LOGGER = logging.getLogger(__name__)

DEVICE_ID_FILENAME = "device_id.txt"
_MACHINE_ID_PATHS = (Path("/etc/machine-id"), Path("/var/lib/dbus/machine-id"))
_ARCH_ALIASES = {
    "x86_64": "x64",
    "amd64": "x64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "i386": "x86",
    "i686": "x86",
    "x86": "x86",
}


def platform_name() -> str:
    system = platform.system()
    if system == "Darwin":
        return "macOS"
    if system in {"Windows", "Linux"}:
        return system
    return "Unknown"


def architecture() -> str:
    machine = platform.machine()
    return _ARCH_ALIASES.get(machine.lower(), machine or "unknown")


def hostname() -> str:
    return (
        os.environ.get("HOSTNAME")
        or os.environ.get("COMPUTERNAME")
        or platform.node()
        or "Unknown"
    )


def os_release(name: str, *, os_release_path: Path = Path("/etc/os-release")) -> str:
    """Return a human-readable OS version for ``name``."""
    if name == "macOS":
        return platform.mac_ver()[0] or "Unknown"
    if name == "Windows":
        return platform.release() or os.environ.get("OS", "Windows")
    try:
        for line in os_release_path.read_text(encoding="utf-8").splitlines():
            if line.startswith("PRETTY_NAME="):
                return line.split("=", 1)[1].strip().strip('"')
    except OSError:
        pass
    return "Linux" if name == "Linux" else platform.release() or "Unknown"


def total_memory_gb() -> int:
    try:
        pages = os.sysconf("SC_PHYS_PAGES")
        page_size = os.sysconf("SC_PAGE_SIZE")
    except (AttributeError, ValueError, OSError):
        return 0
    return int(pages * page_size // (1024**3))


def load_device_id(state_dir: Path) -> str:
    """Return the persisted device id, creating one on first use."""
    path = state_dir.expanduser() / DEVICE_ID_FILENAME
    if path.exists():
        existing = path.read_text(encoding="utf-8").strip()
        if existing:
            return existing
    path.parent.mkdir(parents=True, exist_ok=True)
    new_id = str(uuid.uuid4())
    path.write_text(new_id, encoding="utf-8")
    LOGGER.info("Generated new device id at %s", path)
    return new_id


def read_machine_id() -> str:
    for candidate in _MACHINE_ID_PATHS:
        try:
            value = candidate.read_text(encoding="utf-8").strip()
        except OSError:
            continue
        if value:
            return value
    return f"{uuid.getnode():012x}"


def device_fingerprint(machine_id: str) -> str:
    return hashlib.sha256(machine_id.encode("utf-8")).hexdigest()


def collect_device_descriptor(
    state_dir: Path,
    *,
    machine_id: Optional[str] = None,
) -> DeviceDescriptor:
    """Build the descriptor for this machine.

    Args:
        state_dir: Directory holding the persisted device id.
        machine_id: Override for the OS machine id (tests).

    Returns:
        DeviceDescriptor: Snapshot reused for the lifetime of the process.
    """
    name = platform_name()
    return DeviceDescriptor(
        hostname=hostname(),
        platform=name,
        release=os_release(name),
        arch=architecture(),
        cpus=os.cpu_count() or 1,
        total_memory=total_memory_gb(),
        os_type=name,
        device_id=load_device_id(state_dir),
        device_fingerprint=device_fingerprint(machine_id or read_machine_id()),
    )


__all__ = ["collect_device_descriptor", "device_fingerprint", "load_device_id"]

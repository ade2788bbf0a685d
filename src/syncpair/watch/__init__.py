"""Folder watching."""

from .service import WatchService, iter_files

__all__ = ["WatchService", "iter_files"]

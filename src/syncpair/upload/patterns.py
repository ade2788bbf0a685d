"""Ignore-pattern matching against paths relative to the watched folder."""

from __future__ import annotations

import fnmatch
from pathlib import Path
from typing import Iterable, Optional


def relative_path(path: Path, root: Optional[Path]) -> str:
    """Return ``path`` relative to ``root`` using forward slashes.

    Paths outside ``root`` (or any absolute path when no root is set) fall
    back to the file name so that patterns still apply.
    """
    if not path.is_absolute():
        return path.as_posix()
    if root is not None:
        try:
            return path.relative_to(root).as_posix()
        except ValueError:
            pass
    return path.name


def matching_pattern(relative: str, patterns: Iterable[str]) -> Optional[str]:
    """Return the first pattern that matches ``relative``, if any.

    ``*`` matches across ``/``, so ``*.tmp`` excludes temp files at any
    depth. Patterns without a slash are also tried against the file name.
    """
    name = relative.rsplit("/", 1)[-1]
    for pattern in patterns:
        if fnmatch.fnmatchcase(relative, pattern):
            return pattern
        if "/" not in pattern and fnmatch.fnmatchcase(name, pattern):
            return pattern
    return None


def should_ignore(relative: str, patterns: Iterable[str]) -> bool:
    return matching_pattern(relative, patterns) is not None


__all__ = ["matching_pattern", "relative_path", "should_ignore"]

"""Logging configuration for the agent process."""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from rich.logging import RichHandler

from syncpair.config.models import LoggingSettings

LOG_FILENAME = "syncpair.log"
_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_HANDLER_MARK = "_syncpair_handler"


def configure_logging(
    settings: LoggingSettings,
    state_dir: Path,
    *,
    console: bool = False,
) -> Path:
    """Attach a rotating file handler (and optionally a console handler) to the package logger.

    Calling this again replaces the handlers installed by a previous call.

    Args:
        settings: Logging section of the loaded configuration.
        state_dir: Directory that receives the log file.
        console: Whether to also log to stderr through rich.

    Returns:
        Path: Location of the log file.
    """
    logger = logging.getLogger("syncpair")
    level = logging.getLevelName(settings.level.upper())
    if not isinstance(level, int):
        level = logging.INFO
    logger.setLevel(level)

    for handler in list(logger.handlers):
        if getattr(handler, _HANDLER_MARK, False):
            logger.removeHandler(handler)
            handler.close()

    directory = state_dir.expanduser()
    directory.mkdir(parents=True, exist_ok=True)
    log_path = directory / LOG_FILENAME

    file_handler = RotatingFileHandler(
        log_path,
        maxBytes=max(1, settings.max_size_mb) * 1024 * 1024,
        backupCount=max(0, settings.backup_count),
        encoding="utf-8",
    )
    file_handler.setFormatter(logging.Formatter(_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    setattr(file_handler, _HANDLER_MARK, True)
    logger.addHandler(file_handler)

    if console:
        console_handler = RichHandler(show_path=False, rich_tracebacks=True)
        console_handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
        setattr(console_handler, _HANDLER_MARK, True)
        logger.addHandler(console_handler)

    return log_path


__all__ = ["configure_logging", "LOG_FILENAME"]

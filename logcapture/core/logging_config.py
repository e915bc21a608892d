"""Root logging setup for the ``logcapture`` command line."""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Dict, List, Optional, Union

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"

LOG_LEVELS: Dict[str, int] = {
    "critical": logging.CRITICAL,
    "error": logging.ERROR,
    "warning": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}

LOG_FILE_MAX_BYTES = 1024 * 1024
LOG_FILE_BACKUP_COUNT = 3

# handlers installed by the last configure_logging call
_installed: List[logging.Handler] = []


def resolve_level(level: Union[int, str]) -> int:
    """Map a level name from ``LOG_LEVELS`` (or a numeric level) to an int."""
    if isinstance(level, int):
        return level
    try:
        return LOG_LEVELS[level.lower()]
    except KeyError:
        raise ValueError(f"Unknown log level '{level}'") from None


def configure_logging(
    level: Union[int, str] = "info",
    *,
    console: bool = True,
    log_file: Optional[Union[str, Path]] = None,
) -> List[logging.Handler]:
    """Install the console and file handlers on the root logger.

    Calling it again replaces the handlers from the previous call and leaves
    any other root handlers in place. Console output goes to stderr because
    stdout carries the saved artifact paths.
    """
    numeric_level = resolve_level(level)
    root = logging.getLogger()

    while _installed:
        handler = _installed.pop()
        root.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT)
    handlers: List[logging.Handler] = []
    if console:
        handlers.append(logging.StreamHandler(sys.stderr))
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(
            RotatingFileHandler(
                log_path,
                maxBytes=LOG_FILE_MAX_BYTES,
                backupCount=LOG_FILE_BACKUP_COUNT,
                encoding="utf-8",
            )
        )
    if not handlers:
        # --no-console without --log-file: stay silent instead of lastResort
        handlers.append(logging.NullHandler())

    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)
    root.setLevel(numeric_level)
    _installed.extend(handlers)
    return handlers


__all__ = ["configure_logging", "resolve_level", "LOG_LEVELS", "LOG_FORMAT", "LOG_DATEFMT"]

"""
Cross-platform file sync utilities.

On POSIX systems (Linux, macOS), uses os.fsync().
On Windows, uses msvcrt._commit() which wraps FlushFileBuffers.
"""

from __future__ import annotations

import os
import sys

from logcapture.core.logging_utils import get_module_logger

logger = get_module_logger("FileSyncUtils")

if sys.platform == "win32":
    import msvcrt as _msvcrt


def safe_fsync(fd: int) -> bool:
    """Sync file descriptor to disk (cross-platform).

    Returns:
        True if sync succeeded, False if it failed. Failures are logged at
        debug level; fsync is advisory on some systems.
    """
    try:
        if sys.platform == "win32":
            _msvcrt._commit(fd)
        else:
            os.fsync(fd)
        return True
    except OSError as e:
        logger.debug("fsync failed for fd %d: %s", fd, e)
        return False


__all__ = ["safe_fsync"]

"""Error taxonomy for log capture.

Only ``StaleStateTransition`` is ever raised across the public API: it marks
an orchestration bug. The remaining types describe environmental conditions
that are logged and degraded around, never propagated.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Union


class LogCaptureError(Exception):
    """Base class for log capture errors."""


class StaleStateTransition(LogCaptureError):
    """A lifecycle method was called outside its valid predecessor state."""

    def __init__(self, subject: str, operation: str, state: str, allowed) -> None:
        self.subject = subject
        self.operation = operation
        self.state = state
        self.allowed = tuple(allowed)
        expected = ", ".join(self.allowed) or "none"
        super().__init__(
            f"{subject}: cannot {operation} while {state} (valid from: {expected})"
        )


class MissingSource(LogCaptureError):
    """The log path did not exist when the source was bound."""

    def __init__(self, channel: str, path: Union[str, Path]) -> None:
        self.channel = channel
        self.path = Path(path)
        super().__init__(f"{channel} log is missing at path: {self.path}")


class WatchFailure(LogCaptureError):
    """The underlying watch (poll loop or tail process) broke."""

    def __init__(self, channel: str, path: Union[str, Path], cause: Optional[BaseException] = None) -> None:
        self.channel = channel
        self.path = Path(path)
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"watching {channel} log {self.path} failed{detail}")


class PersistenceFailure(LogCaptureError):
    """A recording could not be moved to its artifact path."""

    def __init__(self, staging_path: Union[str, Path], destination: Union[str, Path], reason: str) -> None:
        self.staging_path = Path(staging_path)
        self.destination = Path(destination)
        self.reason = reason
        super().__init__(f"could not save {self.staging_path} to {self.destination}: {reason}")


__all__ = [
    "LogCaptureError",
    "StaleStateTransition",
    "MissingSource",
    "WatchFailure",
    "PersistenceFailure",
]

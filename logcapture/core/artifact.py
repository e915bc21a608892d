"""Capability interface shared by every recorded artifact type."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Protocol, Union, runtime_checkable


@runtime_checkable
class Artifact(Protocol):
    """Anything the artifact orchestrator can drive through a test.

    The orchestrator calls ``start`` when the window opens, ``stop`` when it
    closes, then exactly one of ``save`` (with the destination it picked) or
    ``discard``.
    """

    async def start(self, *args: Any, **kwargs: Any) -> None:
        ...

    async def stop(self) -> None:
        ...

    async def save(self, artifact_path: Union[str, Path]) -> bool:
        ...

    async def discard(self) -> None:
        ...


__all__ = ["Artifact"]

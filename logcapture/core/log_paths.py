"""Resolution of a device's log file paths."""

from __future__ import annotations

from pathlib import Path
from typing import Dict, Mapping, Optional, Protocol, Union, runtime_checkable

from .capture_config import CaptureConfig


@runtime_checkable
class PathResolver(Protocol):
    """Returns the current log file of every channel for a device.

    The files may not exist yet.
    """

    def resolve_log_paths(self, device_id: str) -> Mapping[str, Union[str, Path]]:
        ...


class TemplatePathResolver:
    """Formats per-channel path templates with ``{device_id}`` and ``{home}``."""

    def __init__(self, templates: Mapping[str, str], home: Optional[Path] = None) -> None:
        self.templates = dict(templates)
        self.home = Path(home) if home is not None else Path.home()

    @classmethod
    def from_config(cls, config: CaptureConfig) -> "TemplatePathResolver":
        return cls(config.path_templates())

    def resolve_log_paths(self, device_id: str) -> Dict[str, Path]:
        return {
            channel: Path(template.format(device_id=device_id, home=self.home)).expanduser()
            for channel, template in self.templates.items()
        }


class StaticPathResolver:
    """Always resolves to the same files, whatever the device."""

    def __init__(self, paths: Mapping[str, Union[str, Path]]) -> None:
        self.paths = {channel: Path(path) for channel, path in paths.items()}

    def resolve_log_paths(self, device_id: str) -> Dict[str, Path]:
        return dict(self.paths)


__all__ = ["PathResolver", "StaticPathResolver", "TemplatePathResolver"]

"""Typed configuration for log capture."""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from .config_loader import ConfigLoader
from .logging_utils import get_module_logger
from .paths import DEFAULT_STAGING_DIR

logger = get_module_logger("CaptureConfig")

TAIL_STRATEGIES = ("poll", "process")

SIMULATOR_DATA_ROOT = "{home}/Library/Developer/CoreSimulator/Devices/{device_id}/data"
DEFAULT_STDOUT_TEMPLATE = SIMULATOR_DATA_ROOT + "/tmp/detox.last_launch_app_log.out"
DEFAULT_STDERR_TEMPLATE = SIMULATOR_DATA_ROOT + "/tmp/detox.last_launch_app_log.err"


@dataclass(slots=True)
class CaptureConfig:
    tail_strategy: str = "poll"
    poll_interval: float = 0.1
    read_chunk_size: int = 64 * 1024
    encoding: str = "utf-8"
    staging_dir: Path = DEFAULT_STAGING_DIR
    resume_after_relaunch: bool = True
    replay_on_relaunch: bool = True
    bind_on_boot: bool = True
    tail_stop_timeout: float = 2.0
    stdout_path_template: str = DEFAULT_STDOUT_TEMPLATE
    stderr_path_template: str = DEFAULT_STDERR_TEMPLATE

    def __post_init__(self) -> None:
        if self.tail_strategy not in TAIL_STRATEGIES:
            logger.warning(
                "Unknown tail_strategy '%s', falling back to 'poll'", self.tail_strategy
            )
            self.tail_strategy = "poll"
        if self.poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        if self.read_chunk_size <= 0:
            raise ValueError("read_chunk_size must be positive")
        self.staging_dir = Path(self.staging_dir)

    @classmethod
    def from_dict(cls, values: Mapping[str, Any]) -> "CaptureConfig":
        known = {f.name for f in fields(cls)}
        return cls(**{key: value for key, value in values.items() if key in known})

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def path_templates(self) -> Dict[str, str]:
        return {
            "stdout": self.stdout_path_template,
            "stderr": self.stderr_path_template,
        }


def load_capture_config(
    config_path: Optional[Path] = None,
    overrides: Optional[Mapping[str, Any]] = None,
) -> CaptureConfig:
    """Build a CaptureConfig from an optional config file plus overrides."""
    defaults = CaptureConfig().to_dict()
    values = ConfigLoader.load(config_path, defaults, strict=True) if config_path else defaults
    if overrides:
        values.update({key: value for key, value in overrides.items() if value is not None})
    return CaptureConfig.from_dict(values)


__all__ = ["CaptureConfig", "TAIL_STRATEGIES", "load_capture_config"]

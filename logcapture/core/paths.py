"""Centralized path constants for logcapture."""

from __future__ import annotations

import tempfile
from pathlib import Path

PACKAGE_ROOT = Path(__file__).resolve().parents[1]
PROJECT_ROOT = PACKAGE_ROOT.parent

# Configuration
CONFIG_PATH = PROJECT_ROOT / "config.txt"

# Staging files for in-flight recordings
DEFAULT_STAGING_DIR = Path(tempfile.gettempdir())


__all__ = [
    "PACKAGE_ROOT",
    "PROJECT_ROOT",
    "CONFIG_PATH",
    "DEFAULT_STAGING_DIR",
]

from __future__ import annotations

import argparse
from pathlib import Path
from typing import Any

from logcapture.core.logging_config import LOG_LEVELS, configure_logging
from logcapture.core.logging_utils import get_module_logger


def add_common_cli_arguments(
    parser: argparse.ArgumentParser,
    *,
    default_output: Path | str,
    include_config: bool = True,
    default_console_output: bool = True,
) -> None:
    parser.add_argument(
        "--output-dir",
        type=Path,
        default=Path(default_output),
        help="Directory where saved artifacts are written",
    )

    parser.add_argument(
        "--log-level",
        choices=sorted(LOG_LEVELS.keys()),
        default="info",
        help="Logging verbosity",
    )

    parser.add_argument(
        "--log-file",
        type=Path,
        default=None,
        help="Optional path to write diagnostic logs",
    )

    if include_config:
        parser.add_argument(
            "--config",
            type=Path,
            default=None,
            help="key = value configuration file (default: config.txt in the project root)",
        )

    console_group = parser.add_mutually_exclusive_group()
    console_group.add_argument(
        "--console",
        dest="console_output",
        action="store_true",
        default=default_console_output,
        help="Log to stderr (default)",
    )
    console_group.add_argument(
        "--no-console",
        dest="console_output",
        action="store_false",
        help="Log to file only",
    )


def positive_float(value: str) -> float:
    try:
        parsed = float(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError("Value must be a number") from exc
    if parsed <= 0:
        raise argparse.ArgumentTypeError("Value must be positive")
    return parsed


def ensure_directory(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    return path


def setup_cli_logging(args: Any, component: str):
    """Configure logging from parsed common arguments and return a component logger."""
    configure_logging(
        args.log_level,
        console=args.console_output,
        log_file=args.log_file,
    )
    runtime_logger = get_module_logger(component)
    if args.log_file:
        runtime_logger.info("Logs will be written to %s", args.log_file)
    return runtime_logger


__all__ = [
    "add_common_cli_arguments",
    "ensure_directory",
    "positive_float",
    "setup_cli_logging",
]

"""Command-line recorder: follow a device's logs and save one artifact."""

from __future__ import annotations

import argparse
import asyncio
import signal
import time
from pathlib import Path
from typing import Optional

from logcapture.cli.common import add_common_cli_arguments, ensure_directory, positive_float, setup_cli_logging
from logcapture.core.capture_config import TAIL_STRATEGIES, load_capture_config
from logcapture.core.log_capture_plugin import LogCapturePlugin
from logcapture.core.log_paths import PathResolver, StaticPathResolver, TemplatePathResolver
from logcapture.core.paths import CONFIG_PATH


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="logcapture",
        description="Record a device's stdout/stderr logs into a single artifact",
    )

    parser.add_argument("--device-id", default="local", help="Device identifier used to resolve log paths")
    parser.add_argument("--stdout", dest="stdout_path", type=Path, default=None, help="stdout log file to follow")
    parser.add_argument("--stderr", dest="stderr_path", type=Path, default=None, help="stderr log file to follow")
    parser.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Artifact path (default: <output-dir>/<device-id>-<timestamp>.log)",
    )
    parser.add_argument(
        "--duration",
        type=positive_float,
        default=None,
        help="Seconds to record (default: until interrupted)",
    )
    parser.add_argument(
        "--from-start",
        action="store_true",
        default=False,
        help="Include lines already present in the log files",
    )
    parser.add_argument("--tail-strategy", choices=TAIL_STRATEGIES, default=None)
    parser.add_argument("--poll-interval", type=positive_float, default=None)

    add_common_cli_arguments(parser, default_output="artifacts")
    return parser.parse_args(argv)


def build_resolver(args: argparse.Namespace, config) -> PathResolver:
    explicit = {
        channel: path
        for channel, path in (("stdout", args.stdout_path), ("stderr", args.stderr_path))
        if path is not None
    }
    if explicit:
        return StaticPathResolver(explicit)
    return TemplatePathResolver.from_config(config)


async def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)
    logger = setup_cli_logging(args, "Recorder")

    config = load_capture_config(
        args.config or CONFIG_PATH,
        overrides={"tail_strategy": args.tail_strategy, "poll_interval": args.poll_interval},
    )
    plugin = LogCapturePlugin(build_resolver(args, config), config=config)

    destination = args.output
    if destination is None:
        stamp = time.strftime("%Y%m%d-%H%M%S")
        destination = ensure_directory(args.output_dir) / f"{args.device_id}-{stamp}.log"

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            pass  # Windows doesn't support add_signal_handler

    await plugin.on_launch_app(args.device_id)
    if args.from_start:
        recording = plugin.create_startup_recording()
    else:
        recording = plugin.create_test_recording()

    saved = False
    try:
        await recording.start()
        logger.info("Recording %s logs", args.device_id)
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=args.duration)
        except asyncio.TimeoutError:
            pass
    finally:
        if recording.is_recording:
            await recording.stop()
            saved = await recording.save(destination)
        await plugin.on_shutdown_device(args.device_id)
        await plugin.on_terminate()

    if saved:
        print(destination)
        logger.info("Saved %d lines to %s", recording.lines_written, destination)
        return 0
    return 1

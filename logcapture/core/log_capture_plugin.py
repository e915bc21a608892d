"""
Log Capture Plugin - drives the tail registry and recordings through device events.

The artifact orchestrator calls the hooks in this order across a run:

    on_boot_device -> on_before_launch_app -> on_launch_app
        -> [tests: create_test_recording / start / stop / save|discard]*
        -> on_shutdown_device -> on_terminate

(before-launch/launch repeat for every relaunch). A relaunch replaces the log
files, so a recording that is open when it starts is suspended before the old
sources are disposed and resumed against the new ones.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional

from .capture_config import CaptureConfig
from .line_source import LineSource
from .log_paths import PathResolver
from .log_recording import LogRecording, RecordingState, make_staging_path
from .logging_utils import StructuredLogger, get_module_logger
from .tail_registry import DEFAULT_CHANNELS, TailRegistry, make_source_factory


@dataclass
class CaptureContext:
    """Per-run state shared by the plugin: its logger and current recording."""

    logger: StructuredLogger = field(default_factory=lambda: get_module_logger("LogCapturePlugin"))
    current_recording: Optional[LogRecording] = None
    device_id: Optional[str] = None


class LogCapturePlugin:
    """Owns one TailRegistry and at most one current recording per test run."""

    def __init__(
        self,
        path_resolver: PathResolver,
        *,
        config: Optional[CaptureConfig] = None,
        context: Optional[CaptureContext] = None,
        registry: Optional[TailRegistry] = None,
    ) -> None:
        self.path_resolver = path_resolver
        self.config = config or CaptureConfig()
        self.context = context or CaptureContext()
        self.logger = self.context.logger
        self.registry = registry or TailRegistry(
            DEFAULT_CHANNELS,
            source_factory=make_source_factory(self.config, self.logger),
            logger=self.logger.getChild("TailRegistry"),
        )
        self._terminated = False

    @property
    def current_recording(self) -> Optional[LogRecording]:
        return self.context.current_recording

    # ------------------------------------------------------------------
    # Device lifecycle hooks

    async def on_boot_device(self, device_id: str) -> None:
        self.context.device_id = device_id
        self.logger.info("Device %s booted", device_id)
        if self.config.bind_on_boot:
            await self._bind_sources(device_id)

    async def on_before_launch_app(self, device_id: Optional[str] = None) -> None:
        recording = self.context.current_recording
        if recording is not None and recording.state is RecordingState.RECORDING:
            self.logger.debug("Suspending %s recording before relaunch", recording.name)
            await recording.suspend()

        self.registry.dispose_all()

    async def on_launch_app(self, device_id: str, pid: Optional[int] = None) -> None:
        self.context.device_id = device_id
        if pid is not None:
            self.logger.info("App launched on %s (pid %d)", device_id, pid)
        await self._bind_sources(device_id)

        recording = self.context.current_recording
        if recording is None or recording.state is not RecordingState.SUSPENDED:
            return
        if not self.config.resume_after_relaunch:
            self.logger.debug("Leaving %s recording suspended after relaunch", recording.name)
            return

        self.logger.debug("Resuming %s recording after relaunch", recording.name)
        await recording.resume(
            self.registry.current_sources(),
            replay=self.config.replay_on_relaunch,
        )

    async def on_shutdown_device(self, device_id: Optional[str] = None) -> None:
        self.logger.info("Device %s shutting down", device_id or self.context.device_id)
        self.registry.dispose_all()

    async def on_terminate(self) -> None:
        if self._terminated:
            return
        self._terminated = True
        self.registry.dispose_all()
        await self.registry.wait_closed()
        self.logger.debug("Log capture terminated")

    async def _bind_sources(self, device_id: str) -> Dict[str, LineSource]:
        try:
            paths = self.path_resolver.resolve_log_paths(device_id)
        except Exception as e:
            self.logger.error("Failed to resolve log paths for %s: %s", device_id, e)
            return {}
        return await self.registry.rebind(paths)

    # ------------------------------------------------------------------
    # Recording factories

    def create_startup_recording(self) -> LogRecording:
        """Recording that replays everything from boot through the first launch."""
        return self._create_recording(replay_from_start=True, name="startup")

    def create_test_recording(self) -> LogRecording:
        """Recording of only the lines emitted during one test."""
        return self._create_recording(replay_from_start=False, name="test")

    def _create_recording(self, *, replay_from_start: bool, name: str) -> LogRecording:
        recording = LogRecording(
            staging_path=make_staging_path(self.config.staging_dir),
            replay_from_start=replay_from_start,
            sources_provider=self.registry.current_sources,
            encoding=self.config.encoding,
            name=name,
            logger=self.logger.getChild("Recording"),
        )
        previous = self.context.current_recording
        if previous is not None and previous.state is RecordingState.RECORDING:
            self.logger.debug("Replacing active %s recording with a new %s recording", previous.name, name)
        self.context.current_recording = recording
        return recording


__all__ = ["CaptureContext", "LogCapturePlugin"]

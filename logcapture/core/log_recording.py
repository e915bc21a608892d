"""
Log Recording - one bounded capture window over the registry's line sources.

States:

    idle --start--> recording --stop--> stopped --save--> saved
                     |    ^                    \\--discard--> discarded
             suspend |    | resume
                     v    |
                   suspended --stop--> stopped

``idle --discard--> discarded`` is also allowed. Any other call raises
StaleStateTransition. While recording, every line received on a channel is
appended to the staging file as ``"<channel>: <line>\\n"`` in arrival order.
"""

from __future__ import annotations

import asyncio
import functools
import shutil
import uuid
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, Mapping, Optional, Union

import aiofiles

from .asyncio_utils import create_logged_task
from .errors import PersistenceFailure, StaleStateTransition
from .file_sync_utils import safe_fsync
from .line_source import LineSource, Subscription
from .logging_utils import LoggerLike, ensure_structured_logger
from .paths import DEFAULT_STAGING_DIR

SourcesProvider = Callable[[], Mapping[str, LineSource]]

FINGERPRINT_BYTES = 256


class RecordingState(Enum):
    IDLE = "idle"
    RECORDING = "recording"
    SUSPENDED = "suspended"
    STOPPED = "stopped"
    SAVED = "saved"
    DISCARDED = "discarded"


@dataclass(frozen=True)
class ResumeMark:
    """Where a channel's window was closed, used to avoid replaying seen lines."""

    path: Optional[Path]
    identity: Optional[int]
    position: int
    tail: bytes = b""

    async def matches(self, source: LineSource) -> bool:
        """True when ``source`` still follows the file this mark was taken on.

        Same inode is not enough: inodes are reused after delete + create and
        kept by in-place truncation, so the bytes just before ``position``
        must also be unchanged.
        """
        if self.identity is None or source.identity != self.identity or source.path != self.path:
            return False
        if self.position and not self.tail:
            return False
        start = self.position - len(self.tail)
        return await source.read_bytes(start, self.position) == self.tail


def make_staging_path(directory: Optional[Path] = None, suffix: str = ".log") -> Path:
    base = Path(directory) if directory is not None else DEFAULT_STAGING_DIR
    return base / f"logcapture-{uuid.uuid4()}{suffix}"


def _move_file(source: Path, destination: Path) -> None:
    destination.parent.mkdir(parents=True, exist_ok=True)
    shutil.move(str(source), str(destination))


class LogRecording:
    """Captures the lines of every subscribed channel during its open window."""

    def __init__(
        self,
        *,
        staging_path: Optional[Union[str, Path]] = None,
        replay_from_start: bool = False,
        sources_provider: Optional[SourcesProvider] = None,
        encoding: str = "utf-8",
        name: str = "log",
        logger: LoggerLike = None,
    ) -> None:
        self.name = name
        self.staging_path = Path(staging_path) if staging_path is not None else make_staging_path()
        self.replay_from_start = replay_from_start
        self.encoding = encoding
        self.artifact_path: Optional[Path] = None
        self.lines_written = 0
        self.lines_dropped = 0
        self.logger = ensure_structured_logger(logger, fallback_name="LogRecording")

        self._sources_provider = sources_provider
        self._state = RecordingState.IDLE
        self._subscriptions: Dict[str, Subscription] = {}
        self._marks: Dict[str, ResumeMark] = {}
        self._accepting = False
        self._stream = None
        self._queue: Optional[asyncio.Queue] = None
        self._writer_task: Optional[asyncio.Task] = None
        self._close_task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # State

    @property
    def state(self) -> RecordingState:
        return self._state

    @property
    def is_recording(self) -> bool:
        return self._state is RecordingState.RECORDING

    @property
    def subscribed_channels(self) -> tuple:
        return tuple(channel for channel, sub in self._subscriptions.items() if sub.active)

    def __repr__(self) -> str:
        return f"LogRecording(name={self.name!r}, state={self._state.value}, staging={self.staging_path})"

    def _require(self, operation: str, *allowed: RecordingState) -> None:
        if self._state not in allowed:
            raise StaleStateTransition(
                f"{self.name} recording",
                operation,
                self._state.value,
                [state.value for state in allowed],
            )

    # ------------------------------------------------------------------
    # Lifecycle

    async def start(
        self,
        channel_sources: Optional[Mapping[str, LineSource]] = None,
        replay_from_start: Optional[bool] = None,
    ) -> None:
        """Open the window: create the staging file and subscribe to every channel."""
        self._require("start", RecordingState.IDLE)
        self._state = RecordingState.RECORDING
        if replay_from_start is not None:
            self.replay_from_start = replay_from_start

        sources = self._resolve_sources(channel_sources)
        replay_from = 0 if self.replay_from_start else None
        await self._open_window(sources, {channel: replay_from for channel in sources})

    async def suspend(self) -> None:
        """Close the window ahead of a relaunch, keeping the staging file for resume."""
        self._require("suspend", RecordingState.RECORDING)
        self._state = RecordingState.SUSPENDED
        await self._close_window()

    async def resume(
        self,
        channel_sources: Optional[Mapping[str, LineSource]] = None,
        *,
        replay: bool = True,
    ) -> None:
        """Reopen a suspended window against freshly bound sources.

        With ``replay``, each new source first delivers the content this
        recording has not seen: from where it stopped when the file is the
        same one, otherwise from the start of the new file.
        """
        self._require("resume", RecordingState.SUSPENDED)
        self._state = RecordingState.RECORDING
        await self._wait_closed()

        sources = self._resolve_sources(channel_sources)
        offsets: Dict[str, Optional[int]] = {}
        for channel, source in sources.items():
            if not replay:
                offsets[channel] = None
                continue
            mark = self._marks.get(channel)
            offsets[channel] = mark.position if mark is not None and await mark.matches(source) else 0
        await self._open_window(sources, offsets)

    async def stop(self) -> None:
        """Close the window; returns once every buffered line is durable on disk."""
        self._require("stop", RecordingState.RECORDING, RecordingState.SUSPENDED)
        previous = self._state
        self._state = RecordingState.STOPPED
        if previous is RecordingState.RECORDING:
            await self._close_window()
        else:
            await self._wait_closed()

    async def save(self, artifact_path: Union[str, Path]) -> bool:
        """Move the staging file to ``artifact_path``.

        A missing staging file or failed move is logged, not raised; the
        recording is saved either way.
        """
        self._require("save", RecordingState.STOPPED)
        self._state = RecordingState.SAVED
        await self._wait_closed()

        destination = Path(artifact_path)
        self.artifact_path = destination

        if not await asyncio.to_thread(self.staging_path.exists):
            self.logger.error(
                "%s", PersistenceFailure(self.staging_path, destination, "did not find temporary log file")
            )
            return False

        self.logger.debug("moving %s to %s", self.staging_path, destination)
        try:
            await asyncio.to_thread(_move_file, self.staging_path, destination)
        except OSError as exc:
            self.logger.error("%s", PersistenceFailure(self.staging_path, destination, str(exc)))
            return False
        return True

    async def discard(self) -> None:
        """Delete the staging file, if any."""
        self._require("discard", RecordingState.STOPPED, RecordingState.IDLE)
        self._state = RecordingState.DISCARDED
        await self._wait_closed()
        try:
            await asyncio.to_thread(self.staging_path.unlink, missing_ok=True)
        except OSError as exc:
            self.logger.error("failed to remove temporary log file %s: %s", self.staging_path, exc)

    # ------------------------------------------------------------------
    # Window management

    def _resolve_sources(self, channel_sources: Optional[Mapping[str, LineSource]]) -> Mapping[str, LineSource]:
        if channel_sources is not None:
            return channel_sources
        if self._sources_provider is not None:
            return self._sources_provider()
        self.logger.warning("%s recording has no log sources to subscribe to", self.name)
        return {}

    async def _open_window(
        self,
        sources: Mapping[str, LineSource],
        replay_offsets: Mapping[str, Optional[int]],
    ) -> None:
        if not await self._open_staging():
            return

        self._accepting = True
        self._subscriptions = {}
        for channel, source in sources.items():
            handler = functools.partial(self._append_line, channel)
            subscription = await source.subscribe(handler, replay_from=replay_offsets.get(channel))
            if self._state is not RecordingState.RECORDING:
                # window closed while we were subscribing
                subscription.unsubscribe()
                break
            self._subscriptions[channel] = subscription

    async def _close_window(self) -> None:
        for subscription in list(self._subscriptions.values()):
            if subscription.active:
                await subscription.source.poll()

        closed = []
        for channel, subscription in list(self._subscriptions.items()):
            source = subscription.source
            subscription.unsubscribe()
            closed.append((channel, source, source.identity, source.position))
        self._subscriptions = {}
        self._accepting = False

        for channel, source, identity, position in closed:
            tail = await source.read_bytes(max(0, position - FINGERPRINT_BYTES), position)
            self._marks[channel] = ResumeMark(source.path, identity, position, tail)

        self._close_task = create_logged_task(
            self._close_staging(), logger=self.logger, context=f"close:{self.name}"
        )
        await self._wait_closed()

    async def _wait_closed(self) -> None:
        if self._close_task is not None:
            await asyncio.gather(self._close_task, return_exceptions=True)

    # ------------------------------------------------------------------
    # Staging file

    async def _open_staging(self) -> bool:
        self.logger.debug("creating append-only stream to: %s", self.staging_path)
        try:
            await asyncio.to_thread(self.staging_path.parent.mkdir, parents=True, exist_ok=True)
            self._stream = await aiofiles.open(self.staging_path, "a", encoding=self.encoding)
        except OSError as exc:
            self.logger.error("could not open temporary log file %s: %s", self.staging_path, exc)
            self._stream = None
            return False

        self._queue = asyncio.Queue()
        self._writer_task = create_logged_task(
            self._write_lines(self._stream, self._queue),
            logger=self.logger,
            context=f"writer:{self.name}",
        )
        return True

    def _append_line(self, channel: str, line: str) -> None:
        if not self._accepting or self._queue is None:
            self.lines_dropped += 1
            self.logger.warning("failed to add %s line to log: %s", channel, line)
            return
        self._queue.put_nowait(f"{channel}: {line}\n")

    async def _write_lines(self, stream, queue: asyncio.Queue) -> None:
        finished = False
        while not finished:
            batch = [await queue.get()]
            while not queue.empty():
                batch.append(queue.get_nowait())

            finished = batch[-1] is None
            texts = [text for text in batch if text is not None]
            if not texts:
                continue
            try:
                await stream.write("".join(texts))
                self.lines_written += len(texts)
            except (OSError, ValueError) as exc:
                self.lines_dropped += len(texts)
                self.logger.error("failed to write %d lines to %s: %s", len(texts), self.staging_path, exc)

    async def _close_staging(self) -> None:
        if self._queue is not None:
            self._queue.put_nowait(None)
        if self._writer_task is not None:
            await asyncio.gather(self._writer_task, return_exceptions=True)

        stream, self._stream = self._stream, None
        self._queue = None
        self._writer_task = None
        if stream is None:
            return

        self.logger.debug("closing stream to: %s", self.staging_path)
        try:
            await stream.flush()
            await asyncio.to_thread(safe_fsync, stream.fileno())
        except (OSError, ValueError) as exc:
            self.logger.warning("could not flush %s: %s", self.staging_path, exc)
        finally:
            await stream.close()


__all__ = [
    "LogRecording",
    "RecordingState",
    "ResumeMark",
    "make_staging_path",
]

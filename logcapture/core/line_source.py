"""
Line sources - follow one continuously appended log file and broadcast lines.

A source is bound to exactly one path for its whole life:

    unbound --bind()--> bound --dispose()--> disposed
                  \\
                   +--> inert   (path missing at bind time, never produces lines)

A bound source that hits an unrecoverable watch error moves to ``failed``
and behaves as if disposed. Re-binding never happens on the same instance;
the TailRegistry creates a fresh source instead.
"""

from __future__ import annotations

import asyncio
import os
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Tuple, Union

import aiofiles

from .asyncio_utils import create_logged_task
from .errors import MissingSource, StaleStateTransition, WatchFailure
from .logging_utils import LoggerLike, ensure_structured_logger

LineHandler = Callable[[str], None]
PathLike = Union[str, Path]


class SourceState(Enum):
    UNBOUND = "unbound"
    BOUND = "bound"
    INERT = "inert"
    FAILED = "failed"
    DISPOSED = "disposed"


class Subscription:
    """Handle returned by ``LineSource.subscribe``; consumed once by ``unsubscribe``."""

    __slots__ = ("source", "handler", "_active")

    def __init__(self, source: "LineSource", handler: LineHandler, active: bool = True) -> None:
        self.source = source
        self.handler = handler
        self._active = active

    @property
    def active(self) -> bool:
        return self._active

    @property
    def channel(self) -> str:
        return self.source.channel

    def unsubscribe(self) -> bool:
        """Detach from the source. Returns False if already detached."""
        if not self._active:
            return False
        self._active = False
        self.source._remove_subscription(self)
        return True

    def _deactivate(self) -> None:
        self._active = False


def split_lines(data: bytes, partial: bytes = b"") -> Tuple[List[bytes], bytes]:
    """Split ``partial + data`` into complete lines and the trailing remainder."""
    buffer = partial + data
    pieces = buffer.split(b"\n")
    remainder = pieces.pop()
    return [piece[:-1] if piece.endswith(b"\r") else piece for piece in pieces], remainder


class LineSource(ABC):
    """Base class for a single log channel follower.

    Subclasses implement the watch mechanism; this class owns the state
    machine and the broadcast to subscribers.
    """

    supports_replay = False

    def __init__(
        self,
        channel: str,
        *,
        replay_from_start: bool = False,
        encoding: str = "utf-8",
        logger: LoggerLike = None,
    ) -> None:
        self.channel = channel
        self.replay_from_start = replay_from_start
        self.encoding = encoding
        self.path: Optional[Path] = None
        self.logger = ensure_structured_logger(logger, fallback_name=f"LineSource.{channel}")
        self._state = SourceState.UNBOUND
        self._subscribers: List[Subscription] = []

    # ------------------------------------------------------------------
    # State

    @property
    def state(self) -> SourceState:
        return self._state

    @property
    def is_bound(self) -> bool:
        return self._state is SourceState.BOUND

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    @property
    def identity(self) -> Optional[int]:
        """Identity of the underlying file, if the source can tell."""
        return None

    @property
    def position(self) -> int:
        """Byte offset up to which complete lines have been delivered."""
        return 0

    def __repr__(self) -> str:
        return f"{type(self).__name__}(channel={self.channel!r}, path={self.path}, state={self._state.value})"

    # ------------------------------------------------------------------
    # Lifecycle

    async def bind(self, path: PathLike) -> bool:
        """Attach to ``path``. Returns False when the source stays inert."""
        if self._state is not SourceState.UNBOUND:
            raise StaleStateTransition(
                f"{self.channel} source", "bind", self._state.value, [SourceState.UNBOUND.value]
            )

        self.path = Path(path)
        try:
            stat = await asyncio.to_thread(os.stat, self.path)
        except FileNotFoundError:
            if self._state is SourceState.UNBOUND:
                self._state = SourceState.INERT
            self.logger.warning("%s", MissingSource(self.channel, self.path))
            return False
        except OSError as exc:
            self._fail(exc)
            return False

        if self._state is not SourceState.UNBOUND:
            # disposed while the stat was in flight
            return False

        self.logger.debug("starting to watch %s log: %s", self.channel, self.path)
        return await self._start_watch(stat)

    @abstractmethod
    async def _start_watch(self, stat: os.stat_result) -> bool:
        """Begin producing lines. Called once, with the source still UNBOUND."""

    def dispose(self) -> None:
        """Stop watching and drop every subscriber. Idempotent."""
        if self._state is SourceState.DISPOSED:
            return
        previous = self._state
        self._state = SourceState.DISPOSED
        self._drop_subscribers()
        if previous is SourceState.BOUND:
            self.logger.debug("unwatching %s log", self.channel)
        self._stop_watch()

    @abstractmethod
    def _stop_watch(self) -> None:
        """Release watch resources; may schedule asynchronous teardown."""

    async def wait_closed(self) -> None:
        """Wait until asynchronous teardown started by ``dispose`` has finished."""
        return None

    async def read_bytes(self, start: int, end: int) -> bytes:
        """Bytes ``[start, end)`` of the current file (short at EOF), or b"" when unknown."""
        return b""

    async def poll(self) -> int:
        """Deliver anything already appended but not yet delivered.

        Returns the number of lines delivered. Sources that cannot force a
        read deliver nothing here.
        """
        return 0

    # ------------------------------------------------------------------
    # Subscriptions

    async def subscribe(self, handler: LineHandler, *, replay_from: Optional[int] = None) -> Subscription:
        """Register ``handler`` for every future line.

        ``replay_from`` requests a one-time catch up: the new subscriber first
        receives the lines between that byte offset and the current position.
        Sources that cannot replay log a warning and subscribe live only.
        """
        if self._state in (SourceState.DISPOSED, SourceState.FAILED):
            self.logger.debug("not subscribing to %s source in state %s", self.channel, self._state.value)
            return Subscription(self, handler, active=False)
        if replay_from is not None and not self.supports_replay:
            self.logger.warning(
                "%s source cannot replay from offset %d; subscribing live only",
                self.channel,
                replay_from,
            )
        subscription = Subscription(self, handler)
        self._subscribers.append(subscription)
        return subscription

    def _remove_subscription(self, subscription: Subscription) -> None:
        try:
            self._subscribers.remove(subscription)
        except ValueError:
            pass

    def _drop_subscribers(self) -> None:
        for subscription in self._subscribers:
            subscription._deactivate()
        self._subscribers.clear()

    def _decode(self, raw: bytes) -> str:
        return raw.decode(self.encoding, errors="replace")

    def _dispatch(self, lines: List[str]) -> int:
        delivered = 0
        for line in lines:
            if self._state is not SourceState.BOUND:
                break
            for subscription in list(self._subscribers):
                self._deliver(subscription, line)
            delivered += 1
        return delivered

    def _deliver(self, subscription: Subscription, line: str) -> None:
        if not subscription.active:
            return
        try:
            subscription.handler(line)
        except Exception as e:
            self.logger.error("%s line handler error: %s", self.channel, e)

    def _fail(self, exc: BaseException) -> None:
        if self._state in (SourceState.DISPOSED, SourceState.FAILED):
            return
        self._state = SourceState.FAILED
        self.logger.error("%s", WatchFailure(self.channel, self.path or "", exc))
        self._drop_subscribers()
        self._stop_watch()


class PollingLineSource(LineSource):
    """Follows a file by name, polling its size and reading appended bytes.

    Truncation or replacement of the file (inode change) restarts reading
    at offset 0; a temporarily missing file is waited for. With
    ``replay_from_start`` the existing content is held back until the first
    subscriber arrives, which then receives all of it.
    """

    supports_replay = True

    def __init__(
        self,
        channel: str,
        *,
        replay_from_start: bool = False,
        poll_interval: float = 0.1,
        chunk_size: int = 64 * 1024,
        encoding: str = "utf-8",
        logger: LoggerLike = None,
    ) -> None:
        super().__init__(channel, replay_from_start=replay_from_start, encoding=encoding, logger=logger)
        self.poll_interval = poll_interval
        self.chunk_size = chunk_size
        self._offset = 0
        self._partial = b""
        self._inode: Optional[int] = None
        self._missing = False
        self._hold_backlog = False
        self._lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None

    @property
    def identity(self) -> Optional[int]:
        return self._inode

    @property
    def position(self) -> int:
        return self._offset - len(self._partial)

    async def _start_watch(self, stat: os.stat_result) -> bool:
        self._inode = stat.st_ino
        self._offset = 0 if self.replay_from_start else stat.st_size
        self._hold_backlog = self.replay_from_start
        self._state = SourceState.BOUND
        self._task = create_logged_task(
            self._watch(),
            logger=self.logger,
            context=f"tail:{self.channel}",
        )
        return True

    def _stop_watch(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def wait_closed(self) -> None:
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)

    async def _watch(self) -> None:
        while self._state is SourceState.BOUND:
            await self.poll()
            await asyncio.sleep(self.poll_interval)

    async def poll(self) -> int:
        if self._state is not SourceState.BOUND or self._hold_backlog:
            return 0
        async with self._lock:
            return await self._read_appended()

    async def subscribe(self, handler: LineHandler, *, replay_from: Optional[int] = None) -> Subscription:
        if self._state is not SourceState.BOUND:
            return await super().subscribe(handler, replay_from=replay_from)

        subscription = Subscription(self, handler)
        async with self._lock:
            if self._hold_backlog:
                # the first subscriber of a replaying source gets the whole file
                self._hold_backlog = False
                self._subscribers.append(subscription)
                await self._read_appended()
                return subscription

            # existing subscribers get everything up to EOF first, so the new
            # one starts exactly at the current position
            await self._read_appended()
            if self._state is not SourceState.BOUND:
                subscription._deactivate()
                return subscription

            if replay_from is not None:
                end = self.position
                start = max(0, min(replay_from, end))
                if start < end:
                    self.logger.debug(
                        "replaying %s log bytes %d-%d to new subscriber", self.channel, start, end
                    )
                    try:
                        data = await self._read_range(start, end)
                    except OSError as exc:
                        self.logger.warning("could not replay %s log: %s", self.channel, exc)
                        data = b""
                    lines, _ = split_lines(data)
                    for raw in lines:
                        if self._state is not SourceState.BOUND:
                            break
                        self._deliver(subscription, self._decode(raw))

            if self._state is not SourceState.BOUND:
                subscription._deactivate()
                return subscription
            self._subscribers.append(subscription)
        return subscription

    async def read_bytes(self, start: int, end: int) -> bytes:
        if end <= start or self.path is None:
            return b""
        try:
            return await self._read_range(start, end)
        except OSError:
            return b""

    async def _read_range(self, start: int, end: int) -> bytes:
        async with aiofiles.open(self.path, "rb") as fh:
            await fh.seek(start)
            return await fh.read(end - start)

    async def _read_appended(self) -> int:
        """Read from the current offset to EOF and dispatch. Caller holds the lock."""
        try:
            stat = await asyncio.to_thread(os.stat, self.path)
        except FileNotFoundError:
            if not self._missing:
                self._missing = True
                self.logger.info("%s log disappeared, waiting for it to return: %s", self.channel, self.path)
            return 0
        except OSError as exc:
            self._fail(exc)
            return 0

        if self._state is not SourceState.BOUND:
            return 0

        if self._missing:
            self._missing = False
            self.logger.info("%s log is back: %s", self.channel, self.path)
            self._inode = stat.st_ino
            self._offset = 0
            self._partial = b""

        if stat.st_ino != self._inode or stat.st_size < self._offset:
            self.logger.info("%s log was rotated or truncated, reading from the start", self.channel)
            self._inode = stat.st_ino
            self._offset = 0
            self._partial = b""

        if stat.st_size <= self._offset:
            return 0

        delivered = 0
        try:
            async with aiofiles.open(self.path, "rb") as fh:
                await fh.seek(self._offset)
                while self._state is SourceState.BOUND:
                    chunk = await fh.read(self.chunk_size)
                    if not chunk:
                        break
                    self._offset += len(chunk)
                    lines, self._partial = split_lines(chunk, self._partial)
                    delivered += self._dispatch([self._decode(raw) for raw in lines])
        except FileNotFoundError:
            return delivered
        except OSError as exc:
            self._fail(exc)
        return delivered


__all__ = [
    "LineHandler",
    "LineSource",
    "PollingLineSource",
    "SourceState",
    "Subscription",
    "split_lines",
]

"""
Tail Registry - owns the live line source of every log channel.

The registry is the only component that creates or disposes line sources.
Recordings borrow them through ``current_sources()`` and must fetch the
mapping again after every relaunch, since ``rebind`` replaces the sources.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Union

from .capture_config import CaptureConfig
from .line_source import LineSource, PollingLineSource
from .logging_utils import LoggerLike, ensure_structured_logger
from .process_line_source import ProcessLineSource

DEFAULT_CHANNELS = ("stdout", "stderr")

SourceFactory = Callable[..., LineSource]


def make_source_factory(config: CaptureConfig, logger: LoggerLike = None) -> SourceFactory:
    """Return a factory building line sources for the configured strategy."""

    def factory(channel: str, *, replay_from_start: bool = False) -> LineSource:
        child_logger = ensure_structured_logger(logger, fallback_name="TailRegistry").getChild(channel)
        if config.tail_strategy == "process":
            return ProcessLineSource(
                channel,
                replay_from_start=replay_from_start,
                stop_timeout=config.tail_stop_timeout,
                chunk_size=config.read_chunk_size,
                encoding=config.encoding,
                logger=child_logger,
            )
        return PollingLineSource(
            channel,
            replay_from_start=replay_from_start,
            poll_interval=config.poll_interval,
            chunk_size=config.read_chunk_size,
            encoding=config.encoding,
            logger=child_logger,
        )

    return factory


class TailRegistry:
    """Maps each channel to at most one live line source."""

    def __init__(
        self,
        channels: Iterable[str] = DEFAULT_CHANNELS,
        *,
        source_factory: Optional[SourceFactory] = None,
        logger: LoggerLike = None,
    ) -> None:
        self.logger = ensure_structured_logger(logger, fallback_name="TailRegistry")
        self.channels = tuple(channels)
        self._sources: Dict[str, Optional[LineSource]] = {channel: None for channel in self.channels}
        self._source_factory = source_factory or make_source_factory(CaptureConfig(), self.logger)
        self._closing: List[LineSource] = []

    async def rebind(
        self,
        paths_by_channel: Mapping[str, Union[str, Path]],
        *,
        replay_from_start: bool = False,
    ) -> Dict[str, LineSource]:
        """Replace the source of every listed channel with a fresh one bound to its path.

        Channels missing from ``paths_by_channel`` keep their current source.
        """
        for channel, path in paths_by_channel.items():
            if channel not in self._sources:
                self.logger.warning("ignoring unknown log channel '%s' (%s)", channel, path)
                continue

            self._dispose_channel(channel)
            source = self._source_factory(channel, replay_from_start=replay_from_start)
            self._sources[channel] = source
            self.logger.debug("binding %s log: %s", channel, path)
            await source.bind(path)

        return self.current_sources()

    def dispose_all(self) -> None:
        """Dispose every bound source. Safe to call when nothing is bound."""
        for channel in self.channels:
            self._dispose_channel(channel)

    def _dispose_channel(self, channel: str) -> None:
        source = self._sources.get(channel)
        if source is None:
            return
        self._sources[channel] = None
        source.dispose()
        self._closing.append(source)

    def current_sources(self) -> Dict[str, LineSource]:
        """Snapshot of the live channel -> source mapping."""
        return {channel: source for channel, source in self._sources.items() if source is not None}

    async def poll_all(self) -> int:
        """Deliver pending lines of every current source; returns the line count."""
        delivered = 0
        for source in self.current_sources().values():
            delivered += await source.poll()
        return delivered

    async def wait_closed(self) -> None:
        """Wait for the teardown of every source disposed so far."""
        closing, self._closing = self._closing, []
        if closing:
            await asyncio.gather(*(source.wait_closed() for source in closing), return_exceptions=True)


__all__ = ["DEFAULT_CHANNELS", "SourceFactory", "TailRegistry", "make_source_factory"]

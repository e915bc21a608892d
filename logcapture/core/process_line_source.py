"""Line source backed by a spawned ``tail -F`` process."""

from __future__ import annotations

import asyncio
import os
import shutil
from typing import List, Optional

from .asyncio_utils import create_logged_task
from .line_source import LineSource, SourceState, split_lines
from .logging_utils import LoggerLike

TAIL_EXECUTABLE = "tail"


class ProcessLineSource(LineSource):
    """Follows a file through ``tail -F``.

    The process keeps following the path across rotation on its own. It
    cannot replay arbitrary ranges, so subscriber catch up is unsupported;
    ``replay_from_start`` at bind time maps to ``tail -n +1``.
    """

    supports_replay = False

    def __init__(
        self,
        channel: str,
        *,
        replay_from_start: bool = False,
        stop_timeout: float = 2.0,
        chunk_size: int = 64 * 1024,
        encoding: str = "utf-8",
        executable: Optional[str] = None,
        logger: LoggerLike = None,
    ) -> None:
        super().__init__(channel, replay_from_start=replay_from_start, encoding=encoding, logger=logger)
        self.stop_timeout = stop_timeout
        self.chunk_size = chunk_size
        self.executable = executable or shutil.which(TAIL_EXECUTABLE) or TAIL_EXECUTABLE
        self.process: Optional[asyncio.subprocess.Process] = None
        self._stdout_task: Optional[asyncio.Task] = None
        self._stderr_task: Optional[asyncio.Task] = None
        self._terminate_task: Optional[asyncio.Task] = None

    def _command(self) -> List[str]:
        start = "+1" if self.replay_from_start else "0"
        return [self.executable, "-F", "-n", start, str(self.path)]

    async def _start_watch(self, stat: os.stat_result) -> bool:
        cmd = self._command()
        self.logger.debug("Command: %s", " ".join(cmd))
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            self._fail(exc)
            return False

        self.process = process
        if self._state is not SourceState.UNBOUND:
            # disposed while spawning
            self._stop_watch()
            return False

        self._state = SourceState.BOUND
        self.logger.debug("tail process started with PID: %d", process.pid)
        self._stdout_task = create_logged_task(
            self._stdout_reader(), logger=self.logger, context=f"tail-stdout:{self.channel}"
        )
        self._stderr_task = create_logged_task(
            self._stderr_reader(), logger=self.logger, context=f"tail-stderr:{self.channel}"
        )
        return True

    async def _stdout_reader(self) -> None:
        if not self.process or not self.process.stdout:
            return

        partial = b""
        try:
            while self._state is SourceState.BOUND:
                chunk = await self.process.stdout.read(self.chunk_size)
                if not chunk:
                    break
                lines, partial = split_lines(chunk, partial)
                if lines:
                    self._dispatch([self._decode(raw) for raw in lines])
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._fail(e)
            return

        if self._state is SourceState.BOUND:
            returncode = await self.process.wait()
            self._fail(RuntimeError(f"tail exited with code {returncode}"))

    async def _stderr_reader(self) -> None:
        if not self.process or not self.process.stderr:
            return

        while True:
            line = await self.process.stderr.readline()
            if not line:
                break
            text = line.decode(errors="replace").strip()
            if text:
                # tail reports rotation and missing files here
                self.logger.info("tail %s: %s", self.channel, text)

    def _stop_watch(self) -> None:
        for task in (self._stdout_task, self._stderr_task):
            if task is not None and not task.done():
                task.cancel()
        if self.process is not None and self._terminate_task is None:
            self._terminate_task = create_logged_task(
                self._terminate(), logger=self.logger, context=f"tail-terminate:{self.channel}"
            )

    async def _terminate(self) -> None:
        process = self.process
        if process is None or process.returncode is not None:
            return
        try:
            process.terminate()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(process.wait(), timeout=self.stop_timeout)
        except asyncio.TimeoutError:
            self.logger.warning("tail for %s did not exit in %.1fs, killing", self.channel, self.stop_timeout)
            try:
                process.kill()
            except ProcessLookupError:
                return
            await process.wait()

    async def wait_closed(self) -> None:
        tasks = [
            task for task in (self._stdout_task, self._stderr_task, self._terminate_task)
            if task is not None
        ]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)


__all__ = ["ProcessLineSource", "TAIL_EXECUTABLE"]

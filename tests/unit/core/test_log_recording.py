"""Unit tests for LogRecording."""

import os
from pathlib import Path

import pytest

from logcapture.core.artifact import Artifact
from logcapture.core.errors import StaleStateTransition
from logcapture.core.line_source import PollingLineSource
from logcapture.core.log_recording import (
    LogRecording,
    RecordingState,
    ResumeMark,
    make_staging_path,
)


async def bind_source(path, channel="stdout"):
    source = PollingLineSource(channel, poll_interval=60.0)
    await source.bind(path)
    return source


async def close(*sources):
    for source in sources:
        source.dispose()
    for source in sources:
        await source.wait_closed()


@pytest.fixture
def log_file(tmp_path):
    path = tmp_path / "app.out"
    path.write_text("")
    return path


@pytest.fixture
def recording(tmp_path):
    return LogRecording(staging_path=tmp_path / "staging" / "rec.log", name="test")


def read_lines(path: Path):
    return path.read_text().splitlines()


class TestLogRecordingStateMachine:
    """Test lifecycle transitions."""

    def test_initial_state(self, recording):
        assert recording.state is RecordingState.IDLE
        assert recording.is_recording is False
        assert isinstance(recording, Artifact)

    @pytest.mark.asyncio
    async def test_stop_before_start_raises(self, recording):
        with pytest.raises(StaleStateTransition) as exc_info:
            await recording.stop()

        assert exc_info.value.operation == "stop"
        assert exc_info.value.state == "idle"

    @pytest.mark.asyncio
    async def test_start_twice_raises(self, recording):
        await recording.start({})

        with pytest.raises(StaleStateTransition):
            await recording.start({})

        await recording.stop()

    @pytest.mark.asyncio
    async def test_second_stop_raises(self, recording):
        await recording.start({})
        await recording.stop()

        with pytest.raises(StaleStateTransition):
            await recording.stop()

    @pytest.mark.asyncio
    async def test_save_before_stop_raises(self, recording, tmp_path):
        await recording.start({})

        with pytest.raises(StaleStateTransition):
            await recording.save(tmp_path / "out.log")

        await recording.stop()

    @pytest.mark.asyncio
    async def test_save_after_discard_raises(self, recording, tmp_path):
        await recording.start({})
        await recording.stop()
        await recording.discard()

        with pytest.raises(StaleStateTransition):
            await recording.save(tmp_path / "out.log")

    @pytest.mark.asyncio
    async def test_resume_requires_suspended(self, recording):
        with pytest.raises(StaleStateTransition):
            await recording.resume({})

    @pytest.mark.asyncio
    async def test_suspend_requires_recording(self, recording):
        with pytest.raises(StaleStateTransition):
            await recording.suspend()

    @pytest.mark.asyncio
    async def test_discard_from_idle(self, recording):
        await recording.discard()

        assert recording.state is RecordingState.DISCARDED
        assert not recording.staging_path.exists()


class TestLogRecordingCapture:
    """Test which lines end up in the recording."""

    @pytest.mark.asyncio
    async def test_only_lines_inside_window(self, recording, log_file, append_line, tmp_path):
        source = await bind_source(log_file)
        append_line(log_file, "before")

        await recording.start({"stdout": source})
        append_line(log_file, "during")
        await recording.stop()
        append_line(log_file, "after")
        await source.poll()

        assert read_lines(recording.staging_path) == ["stdout: during"]
        assert recording.lines_written == 1

        destination = tmp_path / "artifacts" / "nested" / "test.log"
        assert await recording.save(destination) is True
        assert recording.state is RecordingState.SAVED
        assert recording.artifact_path == destination
        assert read_lines(destination) == ["stdout: during"]
        assert not recording.staging_path.exists()
        await close(source)

    @pytest.mark.asyncio
    async def test_replay_from_start_includes_existing_lines_once(self, tmp_path, log_file, append_line):
        append_line(log_file, "early")
        source = await bind_source(log_file)
        recording = LogRecording(staging_path=tmp_path / "rec.log", replay_from_start=True)

        await recording.start({"stdout": source})
        append_line(log_file, "during")
        await recording.stop()

        assert read_lines(recording.staging_path) == ["stdout: early", "stdout: during"]
        await close(source)

    @pytest.mark.asyncio
    async def test_start_override_of_replay(self, recording, log_file, append_line):
        append_line(log_file, "early")
        source = await bind_source(log_file)

        await recording.start({"stdout": source}, replay_from_start=True)
        await recording.stop()

        assert read_lines(recording.staging_path) == ["stdout: early"]
        await close(source)

    @pytest.mark.asyncio
    async def test_channels_are_prefixed(self, recording, tmp_path, append_line):
        out = tmp_path / "app.out"
        err = tmp_path / "app.err"
        out.write_text("")
        err.write_text("")
        stdout = await bind_source(out, "stdout")
        stderr = await bind_source(err, "stderr")

        await recording.start({"stdout": stdout, "stderr": stderr})
        assert recording.subscribed_channels == ("stdout", "stderr")
        append_line(out, "hello")
        await stdout.poll()
        append_line(err, "oops")
        await recording.stop()

        assert read_lines(recording.staging_path) == ["stdout: hello", "stderr: oops"]
        assert recording.subscribed_channels == ()
        await close(stdout, stderr)

    @pytest.mark.asyncio
    async def test_sources_provider_is_used(self, tmp_path, log_file, append_line):
        source = await bind_source(log_file)
        recording = LogRecording(
            staging_path=tmp_path / "rec.log",
            sources_provider=lambda: {"stdout": source},
        )

        await recording.start()
        append_line(log_file, "provided")
        await recording.stop()

        assert read_lines(recording.staging_path) == ["stdout: provided"]
        await close(source)

    @pytest.mark.asyncio
    async def test_no_sources_records_empty_file(self, tmp_path, caplog):
        recording = LogRecording(staging_path=tmp_path / "rec.log")

        await recording.start()
        await recording.stop()

        assert "has no log sources" in caplog.text
        assert recording.staging_path.read_text() == ""

    @pytest.mark.asyncio
    async def test_line_after_stop_is_dropped(self, recording, log_file, caplog):
        source = await bind_source(log_file)
        await recording.start({"stdout": source})
        await recording.stop()

        recording._append_line("stdout", "late")

        assert recording.lines_dropped == 1
        assert "failed to add stdout line to log: late" in caplog.text
        assert read_lines(recording.staging_path) == []
        await close(source)

    @pytest.mark.asyncio
    async def test_disposed_source_during_recording(self, recording, log_file, append_line):
        source = await bind_source(log_file)
        await recording.start({"stdout": source})
        append_line(log_file, "kept")
        await source.poll()

        await close(source)
        append_line(log_file, "lost")
        await recording.stop()

        assert read_lines(recording.staging_path) == ["stdout: kept"]


class TestLogRecordingPersistence:
    """Test save and discard of the staging file."""

    @pytest.mark.asyncio
    async def test_discard_removes_staging_file(self, recording, log_file, append_line):
        source = await bind_source(log_file)
        await recording.start({"stdout": source})
        append_line(log_file, "line")
        await recording.stop()
        assert recording.staging_path.exists()

        await recording.discard()

        assert recording.state is RecordingState.DISCARDED
        assert not recording.staging_path.exists()
        await close(source)

    @pytest.mark.asyncio
    async def test_save_with_missing_staging_file(self, recording, tmp_path, caplog):
        await recording.start({})
        await recording.stop()
        os.remove(recording.staging_path)

        assert await recording.save(tmp_path / "out.log") is False
        assert recording.state is RecordingState.SAVED
        assert "did not find temporary log file" in caplog.text
        assert not (tmp_path / "out.log").exists()

    @pytest.mark.asyncio
    async def test_save_with_failed_move(self, recording, tmp_path, caplog):
        await recording.start({})
        await recording.stop()
        blocker = tmp_path / "blocker"
        blocker.write_text("")

        assert await recording.save(blocker / "out.log") is False
        assert recording.state is RecordingState.SAVED
        assert "could not save" in caplog.text
        assert recording.staging_path.exists()


class TestLogRecordingSuspendResume:
    """Test windows spanning a relaunch."""

    @pytest.mark.asyncio
    async def test_same_file_resumes_without_duplicates(self, recording, log_file, append_line):
        first = await bind_source(log_file)
        await recording.start({"stdout": first})
        append_line(log_file, "one")

        await recording.suspend()
        assert recording.state is RecordingState.SUSPENDED
        await close(first)
        append_line(log_file, "two")

        second = await bind_source(log_file)
        await recording.resume({"stdout": second})
        append_line(log_file, "three")
        await recording.stop()

        assert read_lines(recording.staging_path) == ["stdout: one", "stdout: two", "stdout: three"]
        await close(second)

    @pytest.mark.asyncio
    async def test_replaced_file_replays_from_start(self, recording, log_file, append_line):
        first = await bind_source(log_file)
        await recording.start({"stdout": first})
        append_line(log_file, "old file")
        await recording.suspend()
        await close(first)

        log_file.unlink()
        append_line(log_file, "new file")
        second = await bind_source(log_file)
        await recording.resume({"stdout": second})
        await recording.stop()

        assert read_lines(recording.staging_path) == ["stdout: old file", "stdout: new file"]
        await close(second)

    @pytest.mark.asyncio
    async def test_resume_without_replay_is_live_only(self, recording, log_file, append_line):
        first = await bind_source(log_file)
        await recording.start({"stdout": first})
        await recording.suspend()
        await close(first)
        append_line(log_file, "missed")

        second = await bind_source(log_file)
        await recording.resume({"stdout": second}, replay=False)
        append_line(log_file, "live")
        await recording.stop()

        assert read_lines(recording.staging_path) == ["stdout: live"]
        await close(second)

    @pytest.mark.asyncio
    async def test_stop_while_suspended(self, recording, log_file, append_line, tmp_path):
        source = await bind_source(log_file)
        await recording.start({"stdout": source})
        append_line(log_file, "kept")
        await recording.suspend()

        await recording.stop()

        assert recording.state is RecordingState.STOPPED
        assert await recording.save(tmp_path / "out.log") is True
        assert read_lines(tmp_path / "out.log") == ["stdout: kept"]
        await close(source)

    @pytest.mark.asyncio
    async def test_file_rewritten_in_place_with_same_banner(self, recording, log_file, append_line):
        banner = "B" * 300
        first = await bind_source(log_file)
        await recording.start({"stdout": first})
        append_line(log_file, banner, "old-line-one")
        await recording.suspend()
        await close(first)

        with open(log_file, "w") as handle:
            handle.write(f"{banner}\nnew1\nnew-second-line\n")
        second = await bind_source(log_file)
        await recording.resume({"stdout": second})
        await recording.stop()

        assert read_lines(recording.staging_path) == [
            f"stdout: {banner}",
            "stdout: old-line-one",
            f"stdout: {banner}",
            "stdout: new1",
            "stdout: new-second-line",
        ]
        await close(second)


class TestResumeMark:
    """Test same-file detection."""

    @pytest.mark.asyncio
    async def test_matches_same_file(self, log_file, append_line):
        append_line(log_file, "content")
        source = await bind_source(log_file)
        mark = ResumeMark(log_file, source.identity, 8, b"content\n")

        assert await mark.matches(source) is True
        await close(source)

    @pytest.mark.asyncio
    async def test_rejects_changed_bytes_before_position(self, log_file, append_line):
        append_line(log_file, "content")
        source = await bind_source(log_file)
        mark = ResumeMark(log_file, source.identity, 8, b"previous")

        assert await mark.matches(source) is False
        await close(source)

    @pytest.mark.asyncio
    async def test_rejects_file_shorter_than_position(self, log_file, append_line):
        append_line(log_file, "content")
        source = await bind_source(log_file)
        mark = ResumeMark(log_file, source.identity, 20, b"content\nmore-content")

        assert await mark.matches(source) is False
        await close(source)

    @pytest.mark.asyncio
    async def test_rejects_unknown_identity(self, log_file):
        source = await bind_source(log_file)

        assert await ResumeMark(log_file, None, 0).matches(source) is False
        await close(source)


class TestStagingPath:
    """Test staging path generation."""

    def test_unique_paths_in_directory(self, tmp_path):
        first = make_staging_path(tmp_path)
        second = make_staging_path(tmp_path)

        assert first != second
        assert first.parent == tmp_path
        assert first.name.startswith("logcapture-")
        assert first.suffix == ".log"

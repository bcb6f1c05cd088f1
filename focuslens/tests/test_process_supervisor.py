"""Tests for studio.process_supervisor — spawn, degrade-and-retry, quit / kill."""

import subprocess
from unittest.mock import patch

import pytest

from conftest import FakeProcess
from studio.capture_platform import MockCapture
from studio.errors import (
    StudioError,
    RECORDING_PROCESS_IO,
    RECORDING_START_FAIL,
    RECORDING_STOP_FAIL,
)
from studio.models import RecordingProfile
from studio.process_supervisor import (
    AUDIO_DEGRADE_MESSAGE,
    PAUSE_TOGGLE,
    QUIT,
    ProcessSupervisor,
)


@pytest.fixture
def supervisor() -> ProcessSupervisor:
    strategy = MockCapture("ffmpeg", allowed=True, host="linux")
    return ProcessSupervisor(strategy, early_exit_grace_ms=0, stop_poll_count=3, stop_poll_interval_ms=0)


class TestSpawn:
    def test_healthy_start(self, supervisor, tmp_path) -> None:
        proc = FakeProcess()
        out = str(tmp_path / "raw.mp4")
        with patch("studio.process_supervisor.subprocess.Popen", return_value=proc) as popen:
            result = supervisor.spawn(RecordingProfile(system_audio_enabled=False), out)
        assert result.process is proc
        assert result.command[0] == "ffmpeg"
        assert result.command[-1] == out
        kwargs = popen.call_args.kwargs
        assert kwargs["stdin"] == subprocess.PIPE

    def test_early_exit_without_audio_fails(self, supervisor, tmp_path) -> None:
        dead = FakeProcess(returncode=1)
        with patch("studio.process_supervisor.subprocess.Popen", return_value=dead):
            with pytest.raises(StudioError) as exc_info:
                supervisor.spawn(RecordingProfile(system_audio_enabled=False), str(tmp_path / "raw.mp4"))
        assert exc_info.value.code == RECORDING_START_FAIL
        assert dead.stdin.closed

    def test_early_exit_with_audio_retries_degraded(self, supervisor, tmp_path) -> None:
        dead, alive = FakeProcess(returncode=1), FakeProcess()
        with patch("studio.process_supervisor.subprocess.Popen", side_effect=[dead, alive]) as popen:
            result = supervisor.spawn(
                RecordingProfile(system_audio_enabled=True, microphone_device_id="USB Mic"),
                str(tmp_path / "raw.mp4"),
            )
        assert popen.call_count == 2
        assert result.process is alive
        assert result.degrade_message == AUDIO_DEGRADE_MESSAGE
        assert dead.stdin.closed
        assert not alive.stdin.closed

    def test_degraded_retry_only_once(self, supervisor, tmp_path) -> None:
        procs = [FakeProcess(returncode=1), FakeProcess(returncode=1)]
        with patch("studio.process_supervisor.subprocess.Popen", side_effect=procs) as popen:
            with pytest.raises(StudioError) as exc_info:
                supervisor.spawn(RecordingProfile(system_audio_enabled=True), str(tmp_path / "raw.mp4"))
        assert popen.call_count == 2
        assert exc_info.value.code == RECORDING_START_FAIL

    def test_spawn_os_error(self, supervisor, tmp_path) -> None:
        with patch("studio.process_supervisor.subprocess.Popen", side_effect=FileNotFoundError("ffmpeg")):
            with pytest.raises(StudioError) as exc_info:
                supervisor.spawn(RecordingProfile(), str(tmp_path / "raw.mp4"))
        assert exc_info.value.code == RECORDING_START_FAIL


class TestCommands:
    def test_send_writes_payload(self) -> None:
        proc = FakeProcess()
        ProcessSupervisor.send_command(proc, PAUSE_TOGGLE)
        assert proc.stdin.writes == [b"p\n"]

    def test_broken_pipe(self) -> None:
        with pytest.raises(StudioError) as exc_info:
            ProcessSupervisor.send_command(FakeProcess(broken_stdin=True), PAUSE_TOGGLE)
        assert exc_info.value.code == RECORDING_PROCESS_IO

    def test_no_stdin(self) -> None:
        proc = FakeProcess()
        proc.stdin = None
        with pytest.raises(StudioError) as exc_info:
            ProcessSupervisor.send_command(proc, PAUSE_TOGGLE)
        assert exc_info.value.code == RECORDING_PROCESS_IO

    def test_has_exited(self) -> None:
        assert not ProcessSupervisor.has_exited(FakeProcess())
        assert ProcessSupervisor.has_exited(FakeProcess(returncode=0))


class TestStop:
    def test_graceful_quit(self, supervisor) -> None:
        proc = FakeProcess()
        supervisor.stop(proc)
        assert proc.stdin.writes == [QUIT]
        assert proc.returncode == 0
        assert not proc.killed
        assert proc.stdin.closed

    def test_kill_after_polls(self, supervisor) -> None:
        proc = FakeProcess(quits=False)
        supervisor.stop(proc)
        assert proc.killed
        assert proc.stdin.closed

    def test_quit_undeliverable_still_kills(self, supervisor) -> None:
        proc = FakeProcess(quits=False, broken_stdin=True)
        supervisor.stop(proc)
        assert proc.killed

    def test_kill_failure(self, supervisor) -> None:
        proc = FakeProcess(quits=False)
        with patch.object(proc, "kill", side_effect=OSError("no such process")):
            with pytest.raises(StudioError) as exc_info:
                supervisor.stop(proc)
        assert exc_info.value.code == RECORDING_STOP_FAIL
        assert not proc.stdin.closed

"""Shared pytest fixtures for FocusLens tests."""

import os
from typing import List, Optional

import pytest
from PySide6.QtCore import QCoreApplication

from studio.config import StudioConfig
from studio.models import CursorSample, ProjectManifest, RecordingProfile
from studio.project_file import (
    cursor_track_path,
    raw_recording_path,
    save_manifest,
    write_cursor_track,
)


# ── Qt ──────────────────────────────────────────────────────────────

@pytest.fixture(scope="session")
def qapp() -> QCoreApplication:
    """One QCoreApplication for every test that builds a controller."""
    return QCoreApplication.instance() or QCoreApplication([])


# ── Fake encoder process ───────────────────────────────────────────

class FakeStdin:
    def __init__(self, broken: bool = False) -> None:
        self.writes: List[bytes] = []
        self.broken = broken
        self.closed = False

    def write(self, data: bytes) -> int:
        if self.broken:
            raise BrokenPipeError("pipe closed")
        self.writes.append(data)
        return len(data)

    def flush(self) -> None:
        if self.broken:
            raise BrokenPipeError("pipe closed")

    def close(self) -> None:
        self.closed = True


class FakeProcess:
    """Stands in for ``subprocess.Popen``.

    *returncode* None means "still running".  With *quits* the process
    exits as soon as it reads ``q``.
    """

    def __init__(self, returncode: Optional[int] = None, quits: bool = True,
                 broken_stdin: bool = False) -> None:
        self.returncode = returncode
        self.stdin = FakeStdin(broken=broken_stdin)
        self.quits = quits
        self.killed = False
        self.args: List[str] = []

    def poll(self) -> Optional[int]:
        if self.returncode is None and self.quits and b"q\n" in self.stdin.writes:
            self.returncode = 0
        return self.returncode

    def kill(self) -> None:
        self.killed = True
        self.returncode = -9

    def wait(self, timeout: Optional[float] = None) -> int:
        return self.returncode if self.returncode is not None else 0


@pytest.fixture
def fake_process() -> FakeProcess:
    return FakeProcess()


# ── Config / projects ──────────────────────────────────────────────

@pytest.fixture
def studio_config(tmp_path) -> StudioConfig:
    """Config rooted in tmp_path, with timings that never make tests wait."""
    return StudioConfig(
        project_root=str(tmp_path / "projects"),
        ffmpeg_path="ffmpeg",
        ffprobe_path="ffprobe",
        allow_mock_capture=True,
        status_tick_ms=60_000,
        cursor_tick_ms=60_000,
        early_exit_grace_ms=0,
        stop_poll_count=3,
        stop_poll_interval_ms=0,
        milestone_delay_ms=0,
    )


@pytest.fixture
def diagonal_track() -> List[CursorSample]:
    """Cursor sweeping from top-left to bottom-right over 3 s, then resting."""
    track = [
        CursorSample(t_ms=i * 100, x=100.0 + i * 60.0, y=100.0 + i * 30.0)
        for i in range(30)
    ]
    last = track[-1]
    track += [CursorSample(t_ms=3000 + i * 100, x=last.x, y=last.y) for i in range(20)]
    return track


@pytest.fixture
def ready_project(studio_config, diagonal_track) -> str:
    """A project with a manifest, a raw recording and a cursor track."""
    project_id = "proj-ready-001"
    root = studio_config.project_root
    manifest = ProjectManifest(recording=RecordingProfile())
    manifest.timeline.trim_end_ms = 4900
    manifest.artifacts.raw_recording_path = raw_recording_path(root, project_id)
    manifest.artifacts.cursor_track_path = cursor_track_path(root, project_id)
    save_manifest(root, project_id, manifest)
    with open(raw_recording_path(root, project_id), "wb") as f:
        f.write(b"\x00" * 4096)
    write_cursor_track(cursor_track_path(root, project_id), 4900, diagonal_track)
    return project_id


def write_raw(root: str, project_id: str, size: int) -> str:
    path = raw_recording_path(root, project_id)
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "wb") as f:
        f.write(b"\x00" * size)
    return path

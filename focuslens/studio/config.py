"""Runtime configuration — binary locations, timing and policy knobs.

Everything is read once from ``FOCUSLENS_*`` environment variables by
:meth:`StudioConfig.from_env`; defaults match the desktop build.
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional

from .utils import ffmpeg_exe, ffprobe_exe

logger = logging.getLogger(__name__)


# ── Timing constants ────────────────────────────────────────────────

STATUS_TICK_MS = 1000          # recording status ticker / process watchdog
CURSOR_TICK_MS = 120           # cursor sampler interval
EARLY_EXIT_GRACE_MS = 400      # how long a fresh encoder must survive
STOP_POLL_COUNT = 30           # polls after "q" before killing
STOP_POLL_INTERVAL_MS = 100
MIN_RECORDING_BYTES = 1024     # raw recordings at or below this are "missing"
MILESTONE_DELAY_MS = 200       # pause between the opening export milestones


def _env_int(name: str) -> Optional[int]:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r", name, raw)
        return None


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in ("1", "true", "yes", "on")


def default_project_root() -> str:
    """``~/.focuslens/projects`` unless overridden."""
    return os.path.join(os.path.expanduser("~"), ".focuslens", "projects")


@dataclass
class StudioConfig:
    """Knobs shared by the recording and export controllers.

    *max_export_retries* and *export_timeout_s* are ``None`` (unbounded)
    unless configured.
    """

    project_root: str
    ffmpeg_path: str = ""
    ffprobe_path: str = ""
    allow_mock_capture: bool = False
    max_export_retries: Optional[int] = None
    export_timeout_s: Optional[int] = None
    status_tick_ms: int = STATUS_TICK_MS
    cursor_tick_ms: int = CURSOR_TICK_MS
    early_exit_grace_ms: int = EARLY_EXIT_GRACE_MS
    stop_poll_count: int = STOP_POLL_COUNT
    stop_poll_interval_ms: int = STOP_POLL_INTERVAL_MS
    min_recording_bytes: int = MIN_RECORDING_BYTES
    milestone_delay_ms: int = MILESTONE_DELAY_MS

    @staticmethod
    def from_env() -> "StudioConfig":
        return StudioConfig(
            project_root=os.environ.get("FOCUSLENS_PROJECT_ROOT") or default_project_root(),
            ffmpeg_path=os.environ.get("FOCUSLENS_FFMPEG_PATH", ""),
            ffprobe_path=os.environ.get("FOCUSLENS_FFPROBE_PATH", ""),
            allow_mock_capture=_env_flag("FOCUSLENS_ALLOW_MOCK_CAPTURE"),
            max_export_retries=_env_int("FOCUSLENS_MAX_EXPORT_RETRIES"),
            export_timeout_s=_env_int("FOCUSLENS_EXPORT_TIMEOUT_S"),
        )

    def ffmpeg(self) -> str:
        return self.ffmpeg_path or ffmpeg_exe()

    def ffprobe(self) -> str:
        return self.ffprobe_path or ffprobe_exe()

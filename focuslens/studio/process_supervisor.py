"""Process supervisor — owns the lifecycle of a recording ffmpeg process.

* **spawn** starts the encoder with stdin piped and waits a short grace
  period; an encoder that is already gone by then counts as a failed
  start.  If system audio was requested, one degraded respawn without
  any audio device is attempted before giving up.
* **send_command** writes ffmpeg's interactive keys (``p`` toggles
  pause).
* **stop** asks politely with ``q``, polls, then kills; the stdin pipe
  of every finished encoder is closed.
"""

import logging
import subprocess
import time
from dataclasses import dataclass, replace
from typing import List, Optional

from .capture_platform import CaptureStrategy
from .config import EARLY_EXIT_GRACE_MS, STOP_POLL_COUNT, STOP_POLL_INTERVAL_MS
from .errors import (
    StudioError,
    RECORDING_START_FAIL,
    RECORDING_STOP_FAIL,
    RECORDING_PROCESS_IO,
)
from .models import RecordingProfile
from .utils import subprocess_kwargs

logger = logging.getLogger(__name__)


AUDIO_DEGRADE_MESSAGE = "system audio capture unavailable, recorded with a silent track"

PAUSE_TOGGLE = b"p\n"
QUIT = b"q\n"


@dataclass
class SpawnResult:
    process: subprocess.Popen
    command: List[str]
    degrade_message: Optional[str] = None


class ProcessSupervisor:
    """Spawns and tears down recording encoders built by a capture strategy."""

    def __init__(
        self,
        strategy: CaptureStrategy,
        early_exit_grace_ms: int = EARLY_EXIT_GRACE_MS,
        stop_poll_count: int = STOP_POLL_COUNT,
        stop_poll_interval_ms: int = STOP_POLL_INTERVAL_MS,
    ) -> None:
        self._strategy = strategy
        self._grace_s = early_exit_grace_ms / 1000.0
        self._poll_count = stop_poll_count
        self._poll_interval_s = stop_poll_interval_ms / 1000.0

    def _launch(self, cmd: List[str], what: str) -> subprocess.Popen:
        logger.info("Launching %s: %s", what, " ".join(cmd))
        try:
            return subprocess.Popen(
                cmd,
                stdin=subprocess.PIPE,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                **subprocess_kwargs(),
            )
        except OSError as exc:
            raise StudioError(
                RECORDING_START_FAIL,
                f"failed to start {what}: {exc}",
                "Check screen recording permission and the ffmpeg capture devices",
            ) from exc

    def _exited_too_early(self, proc: subprocess.Popen) -> bool:
        time.sleep(self._grace_s)
        if proc.poll() is None:
            return False
        self.close_stdin(proc)
        return True

    def spawn(self, profile: RecordingProfile, output_path: str) -> SpawnResult:
        cmd, degrade_message = self._strategy.build_command(profile, output_path)
        proc = self._launch(cmd, "recording process")
        if not self._exited_too_early(proc):
            return SpawnResult(proc, cmd, degrade_message)

        logger.warning("Recording process exited immediately (rc=%s)", proc.returncode)
        if not profile.system_audio_enabled:
            raise StudioError(
                RECORDING_START_FAIL,
                "recording process exited right after start",
                "Check recording permission, the display session and audio devices",
            )

        degraded = replace(profile, system_audio_enabled=False, microphone_device_id=None)
        cmd, _ = self._strategy.build_command(degraded, output_path)
        logger.warning("Retrying without system audio or microphone")
        proc = self._launch(cmd, "degraded recording process")
        if self._exited_too_early(proc):
            raise StudioError(
                RECORDING_START_FAIL,
                "recording process exited right after start",
                "Check recording permission, the display session and audio devices",
            )
        return SpawnResult(proc, cmd, AUDIO_DEGRADE_MESSAGE)

    @staticmethod
    def send_command(proc: subprocess.Popen, payload: bytes) -> None:
        """Write one interactive command to the encoder's stdin."""
        if proc.stdin is None:
            raise StudioError(RECORDING_PROCESS_IO, "recording process stdin not available")
        try:
            proc.stdin.write(payload)
            proc.stdin.flush()
        except (OSError, ValueError) as exc:
            raise StudioError(
                RECORDING_PROCESS_IO,
                f"failed to write command to ffmpeg stdin: {exc}",
            ) from exc

    @staticmethod
    def close_stdin(proc: subprocess.Popen) -> None:
        """Release the command pipe of a finished encoder."""
        try:
            if proc.stdin and not proc.stdin.closed:
                proc.stdin.close()
        except OSError as exc:
            logger.debug("Closing ffmpeg stdin failed: %s", exc)

    @staticmethod
    def has_exited(proc: subprocess.Popen) -> bool:
        try:
            return proc.poll() is not None
        except OSError:
            return True

    def stop(self, proc: subprocess.Popen) -> None:
        """Quit gracefully; kill if still running after the poll window."""
        try:
            self.send_command(proc, QUIT)
        except StudioError as exc:
            logger.debug("Quit command not delivered: %s", exc.message)

        for _ in range(self._poll_count):
            if proc.poll() is not None:
                self.close_stdin(proc)
                return
            time.sleep(self._poll_interval_s)

        logger.warning("Recording process ignored quit, killing it")
        try:
            proc.kill()
            proc.wait(timeout=5)
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise StudioError(
                RECORDING_STOP_FAIL,
                f"failed to kill ffmpeg process: {exc}",
            ) from exc
        self.close_stdin(proc)

"""Shared utilities used by multiple modules."""

import logging
import os
import shutil
import subprocess
import sys
from dataclasses import dataclass
from typing import Dict, List, Optional

from .errors import StudioError, FFMPEG_NOT_FOUND, FFMPEG_EXEC_ERROR

logger = logging.getLogger(__name__)


def ffmpeg_exe() -> str:
    """Return the ffmpeg binary: ``FOCUSLENS_FFMPEG_PATH`` or the one
    bundled via imageio-ffmpeg, then whatever is on ``PATH``."""
    override = os.environ.get("FOCUSLENS_FFMPEG_PATH", "").strip()
    if override:
        return override
    import imageio_ffmpeg
    try:
        return imageio_ffmpeg.get_ffmpeg_exe()
    except RuntimeError as exc:
        logger.warning("No bundled ffmpeg (%s), falling back to PATH", exc)
        return shutil.which("ffmpeg") or "ffmpeg"


def ffprobe_exe() -> str:
    """Return the ffprobe binary (imageio-ffmpeg ships ffmpeg only)."""
    override = os.environ.get("FOCUSLENS_FFPROBE_PATH", "").strip()
    if override:
        return override
    return shutil.which("ffprobe") or "ffprobe"


def subprocess_kwargs() -> dict:
    """Extra kwargs to hide the console window on Windows."""
    kw: dict = {}
    if sys.platform == "win32":
        si = subprocess.STARTUPINFO()
        si.dwFlags |= subprocess.STARTF_USESHOWWINDOW
        kw["startupinfo"] = si
        kw["creationflags"] = subprocess.CREATE_NO_WINDOW
    return kw


def fmt_time(ms: float) -> str:
    """Format milliseconds as m:ss."""
    s = int(ms / 1000)
    m = s // 60
    return f"{m}:{s % 60:02d}"


# ── Running ffmpeg ──────────────────────────────────────────────────

@dataclass
class CommandOutput:
    returncode: int
    stdout: str
    stderr: str
    timed_out: bool = False

    @property
    def success(self) -> bool:
        return self.returncode == 0 and not self.timed_out


def ensure_ffmpeg_available(ffmpeg: Optional[str] = None) -> None:
    """Raise ``FFMPEG_NOT_FOUND`` unless ``ffmpeg -version`` runs cleanly."""
    exe = ffmpeg or ffmpeg_exe()
    try:
        result = subprocess.run(
            [exe, "-version"],
            stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL,
            timeout=10, **subprocess_kwargs(),
        )
    except (OSError, subprocess.TimeoutExpired) as exc:
        raise StudioError(
            FFMPEG_NOT_FOUND,
            f"failed to execute ffmpeg: {exc}",
            "Install ffmpeg and add it to PATH, or set FOCUSLENS_FFMPEG_PATH",
        ) from exc
    if result.returncode != 0:
        raise StudioError(
            FFMPEG_NOT_FOUND,
            "ffmpeg exists but returns non-zero on -version",
            "Make sure the ffmpeg binary runs on this machine",
        )


def run_ffmpeg(args: List[str], ffmpeg: Optional[str] = None,
               timeout: Optional[float] = None) -> CommandOutput:
    """Run ffmpeg to completion and capture both streams.

    A *timeout* kills the process; the result is then a failure with a
    note appended to stderr.
    """
    cmd = [ffmpeg or ffmpeg_exe()] + list(args)
    logger.info("Running: %s", " ".join(cmd))
    try:
        result = subprocess.run(
            cmd, capture_output=True, timeout=timeout, **subprocess_kwargs(),
        )
    except subprocess.TimeoutExpired as exc:
        stderr = (exc.stderr or b"").decode(errors="replace")
        logger.warning("ffmpeg timed out after %ss", timeout)
        return CommandOutput(
            returncode=-1,
            stdout=(exc.stdout or b"").decode(errors="replace"),
            stderr=f"{stderr}\nffmpeg timed out after {timeout}s",
            timed_out=True,
        )
    except OSError as exc:
        raise StudioError(
            FFMPEG_EXEC_ERROR,
            f"failed to run ffmpeg: {exc}",
            "Check the ffmpeg installation and the export settings",
        ) from exc
    return CommandOutput(
        returncode=result.returncode,
        stdout=result.stdout.decode(errors="replace"),
        stderr=result.stderr.decode(errors="replace"),
    )


def supports_input_format(format_name: str, ffmpeg: Optional[str] = None) -> bool:
    """True when ``ffmpeg -formats`` lists *format_name* as a demuxer."""
    try:
        result = subprocess.run(
            [ffmpeg or ffmpeg_exe(), "-hide_banner", "-formats"],
            capture_output=True, timeout=10, **subprocess_kwargs(),
        )
    except (OSError, subprocess.TimeoutExpired) as exc:
        logger.warning("Format probe failed: %s", exc)
        return False
    if result.returncode != 0:
        return False
    needle = format_name.lower()
    body = result.stdout.decode(errors="replace") + "\n" + result.stderr.decode(errors="replace")
    for line in body.splitlines():
        lowered = line.strip().lower()
        if needle in lowered and lowered.startswith("d"):
            return True
    return False


# ── Hardware-accelerated encoder support ────────────────────────────

SOFTWARE_CODEC = "libx264"

# Codec → display name
ENCODER_PROFILES: Dict[str, str] = {
    "h264_nvenc": "NVIDIA NVENC",
    "h264_videotoolbox": "Apple VideoToolbox",
    "libx264": "Software (x264)",
}


@dataclass
class HardwareEncoderAvailability:
    available: bool
    detail: str
    codec: str


def preferred_hw_codec(platform: Optional[str] = None) -> str:
    """Fixed per-platform hardware codec; ``libx264`` where none is known."""
    platform = platform or sys.platform
    if platform == "win32":
        return "h264_nvenc"
    if platform == "darwin":
        return "h264_videotoolbox"
    return SOFTWARE_CODEC


def encoder_display_name(codec: str) -> str:
    """Human-readable name for a codec."""
    return ENCODER_PROFILES.get(codec, codec)


def detect_hardware_encoder(ffmpeg: Optional[str] = None) -> HardwareEncoderAvailability:
    """Probe ``ffmpeg -encoders`` for the preferred hardware codec.

    Best-effort: a failing probe reports "not available" and the export
    still attempts the codec.
    """
    codec = preferred_hw_codec()
    try:
        result = subprocess.run(
            [ffmpeg or ffmpeg_exe(), "-hide_banner", "-encoders"],
            capture_output=True, timeout=10, **subprocess_kwargs(),
        )
        output = result.stdout.decode(errors="replace").lower()
        if result.returncode == 0 and codec.lower() in output:
            return HardwareEncoderAvailability(
                available=True,
                detail=f"detected hardware encoder: {codec}",
                codec=codec,
            )
    except (OSError, subprocess.TimeoutExpired) as exc:
        logger.warning("Encoder probe failed: %s", exc)

    if sys.platform == "win32":
        detail = "windows: hardware encoder unavailable, fallback to software"
    elif sys.platform == "darwin":
        detail = "macos: hardware encoder unavailable, fallback to software"
    else:
        detail = "no hardware encoder on this platform, using software encoding"
    return HardwareEncoderAvailability(available=False, detail=detail, codec=codec)

"""ffprobe wrappers: stream durations and input frame size."""

import json
import logging
import subprocess
from dataclasses import dataclass
from typing import Optional, Tuple

import cv2

from .errors import StudioError, FFPROBE_EXEC_ERROR, FFPROBE_PARSE_ERROR
from .utils import ffprobe_exe, subprocess_kwargs

logger = logging.getLogger(__name__)


@dataclass
class ProbeSummary:
    container_duration_ms: int
    video_duration_ms: Optional[int] = None
    audio_duration_ms: Optional[int] = None


def _parse_duration_ms(raw) -> Optional[int]:
    if raw is None:
        return None
    try:
        seconds = float(raw)
    except (TypeError, ValueError):
        return None
    return int(max(seconds * 1000.0, 0.0))


def parse_probe_output(stdout: str) -> ProbeSummary:
    """Build a :class:`ProbeSummary` from ffprobe's JSON output.

    The first video and first audio stream count; missing durations stay
    ``None`` (container duration defaults to 0).
    """
    try:
        parsed = json.loads(stdout)
    except ValueError as exc:
        raise StudioError(FFPROBE_PARSE_ERROR, f"failed to parse ffprobe output: {exc}") from exc
    if not isinstance(parsed, dict):
        raise StudioError(FFPROBE_PARSE_ERROR, "ffprobe output is not an object")

    streams = parsed.get("streams") or []
    video = next((s for s in streams if s.get("codec_type") == "video"), None)
    audio = next((s for s in streams if s.get("codec_type") == "audio"), None)
    container = _parse_duration_ms((parsed.get("format") or {}).get("duration"))
    return ProbeSummary(
        container_duration_ms=container or 0,
        video_duration_ms=_parse_duration_ms(video.get("duration")) if video else None,
        audio_duration_ms=_parse_duration_ms(audio.get("duration")) if audio else None,
    )


def probe_media(path: str, ffprobe: Optional[str] = None) -> ProbeSummary:
    cmd = [
        ffprobe or ffprobe_exe(),
        "-v", "error",
        "-show_entries", "stream=codec_type,duration:format=duration",
        "-of", "json",
        path,
    ]
    try:
        result = subprocess.run(cmd, capture_output=True, timeout=30, **subprocess_kwargs())
    except (OSError, subprocess.TimeoutExpired) as exc:
        raise StudioError(
            FFPROBE_EXEC_ERROR,
            f"failed to run ffprobe: {exc}",
            "Install ffprobe and add it to PATH, or set FOCUSLENS_FFPROBE_PATH",
        ) from exc
    if result.returncode != 0:
        raise StudioError(
            FFPROBE_EXEC_ERROR,
            result.stderr.decode(errors="replace").strip() or "ffprobe failed",
            "Check that the media file is complete",
        )
    return parse_probe_output(result.stdout.decode(errors="replace"))


def calc_av_offset_ms(video_duration_ms: Optional[int], audio_duration_ms: Optional[int]) -> int:
    """Video minus audio duration; 0 when either is unknown."""
    if video_duration_ms is None or audio_duration_ms is None:
        return 0
    return int(video_duration_ms) - int(audio_duration_ms)


def probe_input_dimensions(path: str, ffprobe: Optional[str] = None) -> Optional[Tuple[int, int]]:
    """Frame size of the first video stream, or None.

    ffprobe first; OpenCV's reader answers when ffprobe is missing.
    """
    cmd = [
        ffprobe or ffprobe_exe(),
        "-v", "error",
        "-select_streams", "v:0",
        "-show_entries", "stream=width,height",
        "-of", "json",
        path,
    ]
    try:
        result = subprocess.run(cmd, capture_output=True, timeout=30, **subprocess_kwargs())
        if result.returncode == 0:
            streams = json.loads(result.stdout.decode(errors="replace")).get("streams") or []
            if streams:
                width = int(streams[0].get("width") or 0)
                height = int(streams[0].get("height") or 0)
                if width > 0 and height > 0:
                    return width, height
    except (OSError, subprocess.TimeoutExpired, ValueError) as exc:
        logger.warning("ffprobe size probe failed for %s: %s", path, exc)

    cap = cv2.VideoCapture(path)
    try:
        if not cap.isOpened():
            return None
        width = int(cap.get(cv2.CAP_PROP_FRAME_WIDTH))
        height = int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
    finally:
        cap.release()
    if width <= 0 or height <= 0:
        return None
    return width, height

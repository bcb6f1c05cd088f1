"""Per-platform capture strategies — the ffmpeg input side of a recording.

Windows grabs the desktop with ``gdigrab`` and mixes DirectShow
microphone / WASAPI loopback audio; macOS uses ``avfoundation``.  Any
other platform only has the ``lavfi`` test-pattern source, which is
usable when mock capture is explicitly allowed.

A strategy is chosen once by :func:`select_capture_strategy`.
"""

import logging
import sys
from dataclasses import dataclass
from typing import List, Optional, Tuple

import mss
from mss.exception import ScreenShotError

from .models import RecordingProfile
from .utils import supports_input_format

logger = logging.getLogger(__name__)


SILENT_AUDIO = "anullsrc=channel_layout=stereo:sample_rate=48000"

_RESOLUTION_SIZES = {
    "1080p": "1920x1080",
    "720p": "1280x720",
}


@dataclass
class PlatformCapability:
    platform: str
    supports_screen_capture: bool
    supports_window_capture: bool
    supports_microphone: bool
    supports_system_audio: bool
    system_audio_degrade_message: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "platform": self.platform,
            "supportsScreenCapture": self.supports_screen_capture,
            "supportsWindowCapture": self.supports_window_capture,
            "supportsMicrophone": self.supports_microphone,
            "supportsSystemAudio": self.supports_system_audio,
            "systemAudioDegradeMessage": self.system_audio_degrade_message,
        }


def resolution_size(resolution: str) -> str:
    return _RESOLUTION_SIZES.get(resolution, "1920x1080")


def primary_monitor_size() -> Optional[Tuple[int, int]]:
    """Size of the primary display in physical pixels, or None when headless."""
    try:
        with mss.mss() as sct:
            if len(sct.monitors) < 2:
                return None
            mon = sct.monitors[1]
            return mon["width"], mon["height"]
    except ScreenShotError as exc:
        logger.debug("No display available: %s", exc)
        return None


def _audio_tail() -> List[str]:
    return ["-c:a", "aac", "-b:a", "128k"]


class CaptureStrategy:
    """Builds the recording command for one platform."""

    platform = "unsupported"

    def __init__(self, ffmpeg: str) -> None:
        self._ffmpeg = ffmpeg

    def capability(self) -> PlatformCapability:
        raise NotImplementedError

    def input_args(self, profile: RecordingProfile) -> Tuple[List[str], Optional[str]]:
        """Capture inputs, mapping and audio codec; plus a degrade message."""
        raise NotImplementedError

    def source_label(self, profile: RecordingProfile) -> str:
        if profile.capture_mode == "window":
            return f"Window: {profile.window_target}" if profile.window_target else "Window"
        size = primary_monitor_size()
        return f"Fullscreen ({size[0]}×{size[1]})" if size else "Fullscreen"

    def build_command(self, profile: RecordingProfile, output_path: str) -> Tuple[List[str], Optional[str]]:
        """Full argv for a recording into *output_path*."""
        inputs, degrade_message = self.input_args(profile)
        cmd = [self._ffmpeg, "-y", "-hide_banner", "-loglevel", "warning"]
        cmd += inputs
        cmd += [
            "-pix_fmt", "yuv420p",
            "-c:v", "libx264",
            "-preset", "ultrafast",
            "-movflags", "+faststart",
            "-r", str(profile.frame_rate),
            output_path,
        ]
        return cmd, degrade_message


class WindowsCapture(CaptureStrategy):
    platform = "windows"

    def __init__(self, ffmpeg: str) -> None:
        super().__init__(ffmpeg)
        self._wasapi: Optional[bool] = None

    def has_wasapi(self) -> bool:
        if self._wasapi is None:
            self._wasapi = supports_input_format("wasapi", self._ffmpeg)
        return self._wasapi

    def capability(self) -> PlatformCapability:
        wasapi = self.has_wasapi()
        return PlatformCapability(
            platform=self.platform,
            supports_screen_capture=True,
            supports_window_capture=True,
            supports_microphone=True,
            supports_system_audio=wasapi,
            system_audio_degrade_message=(
                None if wasapi else "this ffmpeg build has no WASAPI support, system audio is turned off"
            ),
        )

    def input_args(self, profile: RecordingProfile) -> Tuple[List[str], Optional[str]]:
        args = ["-f", "gdigrab", "-framerate", str(profile.frame_rate)]
        if profile.capture_mode == "window" and profile.window_target:
            args += ["-i", f"title={profile.window_target}"]
        else:
            args += ["-i", "desktop"]

        audio_inputs = 0
        degrade_message = None
        mic = (profile.microphone_device_id or "").strip()
        if mic and mic != "default":
            args += ["-f", "dshow", "-i", f"audio={mic}"]
            audio_inputs += 1

        if profile.system_audio_enabled:
            if self.has_wasapi():
                args += ["-f", "wasapi", "-i", "default"]
                audio_inputs += 1
            else:
                degrade_message = "this ffmpeg build has no WASAPI support, system audio is turned off"

        if audio_inputs == 0:
            args += ["-f", "lavfi", "-i", SILENT_AUDIO]
            audio_inputs = 1

        if audio_inputs >= 2:
            args += [
                "-filter_complex", "[1:a][2:a]amix=inputs=2:duration=longest[aout]",
                "-map", "0:v:0", "-map", "[aout]",
            ]
        else:
            args += ["-map", "0:v:0", "-map", "1:a:0"]
        return args + _audio_tail(), degrade_message


class MacCapture(CaptureStrategy):
    platform = "macos"

    def capability(self) -> PlatformCapability:
        return PlatformCapability(
            platform=self.platform,
            supports_screen_capture=True,
            supports_window_capture=True,
            supports_microphone=True,
            supports_system_audio=False,
            system_audio_degrade_message="system audio is not available here, recording microphone only",
        )

    def input_args(self, profile: RecordingProfile) -> Tuple[List[str], Optional[str]]:
        args = [
            "-f", "avfoundation",
            "-framerate", str(profile.frame_rate),
            "-video_size", resolution_size(profile.resolution),
            "-i", "1:none",
            "-f", "lavfi", "-i", SILENT_AUDIO,
            "-map", "0:v:0", "-map", "1:a:0",
        ]
        degrade_message = None
        if profile.system_audio_enabled:
            degrade_message = "system audio is not available here, recording microphone only"
        return args + _audio_tail(), degrade_message


class MockCapture(CaptureStrategy):
    """``testsrc2`` pattern with a silent track; for CI and unsupported hosts."""

    def __init__(self, ffmpeg: str, allowed: bool = False, host: str = "unsupported") -> None:
        super().__init__(ffmpeg)
        self._allowed = allowed
        self.platform = host

    def capability(self) -> PlatformCapability:
        return PlatformCapability(
            platform=self.platform,
            supports_screen_capture=self._allowed,
            supports_window_capture=False,
            supports_microphone=False,
            supports_system_audio=False,
            system_audio_degrade_message="this platform is not supported, system audio is unavailable",
        )

    def input_args(self, profile: RecordingProfile) -> Tuple[List[str], Optional[str]]:
        size = resolution_size(profile.resolution)
        args = [
            "-f", "lavfi", "-i", f"testsrc2=size={size}:rate={profile.frame_rate}",
            "-f", "lavfi", "-i", SILENT_AUDIO,
            "-map", "0:v:0", "-map", "1:a:0",
        ]
        return args + _audio_tail(), "this platform is not supported, recording a simulated source"

    def source_label(self, profile: RecordingProfile) -> str:
        return f"Test pattern ({resolution_size(profile.resolution)})"


def select_capture_strategy(ffmpeg: str, allow_mock: bool = False,
                            platform: Optional[str] = None) -> CaptureStrategy:
    platform = platform or sys.platform
    if platform == "win32":
        strategy: CaptureStrategy = WindowsCapture(ffmpeg)
    elif platform == "darwin":
        strategy = MacCapture(ffmpeg)
    else:
        strategy = MockCapture(ffmpeg, allowed=allow_mock, host=platform)
    logger.info("Capture strategy: %s (%s)", type(strategy).__name__, strategy.platform)
    return strategy

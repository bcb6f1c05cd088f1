"""Tests for studio.capture_platform — per-platform ffmpeg capture commands."""

from unittest.mock import patch

import pytest

from studio.capture_platform import (
    SILENT_AUDIO,
    MacCapture,
    MockCapture,
    WindowsCapture,
    primary_monitor_size,
    resolution_size,
    select_capture_strategy,
)
from studio.models import RecordingProfile


def _windows(wasapi: bool) -> WindowsCapture:
    strategy = WindowsCapture("ffmpeg")
    strategy._wasapi = wasapi
    return strategy


class TestWindowsCapture:
    def test_fullscreen_silent_track(self) -> None:
        args, degrade = _windows(True).input_args(RecordingProfile(system_audio_enabled=False))
        assert args[:6] == ["-f", "gdigrab", "-framerate", "30", "-i", "desktop"]
        assert SILENT_AUDIO in args
        assert ["-map", "0:v:0", "-map", "1:a:0"] == args[args.index("-map"):args.index("-map") + 4]
        assert degrade is None

    def test_window_target(self) -> None:
        args, _ = _windows(True).input_args(
            RecordingProfile(capture_mode="window", window_target="Notepad", system_audio_enabled=False)
        )
        assert "title=Notepad" in args

    def test_mic_and_system_audio_mixed(self) -> None:
        args, degrade = _windows(True).input_args(
            RecordingProfile(microphone_device_id="USB Mic", system_audio_enabled=True)
        )
        assert "audio=USB Mic" in args
        assert "wasapi" in args
        assert any("amix=inputs=2" in a for a in args)
        assert "[aout]" in args
        assert degrade is None

    def test_default_mic_is_skipped(self) -> None:
        args, _ = _windows(True).input_args(
            RecordingProfile(microphone_device_id="default", system_audio_enabled=False)
        )
        assert "dshow" not in args

    def test_no_wasapi_degrades(self) -> None:
        strategy = _windows(False)
        args, degrade = strategy.input_args(RecordingProfile(system_audio_enabled=True))
        assert "wasapi" not in args
        assert SILENT_AUDIO in args
        assert degrade
        assert not strategy.capability().supports_system_audio

    def test_wasapi_probe_cached(self) -> None:
        strategy = WindowsCapture("ffmpeg")
        with patch("studio.capture_platform.supports_input_format", return_value=True) as probe:
            assert strategy.has_wasapi()
            assert strategy.has_wasapi()
        probe.assert_called_once_with("wasapi", "ffmpeg")

    def test_build_command_tail(self, tmp_path) -> None:
        out = str(tmp_path / "raw.mp4")
        cmd, _ = _windows(True).build_command(RecordingProfile(frame_rate=60, system_audio_enabled=False), out)
        assert cmd[0] == "ffmpeg"
        assert cmd[-3:] == ["-r", "60", out]
        assert "libx264" in cmd
        assert "+faststart" in cmd


class TestMacCapture:
    def test_avfoundation_input(self) -> None:
        args, degrade = MacCapture("ffmpeg").input_args(RecordingProfile(resolution="720p", system_audio_enabled=False))
        assert args[:2] == ["-f", "avfoundation"]
        assert "1280x720" in args
        assert "1:none" in args
        assert degrade is None

    def test_system_audio_never_supported(self) -> None:
        strategy = MacCapture("ffmpeg")
        _, degrade = strategy.input_args(RecordingProfile(system_audio_enabled=True))
        assert degrade
        assert not strategy.capability().supports_system_audio


class TestMockCapture:
    def test_capability_follows_flag(self) -> None:
        assert not MockCapture("ffmpeg").capability().supports_screen_capture
        assert MockCapture("ffmpeg", allowed=True).capability().supports_screen_capture

    def test_test_pattern(self) -> None:
        args, degrade = MockCapture("ffmpeg", allowed=True).input_args(RecordingProfile(frame_rate=24))
        assert "testsrc2=size=1920x1080:rate=24" in args
        assert degrade

    def test_source_label(self) -> None:
        assert MockCapture("ffmpeg").source_label(RecordingProfile()) == "Test pattern (1920x1080)"


class TestSelection:
    @pytest.mark.parametrize("platform,cls", [
        ("win32", WindowsCapture),
        ("darwin", MacCapture),
        ("linux", MockCapture),
    ])
    def test_select(self, platform, cls) -> None:
        assert isinstance(select_capture_strategy("ffmpeg", platform=platform), cls)

    def test_mock_host_name(self) -> None:
        strategy = select_capture_strategy("ffmpeg", allow_mock=True, platform="linux")
        cap = strategy.capability()
        assert cap.platform == "linux"
        assert cap.supports_screen_capture
        assert cap.to_dict()["supportsScreenCapture"] is True


class TestHelpers:
    def test_resolution_size(self) -> None:
        assert resolution_size("720p") == "1280x720"
        assert resolution_size("8k") == "1920x1080"

    def test_window_label(self) -> None:
        label = MacCapture("ffmpeg").source_label(RecordingProfile(capture_mode="window", window_target="Slides"))
        assert label == "Window: Slides"

    def test_monitor_size(self) -> None:
        class _Grabber:
            monitors = [{"width": 3840, "height": 1080}, {"width": 1920, "height": 1080}]

            def __enter__(self):
                return self

            def __exit__(self, *exc):
                return False

        with patch("studio.capture_platform.mss.mss", return_value=_Grabber()):
            assert primary_monitor_size() == (1920, 1080)

"""Core data models for FocusLens.

Defines the dataclasses shared by the recording and export pipelines:
cursor samples, camera-motion / recording / export profiles, timeline
settings, quality metrics, the project manifest, and the status events
published to the frontend.  Persisted models support JSON serialization
via ``to_dict()`` / ``from_dict()`` with camelCase keys.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

from .errors import StudioError, INVALID_CAMERA_MOTION
from .version import __version__


INTENSITIES = ("low", "medium", "high")
CAPTURE_MODES = ("fullscreen", "window")
RESOLUTIONS = ("1080p", "720p")
ASPECT_RATIOS = ("16:9", "9:16", "1:1")

# Drop rate value meaning "the export log carried no drop counters"
DROP_RATE_UNAVAILABLE = -1.0

SCHEMA_VERSION = 1
APP_VERSION = __version__


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class CursorSample:
    """One raw pointer observation.

    ``t_ms`` is relative to the session start; coordinates are in
    physical screen pixels.
    """
    t_ms: int
    x: float
    y: float

    def to_dict(self) -> dict:
        return {"tMs": self.t_ms, "x": self.x, "y": self.y}

    @staticmethod
    def from_dict(d: dict) -> "CursorSample":
        return CursorSample(t_ms=int(d["tMs"]), x=float(d["x"]), y=float(d["y"]))


@dataclass
class MotionPoint:
    """Smoothed virtual-camera state; zoom stays within [1.0, 2.0]."""
    x: float
    y: float
    zoom: float = 1.0


@dataclass
class MotionProfile:
    """User-tunable camera motion settings.

    *intensity* picks a base responsiveness preset; *smoothing* blends the
    user's own preference into it.
    """

    enabled: bool = True
    intensity: str = "medium"
    smoothing: float = 0.68
    max_zoom: float = 1.35
    idle_threshold_ms: int = 500

    def validate(self) -> None:
        """Raise ``INVALID_CAMERA_MOTION`` for out-of-range values."""
        problems = []
        if self.intensity not in INTENSITIES:
            problems.append(f"intensity must be one of {', '.join(INTENSITIES)}")
        if not 0.0 <= self.smoothing <= 1.0:
            problems.append("smoothing must be within [0, 1]")
        if not 1.0 <= self.max_zoom <= 2.0:
            problems.append("maxZoom must be within [1, 2]")
        if not 120 <= self.idle_threshold_ms <= 900:
            problems.append("idleThresholdMs must be within [120, 900]")
        if problems:
            raise StudioError(
                INVALID_CAMERA_MOTION,
                "; ".join(problems),
                "Reset camera motion settings to their defaults",
            )

    def to_dict(self) -> dict:
        return {
            "enabled": self.enabled,
            "intensity": self.intensity,
            "smoothing": self.smoothing,
            "maxZoom": self.max_zoom,
            "idleThresholdMs": self.idle_threshold_ms,
        }

    @staticmethod
    def from_dict(d: dict) -> "MotionProfile":
        default = MotionProfile()
        return MotionProfile(
            enabled=bool(d.get("enabled", default.enabled)),
            intensity=d.get("intensity", default.intensity),
            smoothing=float(d.get("smoothing", default.smoothing)),
            max_zoom=float(d.get("maxZoom", default.max_zoom)),
            idle_threshold_ms=int(d.get("idleThresholdMs", default.idle_threshold_ms)),
        )


@dataclass
class RecordingProfile:
    """What to capture and how."""

    capture_mode: str = "fullscreen"  # "fullscreen" | "window"
    window_target: Optional[str] = None
    frame_rate: int = 30
    resolution: str = "1080p"
    microphone_device_id: Optional[str] = None
    system_audio_enabled: bool = True

    def to_dict(self) -> dict:
        return {
            "captureMode": self.capture_mode,
            "windowTarget": self.window_target,
            "frameRate": self.frame_rate,
            "resolution": self.resolution,
            "microphoneDeviceId": self.microphone_device_id,
            "systemAudioEnabled": self.system_audio_enabled,
        }

    @staticmethod
    def from_dict(d: dict) -> "RecordingProfile":
        return RecordingProfile(
            capture_mode=d.get("captureMode", "fullscreen"),
            window_target=d.get("windowTarget"),
            frame_rate=int(d.get("frameRate", 30)),
            resolution=d.get("resolution", "1080p"),
            microphone_device_id=d.get("microphoneDeviceId"),
            system_audio_enabled=bool(d.get("systemAudioEnabled", True)),
        )


@dataclass
class ExportProfile:
    """Delivery settings — always H.264/AAC in an MP4 container."""

    format: str = "mp4"
    resolution: str = "1080p"
    bitrate_mbps: int = 8
    fps: int = 30
    video_codec: str = "h264"
    audio_codec: str = "aac"

    def to_dict(self) -> dict:
        return {
            "format": self.format,
            "resolution": self.resolution,
            "bitrateMbps": self.bitrate_mbps,
            "fps": self.fps,
            "videoCodec": self.video_codec,
            "audioCodec": self.audio_codec,
        }

    @staticmethod
    def from_dict(d: dict) -> "ExportProfile":
        return ExportProfile(
            format=d.get("format", "mp4"),
            resolution=d.get("resolution", "1080p"),
            bitrate_mbps=int(d.get("bitrateMbps", 8)),
            fps=int(d.get("fps", 30)),
            video_codec=d.get("videoCodec", "h264"),
            audio_codec=d.get("audioCodec", "aac"),
        )


@dataclass
class TimelineConfig:
    trim_start_ms: int = 0
    trim_end_ms: int = 0  # 0 = until the end of the recording
    aspect_ratio: str = "16:9"
    cursor_highlight_enabled: bool = True

    def to_dict(self) -> dict:
        return {
            "trimStartMs": self.trim_start_ms,
            "trimEndMs": self.trim_end_ms,
            "aspectRatio": self.aspect_ratio,
            "cursorHighlightEnabled": self.cursor_highlight_enabled,
        }

    @staticmethod
    def from_dict(d: dict) -> "TimelineConfig":
        return TimelineConfig(
            trim_start_ms=int(d.get("trimStartMs", 0)),
            trim_end_ms=int(d.get("trimEndMs", 0)),
            aspect_ratio=d.get("aspectRatio", "16:9"),
            cursor_highlight_enabled=bool(d.get("cursorHighlightEnabled", True)),
        )


@dataclass
class QualityMetrics:
    """Derived after a successful export.

    Drop rates are percentages, or :data:`DROP_RATE_UNAVAILABLE` when the
    encoder log had no drop counters.
    """

    av_offset_ms: int = 0
    avg_drop_rate: float = 0.0
    peak_drop_rate: float = 0.0

    def to_dict(self) -> dict:
        return {
            "avOffsetMs": self.av_offset_ms,
            "avgDropRate": self.avg_drop_rate,
            "peakDropRate": self.peak_drop_rate,
        }

    @staticmethod
    def from_dict(d: dict) -> "QualityMetrics":
        return QualityMetrics(
            av_offset_ms=int(d.get("avOffsetMs", 0)),
            avg_drop_rate=float(d.get("avgDropRate", 0.0)),
            peak_drop_rate=float(d.get("peakDropRate", 0.0)),
        )


@dataclass
class ProjectArtifacts:
    raw_recording_path: Optional[str] = None
    cursor_track_path: Optional[str] = None
    last_export_path: Optional[str] = None
    export_log_path: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "rawRecordingPath": self.raw_recording_path,
            "cursorTrackPath": self.cursor_track_path,
            "lastExportPath": self.last_export_path,
            "exportLogPath": self.export_log_path,
        }

    @staticmethod
    def from_dict(d: dict) -> "ProjectArtifacts":
        return ProjectArtifacts(
            raw_recording_path=d.get("rawRecordingPath"),
            cursor_track_path=d.get("cursorTrackPath"),
            last_export_path=d.get("lastExportPath"),
            export_log_path=d.get("exportLogPath"),
        )


# Project status values stored in the manifest
STATUS_RECORDING = "recording"
STATUS_READY_TO_EDIT = "ready_to_edit"
STATUS_EXPORTING = "exporting"
STATUS_EXPORT_FAILED = "export_failed"
STATUS_EXPORT_SUCCEEDED = "export_succeeded"


@dataclass
class ProjectManifest:
    """Everything persisted for one project in ``project.json``."""

    recording: RecordingProfile = field(default_factory=RecordingProfile)
    camera_motion: MotionProfile = field(default_factory=MotionProfile)
    export: ExportProfile = field(default_factory=ExportProfile)
    timeline: TimelineConfig = field(default_factory=TimelineConfig)
    artifacts: ProjectArtifacts = field(default_factory=ProjectArtifacts)
    quality: QualityMetrics = field(default_factory=QualityMetrics)
    status: str = STATUS_READY_TO_EDIT
    title: Optional[str] = None
    last_error: Optional[StudioError] = None
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)
    schema_version: int = SCHEMA_VERSION
    app_version: str = APP_VERSION

    def touch(self) -> None:
        self.updated_at = utc_now()

    def to_json(self) -> str:
        data = {
            "schemaVersion": self.schema_version,
            "appVersion": self.app_version,
            "title": self.title,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "recording": self.recording.to_dict(),
            "cameraMotion": self.camera_motion.to_dict(),
            "export": self.export.to_dict(),
            "timeline": self.timeline.to_dict(),
            "artifacts": self.artifacts.to_dict(),
            "quality": self.quality.to_dict(),
            "status": self.status,
            "lastError": self.last_error.to_dict() if self.last_error else None,
        }
        return json.dumps(data, indent=2)

    @staticmethod
    def from_json(s: str) -> "ProjectManifest":
        """Reconstruct a manifest; missing sections fall back to defaults."""
        d = json.loads(s)
        last_error = d.get("lastError")
        return ProjectManifest(
            recording=RecordingProfile.from_dict(d.get("recording") or {}),
            camera_motion=MotionProfile.from_dict(d.get("cameraMotion") or {}),
            export=ExportProfile.from_dict(d.get("export") or {}),
            timeline=TimelineConfig.from_dict(d.get("timeline") or {}),
            artifacts=ProjectArtifacts.from_dict(d.get("artifacts") or {}),
            quality=QualityMetrics.from_dict(d.get("quality") or {}),
            status=d.get("status", STATUS_READY_TO_EDIT),
            title=d.get("title"),
            last_error=StudioError.from_dict(last_error) if last_error else None,
            created_at=d.get("createdAt") or utc_now(),
            updated_at=d.get("updatedAt") or utc_now(),
            schema_version=int(d.get("schemaVersion", SCHEMA_VERSION)),
            app_version=d.get("appVersion", APP_VERSION),
        )


# ── Events ──────────────────────────────────────────────────────────

@dataclass
class RecordingStatusEvent:
    """Published on every recording status change and ticker beat."""
    session_id: str
    status: str  # recording | paused | stopped | error
    duration_ms: int
    source_label: str
    detail: str
    degrade_message: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "sessionId": self.session_id,
            "status": self.status,
            "durationMs": self.duration_ms,
            "sourceLabel": self.source_label,
            "detail": self.detail,
            "degradeMessage": self.degrade_message,
        }


@dataclass
class ExportProgressEvent:
    """Coarse export milestone.  ``progress`` is 0–100."""
    task_id: str
    status: str  # queued | running | fallback | success | failed
    progress: int
    detail: str
    error: Optional[StudioError] = None

    def to_dict(self) -> dict:
        d = {
            "taskId": self.task_id,
            "status": self.status,
            "progress": self.progress,
            "detail": self.detail,
        }
        if self.error is not None:
            d["error"] = self.error.to_dict()
        return d


def samples_to_json(samples: List[CursorSample]) -> str:
    return json.dumps([s.to_dict() for s in samples], indent=2)


def samples_from_json(s: str) -> List[CursorSample]:
    """Parse a persisted cursor track, skipping malformed records."""
    out: List[CursorSample] = []
    for item in json.loads(s):
        try:
            out.append(CursorSample.from_dict(item))
        except (KeyError, TypeError, ValueError, OverflowError):
            continue
    return out

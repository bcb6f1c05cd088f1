"""Uniform error record raised across the recording / export core.

Every failure that reaches a caller is a :class:`StudioError` carrying a
machine-readable ``code``, a human message and an optional actionable
``suggestion``.  Background pipelines convert the same record into a
terminal progress event via ``to_dict()``.
"""

from typing import Optional


# ── Error codes ─────────────────────────────────────────────────────

# configuration
INVALID_PROJECT_ID = "INVALID_PROJECT_ID"
INVALID_CAMERA_MOTION = "INVALID_CAMERA_MOTION"
INVALID_TIMELINE = "INVALID_TIMELINE"

# precondition
PROJECT_NOT_FOUND = "PROJECT_NOT_FOUND"
PROJECT_ASSET_MISSING = "PROJECT_ASSET_MISSING"
CURSOR_TRACK_MISSING = "CURSOR_TRACK_MISSING"
SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
EXPORT_TASK_NOT_FOUND = "EXPORT_TASK_NOT_FOUND"
RECORDING_ALREADY_ACTIVE = "RECORDING_ALREADY_ACTIVE"
EXPORT_ALREADY_ACTIVE = "EXPORT_ALREADY_ACTIVE"
EXPORT_RETRY_LIMIT = "EXPORT_RETRY_LIMIT"
PLATFORM_NOT_SUPPORTED = "PLATFORM_NOT_SUPPORTED"
INVALID_RECORDING_STATE = "INVALID_RECORDING_STATE"
INVALID_EXPORT_STATE = "INVALID_EXPORT_STATE"

# process
FFMPEG_NOT_FOUND = "FFMPEG_NOT_FOUND"
FFMPEG_EXEC_ERROR = "FFMPEG_EXEC_ERROR"
FFPROBE_EXEC_ERROR = "FFPROBE_EXEC_ERROR"
RECORDING_START_FAIL = "RECORDING_START_FAIL"
RECORDING_STOP_FAIL = "RECORDING_STOP_FAIL"
RECORDING_PROCESS_IO = "RECORDING_PROCESS_IO"
RECORDING_OUTPUT_MISSING = "RECORDING_OUTPUT_MISSING"

# external-tool failure (export classification)
NO_PERMISSION = "NO_PERMISSION"
NO_SPACE = "NO_SPACE"
ENCODER_FAIL = "ENCODER_FAIL"
IO_FAIL = "IO_FAIL"

# data
IO_ERROR = "IO_ERROR"
SERDE_ERROR = "SERDE_ERROR"
FFPROBE_PARSE_ERROR = "FFPROBE_PARSE_ERROR"
UNSUPPORTED_SCHEMA = "UNSUPPORTED_SCHEMA"


class StudioError(Exception):
    """A failure with a stable code, message and optional suggestion."""

    def __init__(self, code: str, message: str, suggestion: Optional[str] = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.suggestion = suggestion

    def __repr__(self) -> str:
        return f"StudioError({self.code!r}, {self.message!r})"

    def to_dict(self) -> dict:
        """Serialize to a plain dict for events and manifest storage."""
        d = {"code": self.code, "message": self.message}
        if self.suggestion:
            d["suggestion"] = self.suggestion
        return d

    @staticmethod
    def from_dict(d: dict) -> "StudioError":
        return StudioError(d["code"], d.get("message", ""), d.get("suggestion"))


# Ordered: the first matching category wins.
_EXPORT_ERROR_RULES = [
    (
        ("permission denied", "access is denied"),
        NO_PERMISSION,
        "Export path is not writable",
        "Choose a destination you have write access to and retry",
    ),
    (
        ("no space left on device", "there is not enough space"),
        NO_SPACE,
        "Not enough disk space to finish the export",
        "Free up disk space and retry the export",
    ),
    (
        ("unknown encoder", "error while opening encoder", "cannot open encoder"),
        ENCODER_FAIL,
        "Video encoder failed to initialize",
        "Check the local encoder drivers or retry with software encoding",
    ),
]


def classify_export_error(stderr: str) -> StudioError:
    """Map combined ffmpeg diagnostics to an export error category."""
    lower = stderr.lower()
    for needles, code, message, suggestion in _EXPORT_ERROR_RULES:
        if any(n in lower for n in needles):
            return StudioError(code, message, suggestion)
    return StudioError(IO_FAIL, "Export failed", "Check the export log and retry")

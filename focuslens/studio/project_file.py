"""Project store — the on-disk layout of a FocusLens project.

Each project is a directory under the project root::

    <root>/<project_id>/
        project.json              — ProjectManifest
        recovery.marker           — present while a recording is in flight
        assets/recording_raw.mp4  — raw capture
        assets/cursor_track.json  — [{tMs, x, y}, …]
        renders/output.mp4        — last export
        renders/export-<task>.log — ffmpeg stderr per export task

Project ids are opaque but are used as path components, so anything
that could escape the root is rejected up front.
"""

import json
import logging
import os
from typing import List, Optional

from .errors import (
    StudioError,
    INVALID_PROJECT_ID,
    INVALID_TIMELINE,
    INVALID_CAMERA_MOTION,
    PROJECT_NOT_FOUND,
    CURSOR_TRACK_MISSING,
    IO_ERROR,
    SERDE_ERROR,
    UNSUPPORTED_SCHEMA,
)
from .models import (
    ASPECT_RATIOS,
    INTENSITIES,
    SCHEMA_VERSION,
    CursorSample,
    MotionProfile,
    ProjectManifest,
    RecordingProfile,
    STATUS_EXPORT_SUCCEEDED,
    samples_from_json,
    samples_to_json,
)
from .motion_engine import complete_track, evaluate_camera_motion
from .quality import QualityGateResult, validate_quality

logger = logging.getLogger(__name__)


_JSON_NAME = "project.json"
_MARKER_NAME = "recovery.marker"
_RAW_NAME = "recording_raw.mp4"
_TRACK_NAME = "cursor_track.json"
_OUTPUT_NAME = "output.mp4"


def validate_project_id(project_id: str) -> str:
    """Return the trimmed id or raise ``INVALID_PROJECT_ID``."""
    trimmed = (project_id or "").strip()
    if not trimmed or "/" in trimmed or "\\" in trimmed or ".." in trimmed:
        raise StudioError(
            INVALID_PROJECT_ID,
            "invalid project id",
            "Use a project id generated by FocusLens",
        )
    return trimmed


# ── Paths ───────────────────────────────────────────────────────────

def project_dir(root: str, project_id: str) -> str:
    return os.path.join(root, project_id)


def manifest_path(root: str, project_id: str) -> str:
    return os.path.join(project_dir(root, project_id), _JSON_NAME)


def raw_recording_path(root: str, project_id: str) -> str:
    return os.path.join(project_dir(root, project_id), "assets", _RAW_NAME)


def cursor_track_path(root: str, project_id: str) -> str:
    return os.path.join(project_dir(root, project_id), "assets", _TRACK_NAME)


def export_output_path(root: str, project_id: str) -> str:
    return os.path.join(project_dir(root, project_id), "renders", _OUTPUT_NAME)


def export_log_path(root: str, project_id: str, task_id: str) -> str:
    return os.path.join(project_dir(root, project_id), "renders", f"export-{task_id}.log")


def recovery_marker_path(root: str, project_id: str) -> str:
    return os.path.join(project_dir(root, project_id), _MARKER_NAME)


def ensure_project_dirs(root: str, project_id: str) -> None:
    base = project_dir(root, project_id)
    try:
        os.makedirs(os.path.join(base, "assets"), exist_ok=True)
        os.makedirs(os.path.join(base, "renders"), exist_ok=True)
    except OSError as exc:
        raise StudioError(
            IO_ERROR, f"failed to create project dirs: {exc}", "Check the project folder permissions",
        ) from exc


# ── Manifest ────────────────────────────────────────────────────────

def create_manifest(recording: RecordingProfile) -> ProjectManifest:
    return ProjectManifest(recording=recording)


def save_manifest(root: str, project_id: str, manifest: ProjectManifest) -> None:
    """Write project.json through a temp file so readers never see half a manifest."""
    ensure_project_dirs(root, project_id)
    path = manifest_path(root, project_id)
    tmp = path + ".tmp"
    try:
        with open(tmp, "w", encoding="utf-8") as f:
            f.write(manifest.to_json())
        os.replace(tmp, path)
    except OSError as exc:
        raise StudioError(
            IO_ERROR, f"failed to write manifest: {exc}", "Check disk space and folder permissions",
        ) from exc


def load_manifest(root: str, project_id: str) -> ProjectManifest:
    path = manifest_path(root, project_id)
    if not os.path.isfile(path):
        raise StudioError(
            PROJECT_NOT_FOUND,
            f"project manifest not found: {project_id}",
            "Record something first to create a project",
        )
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = f.read()
    except OSError as exc:
        raise StudioError(IO_ERROR, f"failed to read manifest: {exc}") from exc

    try:
        schema = int(json.loads(raw).get("schemaVersion", 0))
    except (ValueError, TypeError, AttributeError) as exc:
        raise StudioError(SERDE_ERROR, f"failed to parse manifest json: {exc}") from exc
    if schema > SCHEMA_VERSION:
        raise StudioError(
            UNSUPPORTED_SCHEMA,
            f"schemaVersion {schema} is newer than supported {SCHEMA_VERSION}",
            "Upgrade FocusLens and try again",
        )
    try:
        return ProjectManifest.from_json(raw)
    except (KeyError, TypeError, ValueError, OverflowError) as exc:
        raise StudioError(SERDE_ERROR, f"failed to decode manifest: {exc}") from exc


# ── Recovery marker ─────────────────────────────────────────────────

def mark_recovery_marker(root: str, project_id: str) -> None:
    try:
        with open(recovery_marker_path(root, project_id), "w", encoding="utf-8") as f:
            f.write("recoverable")
    except OSError as exc:
        raise StudioError(IO_ERROR, f"failed to create recovery marker: {exc}") from exc


def clear_recovery_marker(root: str, project_id: str) -> None:
    path = recovery_marker_path(root, project_id)
    if not os.path.exists(path):
        return
    try:
        os.remove(path)
    except OSError as exc:
        raise StudioError(IO_ERROR, f"failed to clear recovery marker: {exc}") from exc


def scan_recoverable_projects(root: str) -> List[dict]:
    """Projects whose recording never reached a clean stop."""
    if not os.path.isdir(root):
        return []
    found = []
    for name in sorted(os.listdir(root)):
        if not os.path.isdir(project_dir(root, name)):
            continue
        if (
            os.path.exists(recovery_marker_path(root, name))
            and os.path.isfile(manifest_path(root, name))
            and os.path.isfile(raw_recording_path(root, name))
        ):
            found.append({
                "projectId": name,
                "reason": "unfinished project found, it can be recovered",
                "path": project_dir(root, name),
            })
    return found


# ── Cursor track ────────────────────────────────────────────────────

def write_cursor_track(path: str, duration_ms: int, samples: List[CursorSample]) -> List[CursorSample]:
    """Persist a track covering ``[0, duration_ms]``; returns what was written."""
    track = complete_track(samples, duration_ms)
    try:
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            f.write(samples_to_json(track))
    except OSError as exc:
        raise StudioError(IO_ERROR, f"failed to write cursor track: {exc}") from exc
    return track


def load_cursor_track(path: Optional[str], strict: bool = False) -> List[CursorSample]:
    """Read a persisted track.

    Lenient by default (missing or broken files give an empty track, and
    the exporter falls back to a static crop); *strict* raises instead.
    """
    if not path or not os.path.isfile(path):
        if strict:
            raise StudioError(
                CURSOR_TRACK_MISSING,
                "cursor track missing for this project",
                "Finish a recording before evaluating camera motion",
            )
        return []
    try:
        with open(path, "r", encoding="utf-8") as f:
            return samples_from_json(f.read())
    except (OSError, ValueError, TypeError, OverflowError) as exc:
        if strict:
            raise StudioError(SERDE_ERROR, f"failed to parse cursor track: {exc}") from exc
        logger.warning("Ignoring unreadable cursor track %s: %s", path, exc)
        return []


# ── Patches ─────────────────────────────────────────────────────────

def apply_timeline_patch(manifest: ProjectManifest, patch: dict) -> None:
    """Merge a camelCase timeline patch, rejecting an inverted trim range."""
    timeline = manifest.timeline
    if "trimStartMs" in patch:
        timeline.trim_start_ms = max(0, int(patch["trimStartMs"]))
    if "trimEndMs" in patch:
        timeline.trim_end_ms = max(0, int(patch["trimEndMs"]))
    if "aspectRatio" in patch:
        if patch["aspectRatio"] not in ASPECT_RATIOS:
            raise StudioError(
                INVALID_TIMELINE,
                f"aspectRatio must be one of {', '.join(ASPECT_RATIOS)}",
            )
        timeline.aspect_ratio = patch["aspectRatio"]
    if "cursorHighlightEnabled" in patch:
        timeline.cursor_highlight_enabled = bool(patch["cursorHighlightEnabled"])
    if 0 < timeline.trim_end_ms < timeline.trim_start_ms:
        raise StudioError(
            INVALID_TIMELINE,
            "trimEndMs must be greater than trimStartMs",
            "Adjust the trim range",
        )
    manifest.touch()


def apply_camera_motion_patch(manifest: ProjectManifest, patch: dict) -> None:
    """Merge a camelCase camera-motion patch; numbers are clamped to range."""
    motion = manifest.camera_motion
    if "enabled" in patch:
        motion.enabled = bool(patch["enabled"])
    if "intensity" in patch:
        if patch["intensity"] not in INTENSITIES:
            raise StudioError(
                INVALID_CAMERA_MOTION,
                f"intensity must be one of {', '.join(INTENSITIES)}",
            )
        motion.intensity = patch["intensity"]
    if "smoothing" in patch:
        motion.smoothing = min(max(float(patch["smoothing"]), 0.0), 1.0)
    if "maxZoom" in patch:
        motion.max_zoom = min(max(float(patch["maxZoom"]), 1.0), 2.0)
    if "idleThresholdMs" in patch:
        motion.idle_threshold_ms = min(max(int(patch["idleThresholdMs"]), 120), 900)
    motion.validate()
    manifest.touch()


def update_timeline(root: str, project_id: str, patch: dict) -> ProjectManifest:
    project_id = validate_project_id(project_id)
    manifest = load_manifest(root, project_id)
    apply_timeline_patch(manifest, patch)
    save_manifest(root, project_id, manifest)
    return manifest


def update_camera_motion(root: str, project_id: str, patch: dict) -> ProjectManifest:
    project_id = validate_project_id(project_id)
    manifest = load_manifest(root, project_id)
    apply_camera_motion_patch(manifest, patch)
    save_manifest(root, project_id, manifest)
    return manifest


# ── Queries ─────────────────────────────────────────────────────────

def list_projects(root: str) -> List[dict]:
    """Summaries of every readable project, most recently updated first."""
    if not os.path.isdir(root):
        return []
    items = []
    for name in os.listdir(root):
        if not name.strip() or not os.path.isdir(project_dir(root, name)):
            continue
        try:
            manifest = load_manifest(root, name)
        except StudioError as exc:
            logger.debug("Skipping %s: %s", name, exc.message)
            continue
        timeline = manifest.timeline
        items.append({
            "projectId": name,
            "title": manifest.title,
            "createdAt": manifest.created_at,
            "updatedAt": manifest.updated_at,
            "status": manifest.status,
            "durationMs": max(0, timeline.trim_end_ms - timeline.trim_start_ms),
            "hasExport": manifest.artifacts.last_export_path is not None,
            "exportPath": manifest.artifacts.last_export_path,
            "rawPath": manifest.artifacts.raw_recording_path,
        })
    items.sort(key=lambda item: item["updatedAt"], reverse=True)
    return items


def evaluate_project_motion(root: str, project_id: str,
                            override: Optional[MotionProfile] = None) -> dict:
    """Motion metrics for a project's stored track."""
    project_id = validate_project_id(project_id)
    manifest = load_manifest(root, project_id)
    samples = load_cursor_track(manifest.artifacts.cursor_track_path, strict=True)
    return evaluate_camera_motion(samples, override or manifest.camera_motion)


def validate_quality_gate(root: str, project_id: str) -> QualityGateResult:
    """Quality gate over a project's stored metrics and export artifacts."""
    project_id = validate_project_id(project_id)
    manifest = load_manifest(root, project_id)
    reasons: List[str] = []
    if manifest.status != STATUS_EXPORT_SUCCEEDED:
        reasons.append("no successful export yet, quality gate cannot be checked")
    export_path = manifest.artifacts.last_export_path
    if not export_path or not os.path.exists(export_path):
        reasons.append("exported video is missing, A/V metrics cannot be checked")
    log_path = manifest.artifacts.export_log_path
    if not log_path or not os.path.exists(log_path):
        reasons.append("export log is missing, drop-rate metrics cannot be checked")

    quality = manifest.quality
    metrics = validate_quality(quality.av_offset_ms, quality.avg_drop_rate, quality.peak_drop_rate)
    reasons.extend(metrics.reasons)
    return QualityGateResult(passed=not reasons, reasons=reasons)

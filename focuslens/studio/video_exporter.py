"""Export pipeline — re-encodes a raw recording with the autoframing crop baked in.

The encode is a single ffmpeg invocation per attempt.  The platform's
hardware H.264 encoder is tried first; if it fails the same command is
re-run with ``libx264``.  Progress is reported as coarse milestones on
:attr:`ExportController.progress`, not per frame.
"""

import logging
import os
import threading
import time
import uuid
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from PySide6.QtCore import QObject, Signal

from .config import StudioConfig
from .crop_expression import build_video_filters
from .errors import (
    StudioError,
    EXPORT_RETRY_LIMIT,
    IO_ERROR,
    PROJECT_ASSET_MISSING,
    classify_export_error,
)
from .media_probe import calc_av_offset_ms, probe_input_dimensions, probe_media
from .models import (
    CursorSample,
    ExportProfile,
    ExportProgressEvent,
    ProjectManifest,
    QualityMetrics,
    STATUS_EXPORT_FAILED,
    STATUS_EXPORT_SUCCEEDED,
    STATUS_EXPORTING,
)
from .project_file import (
    export_log_path,
    export_output_path,
    load_cursor_track,
    load_manifest,
    raw_recording_path,
    save_manifest,
    validate_project_id,
)
from .quality import compute_drop_metrics
from .runtime import ExportTaskRecord, RuntimeContext
from .state_machine import ExportMachine
from .utils import (
    SOFTWARE_CODEC,
    HardwareEncoderAvailability,
    CommandOutput,
    detect_hardware_encoder,
    encoder_display_name,
    run_ffmpeg,
)

logger = logging.getLogger(__name__)


FALLBACK_SEPARATOR = "\n---- fallback ----\n"
EMPTY_LOG = "no stderr output"

# Milestone progress values
PROGRESS_QUEUED = 0
PROGRESS_PARSING = 20
PROGRESS_ENCODING = 50
PROGRESS_FALLBACK = 62
PROGRESS_MUXING = 85
PROGRESS_DONE = 100


def planned_progress(task_id: str, hw: HardwareEncoderAvailability) -> List[ExportProgressEvent]:
    """The opening milestones every export emits before encoding starts."""
    return [
        ExportProgressEvent(task_id, "queued", PROGRESS_QUEUED, "export task queued"),
        ExportProgressEvent(task_id, "running", PROGRESS_PARSING, "parsing export config"),
        ExportProgressEvent(
            task_id, "running", PROGRESS_ENCODING,
            f"encoding with {encoder_display_name(hw.codec)} ({hw.detail})",
        ),
    ]


def _seconds(ms: int) -> str:
    return f"{ms / 1000.0:.3f}"


def build_export_args(
    raw_path: str,
    output_path: str,
    manifest: ProjectManifest,
    samples: List[CursorSample],
    codec: str,
    source_size: Optional[Tuple[int, int]] = None,
) -> List[str]:
    """ffmpeg arguments (without the binary) for one encode attempt."""
    timeline = manifest.timeline
    export = manifest.export
    vf = build_video_filters(manifest.camera_motion, timeline, export, samples, source_size)

    args = ["-y", "-hide_banner", "-i", raw_path]
    # Output-side seeking keeps the filter clock on the recording timeline,
    # which is what the cursor expressions are written against.
    if timeline.trim_start_ms > 0:
        args += ["-ss", _seconds(timeline.trim_start_ms)]
    if timeline.trim_end_ms > timeline.trim_start_ms:
        args += ["-to", _seconds(timeline.trim_end_ms)]
    args += [
        "-vf", vf,
        "-r", str(export.fps),
        "-c:v", codec,
        "-b:v", f"{export.bitrate_mbps}M",
        "-pix_fmt", "yuv420p",
        "-c:a", "aac",
        "-b:a", "128k",
        "-movflags", "+faststart",
        "-aspect", timeline.aspect_ratio,
        output_path,
    ]
    return args


@dataclass
class ExportAttemptResult:
    success: bool
    codec_used: str
    log: str


def export_with_fallback(
    build_args: Callable[[str], List[str]],
    hw_codec: str,
    ffmpeg: Optional[str] = None,
    timeout: Optional[float] = None,
    on_fallback: Optional[Callable[[str], None]] = None,
) -> ExportAttemptResult:
    """Encode with *hw_codec*, then with ``libx264`` if that fails.

    *on_fallback* is called with the first attempt's stderr right before
    the software attempt.  When the preferred codec already is the
    software one there is nothing to fall back to.
    """
    first: CommandOutput = run_ffmpeg(build_args(hw_codec), ffmpeg=ffmpeg, timeout=timeout)
    if first.success:
        return ExportAttemptResult(True, hw_codec, first.stderr)
    if hw_codec == SOFTWARE_CODEC:
        return ExportAttemptResult(False, hw_codec, first.stderr)

    logger.warning("Encoder %s failed (rc=%s), retrying with %s",
                   hw_codec, first.returncode, SOFTWARE_CODEC)
    if on_fallback is not None:
        on_fallback(first.stderr)
    second = run_ffmpeg(build_args(SOFTWARE_CODEC), ffmpeg=ffmpeg, timeout=timeout)
    log = first.stderr + FALLBACK_SEPARATOR + second.stderr
    return ExportAttemptResult(second.success, SOFTWARE_CODEC, log)


class ExportController(QObject):
    """Runs export tasks on background threads and reports their milestones."""

    progress = Signal(object)  # ExportProgressEvent

    def __init__(self, config: StudioConfig, runtime: RuntimeContext,
                 parent: QObject | None = None) -> None:
        super().__init__(parent)
        self._config = config
        self._runtime = runtime
        self._threads: Dict[str, threading.Thread] = {}

    # ── public API ──────────────────────────────────────────────────

    def start_export(self, project_id: str, profile: Optional[ExportProfile] = None) -> str:
        """Queue an export of *project_id*; returns the task id.

        *profile* replaces the project's stored export settings.
        """
        project_id = validate_project_id(project_id)
        manifest = self._check_project(project_id)
        record = ExportTaskRecord(
            task_id=uuid.uuid4().hex,
            project_id=project_id,
            profile=profile or manifest.export,
        )
        self._runtime.insert_export_task(record)
        self._launch(record)
        return record.task_id

    def retry_export(self, task_id: str) -> str:
        """Start a new task for the same project and profile."""
        previous = self._runtime.get_export_task(task_id)
        retries = previous.retries + 1
        limit = self._config.max_export_retries
        if limit is not None and retries > limit:
            raise StudioError(
                EXPORT_RETRY_LIMIT,
                f"export was already retried {previous.retries} times",
                "Check the export log before trying again",
            )
        self._check_project(previous.project_id)
        record = ExportTaskRecord(
            task_id=uuid.uuid4().hex,
            project_id=previous.project_id,
            profile=previous.profile,
            retries=retries,
        )
        self._runtime.insert_export_task(record)
        logger.info("Retrying export %s as %s (retry %d)", task_id, record.task_id, retries)
        self._launch(record)
        return record.task_id

    def get_export_task_status(self, task_id: str) -> dict:
        return self._runtime.task_snapshot(task_id)

    def wait(self, task_id: str, timeout: Optional[float] = None) -> None:
        """Block until the task's pipeline thread finishes."""
        thread = self._threads.get(task_id)
        if thread is not None:
            thread.join(timeout)

    # ── internal ────────────────────────────────────────────────────

    def _check_project(self, project_id: str) -> ProjectManifest:
        manifest = load_manifest(self._config.project_root, project_id)
        raw_path = raw_recording_path(self._config.project_root, project_id)
        if not os.path.isfile(raw_path):
            raise StudioError(
                PROJECT_ASSET_MISSING,
                "raw recording is missing for this project",
                "Record again before exporting",
            )
        return manifest

    def _launch(self, record: ExportTaskRecord) -> None:
        thread = threading.Thread(
            target=self.run_pipeline, args=(record,), daemon=True,
            name=f"export-{record.task_id[:8]}",
        )
        self._threads[record.task_id] = thread
        thread.start()

    def _emit(self, event: ExportProgressEvent) -> None:
        self.progress.emit(event)

    def _pause(self) -> None:
        if self._config.milestone_delay_ms > 0:
            time.sleep(self._config.milestone_delay_ms / 1000.0)

    def run_pipeline(self, record: ExportTaskRecord) -> None:
        """Run one export task to a terminal state.

        Never raises: every failure ends as a ``failed`` event and a
        failed task.
        """
        task_id = record.task_id
        root = self._config.project_root
        ffmpeg = self._config.ffmpeg()
        try:
            hw = detect_hardware_encoder(ffmpeg)
            queued, parsing, encoding = planned_progress(task_id, hw)
            self._emit(queued)
            self._runtime.transition_task(task_id, ExportMachine.start)
            self._emit(parsing)
            self._pause()

            manifest = load_manifest(root, record.project_id)
            manifest.export = record.profile
            manifest.status = STATUS_EXPORTING
            save_manifest(root, record.project_id, manifest)

            raw_path = raw_recording_path(root, record.project_id)
            output_path = export_output_path(root, record.project_id)
            log_path = export_log_path(root, record.project_id, task_id)
            samples = load_cursor_track(manifest.artifacts.cursor_track_path)
            source_size = probe_input_dimensions(raw_path, self._config.ffprobe())
            self._emit(encoding)
            self._pause()

            def build_args(codec: str) -> List[str]:
                return build_export_args(raw_path, output_path, manifest, samples, codec, source_size)

            def on_fallback(_stderr: str) -> None:
                self._runtime.transition_task(task_id, ExportMachine.fallback)

            result = export_with_fallback(
                build_args, hw.codec, ffmpeg=ffmpeg,
                timeout=self._config.export_timeout_s, on_fallback=on_fallback,
            )
            log_text = result.log if result.log.strip() else EMPTY_LOG
            self._write_log(log_path, log_text)

            if not result.success:
                self._fail(record, classify_export_error(result.log))
                return

            if result.codec_used != hw.codec:
                self._emit(ExportProgressEvent(
                    task_id, "fallback", PROGRESS_FALLBACK,
                    f"hardware encoder failed, exported with {encoder_display_name(result.codec_used)}",
                ))
            self._emit(ExportProgressEvent(task_id, "running", PROGRESS_MUXING, "muxing output"))
            self._mark_succeeded(record.project_id, output_path, log_path, log_text)
            self._runtime.transition_task(task_id, ExportMachine.success)
        except StudioError as exc:
            self._fail(record, exc)
            return
        except Exception as exc:
            logger.exception("Export %s crashed", task_id)
            self._fail(record, StudioError(
                IO_ERROR,
                f"export pipeline failed: {exc}",
                "Check the project files and try the export again",
            ))
            return

        logger.info("Export %s finished: %s (%s)", task_id, output_path, result.codec_used)
        self._emit(ExportProgressEvent(task_id, "success", PROGRESS_DONE, f"export finished: {output_path}"))

    def _write_log(self, path: str, text: str) -> None:
        try:
            os.makedirs(os.path.dirname(path), exist_ok=True)
            with open(path, "w", encoding="utf-8") as f:
                f.write(text)
        except OSError as exc:
            raise StudioError(IO_ERROR, f"failed to write export log: {exc}") from exc

    def _mark_succeeded(self, project_id: str, output_path: str, log_path: str, log_text: str) -> None:
        root = self._config.project_root
        manifest = load_manifest(root, project_id)
        try:
            summary = probe_media(output_path, self._config.ffprobe())
        except StudioError as exc:
            logger.warning("Could not probe %s, A/V offset unknown: %s", output_path, exc.message)
            summary = None

        av_offset = 0
        if summary is not None:
            av_offset = calc_av_offset_ms(summary.video_duration_ms, summary.audio_duration_ms)
            if manifest.timeline.trim_end_ms <= 0 and summary.container_duration_ms > 0:
                manifest.timeline.trim_end_ms = summary.container_duration_ms
        avg_drop, peak_drop = compute_drop_metrics(log_text)

        manifest.quality = QualityMetrics(
            av_offset_ms=av_offset, avg_drop_rate=avg_drop, peak_drop_rate=peak_drop,
        )
        manifest.status = STATUS_EXPORT_SUCCEEDED
        manifest.last_error = None
        manifest.artifacts.last_export_path = output_path
        manifest.artifacts.export_log_path = log_path
        manifest.touch()
        save_manifest(root, project_id, manifest)

    def _fail(self, record: ExportTaskRecord, error: StudioError) -> None:
        logger.error("Export %s failed: %s %s", record.task_id, error.code, error.message)
        try:
            self._runtime.transition_task(record.task_id, ExportMachine.fail, error=error)
        except StudioError as exc:
            logger.warning("Could not mark task %s failed: %s", record.task_id, exc.message)

        root = self._config.project_root
        try:
            manifest = load_manifest(root, record.project_id)
            manifest.status = STATUS_EXPORT_FAILED
            manifest.last_error = error
            manifest.touch()
            save_manifest(root, record.project_id, manifest)
        except StudioError as exc:
            logger.warning("Could not record the failure in %s: %s", record.project_id, exc.message)

        self._emit(ExportProgressEvent(
            record.task_id, "failed", PROGRESS_DONE, error.message, error=error,
        ))

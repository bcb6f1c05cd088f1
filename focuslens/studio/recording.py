"""Recording controller — drives capture sessions end to end.

Each session owns one ffmpeg process (via :class:`ProcessSupervisor`),
one status ticker thread and one cursor sampler thread.  Status changes
are published on :attr:`RecordingController.status` as
:class:`RecordingStatusEvent` objects.
"""

import logging
import os
import threading
import uuid
from dataclasses import replace
from typing import Callable, Optional, Tuple

from PySide6.QtCore import QObject, Signal

from .capture_platform import CaptureStrategy, PlatformCapability, select_capture_strategy
from .config import StudioConfig
from .errors import (
    StudioError,
    PLATFORM_NOT_SUPPORTED,
    PROJECT_NOT_FOUND,
    RECORDING_OUTPUT_MISSING,
)
from .models import (
    ProjectManifest,
    RecordingProfile,
    RecordingStatusEvent,
    STATUS_READY_TO_EDIT,
    STATUS_RECORDING,
)
from .mouse_tracker import CursorSampler, current_cursor_position
from .process_supervisor import PAUSE_TOGGLE, ProcessSupervisor
from .project_file import (
    clear_recovery_marker,
    create_manifest,
    cursor_track_path,
    ensure_project_dirs,
    load_manifest,
    mark_recovery_marker,
    raw_recording_path,
    save_manifest,
    validate_project_id,
    write_cursor_track,
)
from .runtime import RecordingSessionRecord, RuntimeContext
from .state_machine import ACTIVE_RECORDING_STATES, RecordingMachine, RecordingState
from .utils import ensure_ffmpeg_available

logger = logging.getLogger(__name__)


WINDOW_FALLBACK_MESSAGE = "no window target given, recording the full screen"


class RecordingController(QObject):
    """Starts, pauses, resumes and stops recording sessions."""

    status = Signal(object)  # RecordingStatusEvent

    def __init__(
        self,
        config: StudioConfig,
        runtime: RuntimeContext,
        strategy: Optional[CaptureStrategy] = None,
        position_source: Callable[[], Optional[Tuple[float, float]]] = current_cursor_position,
        parent: QObject | None = None,
    ) -> None:
        super().__init__(parent)
        self._config = config
        self._runtime = runtime
        self._strategy = strategy or select_capture_strategy(
            config.ffmpeg(), allow_mock=config.allow_mock_capture,
        )
        self._supervisor = ProcessSupervisor(
            self._strategy,
            early_exit_grace_ms=config.early_exit_grace_ms,
            stop_poll_count=config.stop_poll_count,
            stop_poll_interval_ms=config.stop_poll_interval_ms,
        )
        self._position_source = position_source

    def platform_capability(self) -> PlatformCapability:
        return self._strategy.capability()

    def _emit(self, record: RecordingSessionRecord, status: str, detail: str,
              duration_ms: Optional[int] = None, source_label: Optional[str] = None) -> None:
        self.status.emit(RecordingStatusEvent(
            session_id=record.session_id,
            status=status,
            duration_ms=record.duration_ms() if duration_ms is None else duration_ms,
            source_label=source_label or record.source_label,
            detail=detail,
            degrade_message=record.degrade_message,
        ))

    # ── start ───────────────────────────────────────────────────────

    def start_recording(self, profile: RecordingProfile, project_id: Optional[str] = None) -> str:
        """Spawn a capture and return its session id.

        A fresh project (id = session id) is created unless *project_id*
        names an existing one to record into.
        """
        ensure_ffmpeg_available(self._config.ffmpeg())
        capability = self._strategy.capability()
        if not capability.supports_screen_capture:
            raise StudioError(
                PLATFORM_NOT_SUPPORTED,
                f"screen capture is not supported on {capability.platform}",
                "Record on Windows or macOS, or set FOCUSLENS_ALLOW_MOCK_CAPTURE=1",
            )

        session_id = uuid.uuid4().hex
        existing = bool(project_id)
        project_id = validate_project_id(project_id) if existing else session_id
        self._runtime.reserve_project(project_id)
        try:
            record = self._launch_session(session_id, project_id, profile, capability, existing)
        except Exception:
            self._runtime.release_project(project_id)
            raise

        logger.info("Recording %s started into %s", session_id, record.project_id)
        self._emit(record, "recording", "recording started", duration_ms=0)
        self._start_tickers(record)
        return session_id

    def _load_or_create(self, project_id: str, profile: RecordingProfile) -> ProjectManifest:
        try:
            return load_manifest(self._config.project_root, project_id)
        except StudioError as exc:
            if exc.code != PROJECT_NOT_FOUND:
                raise
            return create_manifest(profile)

    def _recording_manifest(self, project_id: str, profile: RecordingProfile,
                            existing: bool) -> ProjectManifest:
        """Manifest for a new take; an existing project keeps its edits."""
        if existing:
            manifest = self._load_or_create(project_id, profile)
            manifest.recording = profile
        else:
            manifest = create_manifest(profile)
        manifest.status = STATUS_RECORDING
        manifest.last_error = None
        return manifest

    def _launch_session(self, session_id: str, project_id: str, profile: RecordingProfile,
                        capability: PlatformCapability, existing: bool) -> RecordingSessionRecord:
        profile = replace(profile)
        degrade_message = None
        if profile.system_audio_enabled and not capability.supports_system_audio:
            profile.system_audio_enabled = False
            degrade_message = capability.system_audio_degrade_message
            logger.warning("System audio disabled: %s", degrade_message)
        if profile.capture_mode == "window" and not (profile.window_target or "").strip():
            profile.capture_mode = "fullscreen"
            degrade_message = WINDOW_FALLBACK_MESSAGE
            logger.warning(WINDOW_FALLBACK_MESSAGE)

        root = self._config.project_root
        output_path = raw_recording_path(root, project_id)
        ensure_project_dirs(root, project_id)
        manifest = self._recording_manifest(project_id, profile, existing)
        manifest.artifacts.raw_recording_path = output_path
        manifest.artifacts.cursor_track_path = cursor_track_path(root, project_id)
        manifest.touch()
        save_manifest(root, project_id, manifest)

        spawn = self._supervisor.spawn(profile, output_path)
        record = RecordingSessionRecord(
            session_id=session_id,
            project_id=project_id,
            profile=profile,
            process=spawn.process,
            source_label=self._strategy.source_label(profile),
            degrade_message=degrade_message or spawn.degrade_message,
        )
        record.machine.start()
        try:
            mark_recovery_marker(root, project_id)
            self._runtime.insert_session(record)
        except StudioError:
            self._supervisor.stop(spawn.process)
            raise
        return record

    def _start_tickers(self, record: RecordingSessionRecord) -> None:
        session_id = record.session_id

        def is_recording() -> Optional[bool]:
            state = self._runtime.session_state(session_id)
            return None if state is None else state == RecordingState.RECORDING

        record.sampler = CursorSampler(
            started_at=record.started_at,
            buffer=record.cursor_buffer,
            is_recording=is_recording,
            cancel=record.cancel,
            interval_ms=self._config.cursor_tick_ms,
            position_source=self._position_source,
        )
        record.sampler.start()
        record.ticker = threading.Thread(
            target=self._status_loop, args=(record,), daemon=True, name="recording-status",
        )
        record.ticker.start()

    # ── status ticker ───────────────────────────────────────────────

    def _status_loop(self, record: RecordingSessionRecord) -> None:
        interval = self._config.status_tick_ms / 1000.0
        while not record.cancel.wait(interval):
            if not self.check_session(record):
                break

    def check_session(self, record: RecordingSessionRecord) -> bool:
        """One ticker beat; returns False once the session is finished."""
        state = self._runtime.session_state(record.session_id)
        if state not in ACTIVE_RECORDING_STATES:
            return False
        if self._supervisor.has_exited(record.process):
            logger.error(
                "Recording process for %s exited on its own (rc=%s)",
                record.session_id, record.process.returncode,
            )
            try:
                self._runtime.transition_session(record.session_id, RecordingMachine.fail)
            except StudioError as exc:
                logger.debug("Session %s already settled: %s", record.session_id, exc.message)
                return False
            self._supervisor.close_stdin(record.process)
            self._runtime.remove_session(record.session_id)
            self._emit(
                record, "error",
                "recording process exited unexpectedly, check permissions and input sources",
                source_label="Recording interrupted",
            )
            return False
        self._emit(record, state.value, "recording status update")
        return True

    # ── pause / resume ──────────────────────────────────────────────

    def _toggle(self, session_id: str, action, status: str, detail: str) -> None:
        previous = self._runtime.transition_session(session_id, action)
        record = self._runtime.get_session(session_id)
        try:
            self._supervisor.send_command(record.process, PAUSE_TOGGLE)
        except StudioError:
            self._runtime.rollback_session(session_id, previous)
            raise
        self._emit(record, status, detail)

    def pause_recording(self, session_id: str) -> None:
        self._toggle(session_id, RecordingMachine.pause, "paused", "recording paused")

    def resume_recording(self, session_id: str) -> None:
        self._toggle(session_id, RecordingMachine.resume, "recording", "recording resumed")

    # ── stop ────────────────────────────────────────────────────────

    def stop_recording(self, session_id: str) -> str:
        """Finish the session; returns the project id ready for editing."""
        record = self._runtime.get_session(session_id)
        previous = self._runtime.transition_session(session_id, RecordingMachine.stop)
        try:
            self._supervisor.stop(record.process)
        except StudioError:
            self._runtime.rollback_session(session_id, previous)
            raise

        record.cancel.set()
        if record.sampler is not None:
            record.sampler.join()

        root = self._config.project_root
        project_id = record.project_id
        raw_path = raw_recording_path(root, project_id)
        track_path = cursor_track_path(root, project_id)
        try:
            raw_ok = os.path.getsize(raw_path) > self._config.min_recording_bytes
        except OSError:
            raw_ok = False

        if not raw_ok:
            error = StudioError(
                RECORDING_OUTPUT_MISSING,
                "recording produced no usable video file, export is not possible",
                "Check the microphone / system audio devices and record again",
            )
            try:
                failed = self._load_or_create(project_id, record.profile)
                failed.status = STATUS_RECORDING
                failed.last_error = error
                failed.artifacts.raw_recording_path = raw_path
                failed.artifacts.cursor_track_path = track_path
                save_manifest(root, project_id, failed)
            except StudioError as exc:
                logger.warning("Could not save failed manifest for %s: %s", project_id, exc.message)
            self._runtime.remove_session(session_id)
            self._emit(record, "error", "recording output file is missing",
                       duration_ms=0, source_label="Recording failed")
            raise error

        duration_ms = record.duration_ms()
        manifest = self._load_or_create(project_id, record.profile)
        manifest.recording = record.profile
        manifest.status = STATUS_READY_TO_EDIT
        manifest.last_error = None
        if manifest.timeline.trim_start_ms >= duration_ms:
            manifest.timeline.trim_start_ms = 0
        manifest.timeline.trim_end_ms = duration_ms
        manifest.artifacts.raw_recording_path = raw_path
        written = write_cursor_track(track_path, duration_ms, list(record.cursor_buffer))
        manifest.artifacts.cursor_track_path = track_path
        manifest.touch()
        save_manifest(root, project_id, manifest)
        clear_recovery_marker(root, project_id)

        self._runtime.remove_session(session_id)
        logger.info(
            "Recording %s stopped after %d ms (%d cursor samples)",
            session_id, duration_ms, len(written),
        )
        self._emit(record, "stopped", "recording stopped, ready to edit",
                   duration_ms=duration_ms, source_label="Recording complete")
        return project_id

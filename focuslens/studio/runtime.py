"""In-memory registries shared by the recording and export controllers.

A :class:`RuntimeContext` is created once per process and handed to both
controllers.  Each registry sits behind its own short-held lock; the
"one active session / task per project" check and the insert happen in
the same critical section.  Where both locks are needed the session
lock is taken first.  No lock is held across process calls or signal
emission.
"""

import logging
import subprocess
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Set

from .errors import (
    StudioError,
    SESSION_NOT_FOUND,
    EXPORT_TASK_NOT_FOUND,
    RECORDING_ALREADY_ACTIVE,
    EXPORT_ALREADY_ACTIVE,
)
from .models import CursorSample, ExportProfile, RecordingProfile, utc_now
from .mouse_tracker import CursorSampler
from .state_machine import ExportMachine, ExportState, RecordingMachine, RecordingState

logger = logging.getLogger(__name__)


@dataclass
class RecordingSessionRecord:
    session_id: str
    project_id: str
    profile: RecordingProfile
    process: subprocess.Popen
    machine: RecordingMachine = field(default_factory=RecordingMachine)
    source_label: str = ""
    degrade_message: Optional[str] = None
    started_at: float = field(default_factory=time.monotonic)
    started_at_iso: str = field(default_factory=utc_now)
    cursor_buffer: List[CursorSample] = field(default_factory=list)
    cancel: threading.Event = field(default_factory=threading.Event)
    sampler: Optional[CursorSampler] = None
    ticker: Optional[threading.Thread] = None

    @property
    def state(self) -> RecordingState:
        return self.machine.state

    def duration_ms(self) -> int:
        return max(0, int((time.monotonic() - self.started_at) * 1000))


@dataclass
class ExportTaskRecord:
    task_id: str
    project_id: str
    profile: ExportProfile
    machine: ExportMachine = field(default_factory=ExportMachine)
    retries: int = 0
    last_error: Optional[StudioError] = None

    @property
    def state(self) -> ExportState:
        return self.machine.state

    def snapshot(self) -> dict:
        return {
            "taskId": self.task_id,
            "projectId": self.project_id,
            "status": self.state.value,
            "retries": self.retries,
            "lastError": self.last_error.to_dict() if self.last_error else None,
        }


class RuntimeContext:
    """Owns the session and export-task registries."""

    def __init__(self) -> None:
        self._sessions: Dict[str, RecordingSessionRecord] = {}
        self._tasks: Dict[str, ExportTaskRecord] = {}
        self._session_lock = threading.Lock()
        self._task_lock = threading.Lock()
        self._starting: Set[str] = set()

    # ── recording sessions ──────────────────────────────────────────

    def _recording_busy(self, project_id: str) -> bool:
        # caller holds _session_lock
        return project_id in self._starting or any(
            s.project_id == project_id and s.machine.is_active
            for s in self._sessions.values()
        )

    def reserve_project(self, project_id: str) -> None:
        """Claim *project_id* for a starting session before anything is spawned.

        The claim is dropped by :meth:`insert_session` or
        :meth:`release_project`.  A project that is recording, starting or
        exporting cannot be claimed.
        """
        with self._session_lock:
            if self._recording_busy(project_id):
                raise StudioError(
                    RECORDING_ALREADY_ACTIVE,
                    "a recording session is already active for this project",
                    "Stop the current recording before starting a new one",
                )
            if self.has_active_export(project_id):
                raise StudioError(
                    EXPORT_ALREADY_ACTIVE,
                    "an export of this project is reading its recording",
                    "Wait for the export to finish before recording again",
                )
            self._starting.add(project_id)

    def release_project(self, project_id: str) -> None:
        with self._session_lock:
            self._starting.discard(project_id)

    def insert_session(self, record: RecordingSessionRecord) -> None:
        with self._session_lock:
            for other in self._sessions.values():
                if other.project_id == record.project_id and other.machine.is_active:
                    raise StudioError(
                        RECORDING_ALREADY_ACTIVE,
                        "a recording session is already active for this project",
                        "Stop the current recording before starting a new one",
                    )
            self._sessions[record.session_id] = record
            self._starting.discard(record.project_id)

    def get_session(self, session_id: str) -> RecordingSessionRecord:
        with self._session_lock:
            record = self._sessions.get(session_id)
        if record is None:
            raise StudioError(SESSION_NOT_FOUND, f"session not found: {session_id}")
        return record

    def has_active_session(self, project_id: str) -> bool:
        """True while a session for *project_id* is starting, recording or paused."""
        with self._session_lock:
            return self._recording_busy(project_id)

    def transition_session(self, session_id: str,
                           action: Callable[[RecordingMachine], None]) -> RecordingState:
        """Apply *action* to the session's machine; returns the prior state."""
        with self._session_lock:
            record = self._sessions.get(session_id)
            if record is None:
                raise StudioError(SESSION_NOT_FOUND, f"session not found: {session_id}")
            previous = record.machine.state
            action(record.machine)
            return previous

    def rollback_session(self, session_id: str, previous: RecordingState) -> None:
        with self._session_lock:
            record = self._sessions.get(session_id)
            if record is not None:
                record.machine.rollback(previous)

    def session_state(self, session_id: str) -> Optional[RecordingState]:
        """Current state, or None once the session has left the registry."""
        with self._session_lock:
            record = self._sessions.get(session_id)
            return record.machine.state if record else None

    def remove_session(self, session_id: str) -> Optional[RecordingSessionRecord]:
        """Drop the session and cancel its tickers."""
        with self._session_lock:
            record = self._sessions.pop(session_id, None)
        if record is not None:
            record.cancel.set()
        return record

    def sessions(self) -> List[RecordingSessionRecord]:
        with self._session_lock:
            return list(self._sessions.values())

    # ── export tasks ────────────────────────────────────────────────

    def insert_export_task(self, record: ExportTaskRecord) -> None:
        # session lock first, same order as reserve_project
        with self._session_lock, self._task_lock:
            if self._recording_busy(record.project_id):
                raise StudioError(
                    RECORDING_ALREADY_ACTIVE,
                    "this project is still recording",
                    "Stop the recording before exporting",
                )
            for other in self._tasks.values():
                if other.project_id == record.project_id and other.machine.is_active:
                    raise StudioError(
                        EXPORT_ALREADY_ACTIVE,
                        "an export is already in progress for this project",
                        "Wait for the running export to finish",
                    )
            self._tasks[record.task_id] = record

    def has_active_export(self, project_id: str) -> bool:
        with self._task_lock:
            return any(
                t.project_id == project_id and t.machine.is_active
                for t in self._tasks.values()
            )

    def get_export_task(self, task_id: str) -> ExportTaskRecord:
        with self._task_lock:
            record = self._tasks.get(task_id)
        if record is None:
            raise StudioError(
                EXPORT_TASK_NOT_FOUND,
                f"export task not found: {task_id}",
                "Start a new export",
            )
        return record

    def transition_task(self, task_id: str, action: Callable[[ExportMachine], None],
                        error: Optional[StudioError] = None) -> ExportState:
        with self._task_lock:
            record = self._tasks.get(task_id)
            if record is None:
                raise StudioError(EXPORT_TASK_NOT_FOUND, f"export task not found: {task_id}")
            action(record.machine)
            if error is not None:
                record.last_error = error
            return record.machine.state

    def task_snapshot(self, task_id: str) -> dict:
        with self._task_lock:
            record = self._tasks.get(task_id)
            if record is not None:
                return record.snapshot()
        raise StudioError(
            EXPORT_TASK_NOT_FOUND,
            f"export task not found: {task_id}",
            "Start a new export",
        )

    def export_tasks(self) -> List[ExportTaskRecord]:
        with self._task_lock:
            return list(self._tasks.values())

"""Guarded state machines for recording sessions and export tasks.

Each transition either succeeds or raises :class:`StudioError` with
``INVALID_RECORDING_STATE`` / ``INVALID_EXPORT_STATE`` and leaves the
state untouched.
"""

from enum import Enum
from typing import Optional

from .errors import StudioError, INVALID_RECORDING_STATE, INVALID_EXPORT_STATE


class RecordingState(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"
    PAUSED = "paused"
    STOPPED = "stopped"
    ERROR = "error"


class ExportState(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    FALLBACK = "fallback"
    SUCCESS = "success"
    FAILED = "failed"


ACTIVE_RECORDING_STATES = (RecordingState.RECORDING, RecordingState.PAUSED)
ACTIVE_EXPORT_STATES = (ExportState.QUEUED, ExportState.RUNNING, ExportState.FALLBACK)


class RecordingMachine:
    """Idle → Recording → {Paused ⇄ Recording} → Stopped, or → Error."""

    def __init__(self, state: RecordingState = RecordingState.IDLE) -> None:
        self._state = state

    @property
    def state(self) -> RecordingState:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._state in ACTIVE_RECORDING_STATES

    def _require(self, allowed, message: str, suggestion: Optional[str] = None) -> None:
        if self._state not in allowed:
            raise StudioError(INVALID_RECORDING_STATE, message, suggestion)

    def start(self) -> None:
        self._require(
            (RecordingState.IDLE,),
            "only idle state can start recording",
            "Wait for the current session to stop first",
        )
        self._state = RecordingState.RECORDING

    def pause(self) -> None:
        self._require(
            (RecordingState.RECORDING,),
            "only recording state can be paused",
            "Check whether recording has started",
        )
        self._state = RecordingState.PAUSED

    def resume(self) -> None:
        self._require(
            (RecordingState.PAUSED,),
            "only paused state can resume",
            "Pause recording before resuming",
        )
        self._state = RecordingState.RECORDING

    def stop(self) -> None:
        self._require(
            ACTIVE_RECORDING_STATES,
            "only recording or paused state can stop",
            "Start recording before stopping",
        )
        self._state = RecordingState.STOPPED

    def fail(self) -> None:
        """Force the error state after an external process failure."""
        self._require(ACTIVE_RECORDING_STATES, "only a live session can fail")
        self._state = RecordingState.ERROR

    def rollback(self, previous: RecordingState) -> None:
        """Undo a transition whose control command never reached the encoder."""
        self._state = previous


class ExportMachine:
    """Queued → Running → {Fallback} → Success; anything but Success → Failed."""

    def __init__(self, state: ExportState = ExportState.QUEUED) -> None:
        self._state = state

    @property
    def state(self) -> ExportState:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._state in ACTIVE_EXPORT_STATES

    def start(self) -> None:
        if self._state != ExportState.QUEUED:
            raise StudioError(INVALID_EXPORT_STATE, "only queued task can start")
        self._state = ExportState.RUNNING

    def fallback(self) -> None:
        if self._state != ExportState.RUNNING:
            raise StudioError(INVALID_EXPORT_STATE, "fallback only allowed while running")
        self._state = ExportState.FALLBACK

    def success(self) -> None:
        if self._state not in (ExportState.RUNNING, ExportState.FALLBACK):
            raise StudioError(
                INVALID_EXPORT_STATE, "success only allowed from running or fallback"
            )
        self._state = ExportState.SUCCESS

    def fail(self) -> None:
        if self._state == ExportState.SUCCESS:
            raise StudioError(INVALID_EXPORT_STATE, "cannot fail a successful task")
        self._state = ExportState.FAILED

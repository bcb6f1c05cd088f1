"""Cursor sampler — polls the pointer while a session is recording.

Uses Win32 ``GetCursorPos`` for **physical pixel** coordinates so they
match the gdigrab capture.  Other platforms have no pointer source and
the exporter substitutes a synthetic track.
"""

import logging
import sys
import threading
import time
from typing import Callable, List, Optional, Tuple

from .config import CURSOR_TICK_MS
from .models import CursorSample

logger = logging.getLogger(__name__)

if sys.platform == "win32":
    import ctypes
    import ctypes.wintypes as wintypes


def current_cursor_position() -> Optional[Tuple[float, float]]:
    """Cursor position in physical screen pixels, or None if unavailable."""
    if sys.platform != "win32":
        return None
    pt = wintypes.POINT()
    if not ctypes.windll.user32.GetCursorPos(ctypes.byref(pt)):
        return None
    return float(pt.x), float(pt.y)


class CursorSampler:
    """Appends a :class:`CursorSample` every tick while *is_recording* holds.

    Timestamps are relative to *started_at* (a ``time.monotonic()``
    value).  The sampler is the only writer of *buffer*; the owner drains
    it after :meth:`join`.
    """

    def __init__(
        self,
        started_at: float,
        buffer: List[CursorSample],
        is_recording: Callable[[], Optional[bool]],
        cancel: threading.Event,
        interval_ms: int = CURSOR_TICK_MS,
        position_source: Callable[[], Optional[Tuple[float, float]]] = current_cursor_position,
    ) -> None:
        self._started_at = started_at
        self._buffer = buffer
        self._is_recording = is_recording
        self._cancel = cancel
        self._interval_s = interval_ms / 1000.0
        self._position_source = position_source
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        self._thread = threading.Thread(target=self._run, daemon=True, name="cursor-sampler")
        self._thread.start()

    def join(self, timeout: float = 1.0) -> None:
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)

    def poll_once(self) -> Optional[CursorSample]:
        """Take one sample; returns None when nothing was appended."""
        if not self._is_recording():
            return None
        pos = self._position_source()
        if pos is None:
            return None
        elapsed = max(0, int((time.monotonic() - self._started_at) * 1000))
        sample = CursorSample(t_ms=elapsed, x=pos[0], y=pos[1])
        self._buffer.append(sample)
        return sample

    def _run(self) -> None:
        while not self._cancel.wait(self._interval_s):
            if self._is_recording() is None:
                break
            self.poll_once()
        logger.debug("Cursor sampler stopped with %d samples", len(self._buffer))

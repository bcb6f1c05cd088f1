"""Tests for studio.mouse_tracker — CursorSampler."""

import threading
import time

from studio.mouse_tracker import CursorSampler


def _sampler(buffer, recording=True, position=(10.0, 20.0), interval_ms=120):
    state = {"recording": recording}
    sampler = CursorSampler(
        started_at=time.monotonic(),
        buffer=buffer,
        is_recording=lambda: state["recording"],
        cancel=threading.Event(),
        interval_ms=interval_ms,
        position_source=lambda: position,
    )
    return sampler, state


class TestPollOnce:
    def test_appends_relative_sample(self) -> None:
        buffer = []
        sampler, _ = _sampler(buffer)
        sample = sampler.poll_once()
        assert sample is not None
        assert buffer == [sample]
        assert (sample.x, sample.y) == (10.0, 20.0)
        assert sample.t_ms >= 0

    def test_skips_while_paused(self) -> None:
        buffer = []
        sampler, _ = _sampler(buffer, recording=False)
        assert sampler.poll_once() is None
        assert buffer == []

    def test_skips_without_position(self) -> None:
        buffer = []
        sampler, _ = _sampler(buffer, position=None)
        assert sampler.poll_once() is None
        assert buffer == []


class TestThread:
    def test_stops_when_session_gone(self) -> None:
        buffer = []
        sampler, state = _sampler(buffer, interval_ms=1)
        sampler.start()
        state["recording"] = None
        sampler.join(timeout=2.0)
        assert not sampler._thread.is_alive()

    def test_stops_on_cancel(self) -> None:
        buffer = []
        cancel = threading.Event()
        sampler = CursorSampler(time.monotonic(), buffer, lambda: True, cancel,
                                interval_ms=1, position_source=lambda: (1.0, 1.0))
        sampler.start()
        time.sleep(0.05)
        cancel.set()
        sampler.join(timeout=2.0)
        assert not sampler._thread.is_alive()
        ts = [s.t_ms for s in buffer]
        assert ts == sorted(ts)

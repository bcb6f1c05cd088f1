"""Camera motion engine — turns a raw cursor track into a smooth camera path.

Each tick moves the virtual camera a fraction of the way toward the
cursor (exponential smoothing), with two independent caps:

* displacement per tick is limited to ``max_speed_px`` — when capped the
  step vector is scaled down, so direction is preserved;
* zoom change per tick is limited to ``max_zoom_step`` (sign-preserving),
  and the resulting zoom is clamped to ``[1.0, 2.0]``.

The engine is pure: no I/O, no state.  :func:`evaluate_metrics` derives
the two UX numbers used to tune presets — transition latency and idle
jitter.
"""

import logging
import math
from dataclasses import dataclass
from typing import List

import numpy as np

from .models import CursorSample, MotionPoint, MotionProfile

logger = logging.getLogger(__name__)


MIN_ZOOM = 1.0
MAX_ZOOM = 2.0
LATENCY_PROGRESS = 0.75     # fraction of the final displacement that counts as "arrived"
AXIS_MOTION_MIN = 1.0       # axes that moved less than this are ignored for latency
JITTER_TAIL = 10            # points at the end of the path used for idle jitter
SYNTHETIC_STEP_MS = 120     # sample spacing of the synthetic fallback track


@dataclass
class MotionConfig:
    smoothing: float = 0.68
    max_speed_px: float = 80.0
    max_zoom_step: float = 0.08


# Intensity → base responsiveness curve
INTENSITY_PRESETS = {
    "low":    MotionConfig(smoothing=0.72, max_speed_px=120.0, max_zoom_step=0.05),
    "medium": MotionConfig(smoothing=0.56, max_speed_px=260.0, max_zoom_step=0.10),
    "high":   MotionConfig(smoothing=0.42, max_speed_px=360.0, max_zoom_step=0.14),
}

# Zoom the camera settles at while following, before the user's cap
INTENSITY_ZOOM = {
    "low": 1.03,
    "medium": 1.08,
    "high": 1.14,
}


@dataclass
class MotionMetrics:
    transition_latency_ms: int = 0
    idle_jitter_ratio: float = 0.0


def _clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


def smooth_motion(prev: MotionPoint, target: MotionPoint, cfg: MotionConfig) -> MotionPoint:
    """Advance the camera one tick from *prev* toward *target*."""
    follow = 1.0 - _clamp(cfg.smoothing, 0.0, 1.0)
    dx = (target.x - prev.x) * follow
    dy = (target.y - prev.y) * follow
    distance = math.hypot(dx, dy)
    if distance > cfg.max_speed_px:
        ratio = cfg.max_speed_px / distance
        dx *= ratio
        dy *= ratio

    dz = (target.zoom - prev.zoom) * follow
    if abs(dz) > cfg.max_zoom_step:
        dz = math.copysign(cfg.max_zoom_step, dz)

    return MotionPoint(
        x=prev.x + dx,
        y=prev.y + dy,
        zoom=_clamp(prev.zoom + dz, MIN_ZOOM, MAX_ZOOM),
    )


def profile_to_config(profile: MotionProfile) -> MotionConfig:
    """Blend the intensity preset 50/50 with the user's smoothing."""
    base = INTENSITY_PRESETS.get(profile.intensity, INTENSITY_PRESETS["medium"])
    return MotionConfig(
        smoothing=_clamp((base.smoothing + profile.smoothing) * 0.5, 0.0, 1.0),
        max_speed_px=base.max_speed_px,
        max_zoom_step=base.max_zoom_step,
    )


def intensity_zoom(profile: MotionProfile) -> float:
    base = INTENSITY_ZOOM.get(profile.intensity, INTENSITY_ZOOM["medium"])
    return min(base, _clamp(profile.max_zoom, MIN_ZOOM, MAX_ZOOM))


def compute_motion_path(samples: List[CursorSample], profile: MotionProfile) -> List[MotionPoint]:
    """Smooth *samples* into one camera point per sample.

    The first point sits on the first sample at zoom 1.0.
    """
    if not samples:
        return []
    config = profile_to_config(profile)
    target_zoom = intensity_zoom(profile)
    current = MotionPoint(x=samples[0].x, y=samples[0].y, zoom=1.0)
    path = [current]
    for sample in samples[1:]:
        current = smooth_motion(current, MotionPoint(sample.x, sample.y, target_zoom), config)
        path.append(current)
    return path


def evaluate_metrics(samples: List[CursorSample], path: List[MotionPoint]) -> MotionMetrics:
    """Transition latency and idle jitter of a smoothed *path*.

    Latency is the time until the path first covers 75% of the final
    sample's displacement, averaged over the axes that actually moved.
    If the path never gets there, latency is the whole track's span.
    Jitter is the mean absolute deviation of the last ten x-coordinates
    from their mean, relative to that mean.
    """
    if len(samples) < 2 or len(path) < 2:
        return MotionMetrics()

    start = samples[0]
    end = samples[-1]
    total_dx = abs(end.x - start.x)
    total_dy = abs(end.y - start.y)
    has_x = total_dx >= AXIS_MOTION_MIN
    has_y = total_dy >= AXIS_MOTION_MIN
    axis_count = int(has_x) + int(has_y)

    latency = None
    if axis_count:
        for index, point in enumerate(path[: len(samples)]):
            progress = 0.0
            if has_x:
                progress += _clamp(abs(point.x - start.x) / total_dx, 0.0, 1.0)
            if has_y:
                progress += _clamp(abs(point.y - start.y) / total_dy, 0.0, 1.0)
            if progress / axis_count >= LATENCY_PROGRESS:
                latency = max(0, samples[index].t_ms - start.t_ms)
                break
        if latency is None:
            latency = max(0, end.t_ms - start.t_ms)

    tail = np.array([p.x for p in path[-JITTER_TAIL:]], dtype=np.float64)
    center = float(tail.mean())
    jitter = float(np.abs(tail - center).mean())
    ratio = 0.0 if abs(center) < 1e-6 else jitter / abs(center)

    return MotionMetrics(transition_latency_ms=int(latency or 0), idle_jitter_ratio=ratio)


def evaluate_camera_motion(samples: List[CursorSample], profile: MotionProfile) -> dict:
    """Smooth *samples* with *profile* and report the UX metrics."""
    path = compute_motion_path(samples, profile)
    metrics = evaluate_metrics(samples, path)
    logger.info(
        "Camera motion (%s, smoothing=%.2f): latency=%dms jitter=%.4f over %d points",
        profile.intensity, profile.smoothing,
        metrics.transition_latency_ms, metrics.idle_jitter_ratio, len(path),
    )
    return {
        "pointCount": len(path),
        "transitionLatencyMs": metrics.transition_latency_ms,
        "idleJitterRatio": metrics.idle_jitter_ratio,
    }


# ── Track preparation ───────────────────────────────────────────────

def synthetic_track(duration_ms: int) -> List[CursorSample]:
    """Deterministic stand-in trajectory for sessions without pointer access."""
    duration_ms = max(0, int(duration_ms))
    track: List[CursorSample] = []
    for t in range(0, duration_ms + 1, SYNTHETIC_STEP_MS):
        track.append(_synthetic_sample(t))
    if track[-1].t_ms < duration_ms:
        track.append(_synthetic_sample(duration_ms))
    return track


def _synthetic_sample(t: int) -> CursorSample:
    return CursorSample(
        t_ms=t,
        x=200.0 + math.sin(t / 25.0) * 180.0 + t / 60.0,
        y=160.0 + math.cos(t / 35.0) * 120.0,
    )


def complete_track(samples: List[CursorSample], duration_ms: int) -> List[CursorSample]:
    """Return a track covering ``[0, duration_ms]`` inclusive.

    Empty input becomes :func:`synthetic_track`.  Otherwise timestamps
    are clamped to the duration and ordered; the first position is
    pinned to 0 and the last position is held until *duration_ms* when
    the real samples stop short.
    """
    duration_ms = max(0, int(duration_ms))
    if not samples:
        return synthetic_track(duration_ms)
    track = sorted(
        (CursorSample(min(max(0, s.t_ms), duration_ms), s.x, s.y) for s in samples),
        key=lambda s: s.t_ms,
    )
    if track[0].t_ms > 0:
        track.insert(0, CursorSample(0, track[0].x, track[0].y))
    if track[-1].t_ms < duration_ms:
        track.append(CursorSample(duration_ms, track[-1].x, track[-1].y))
    return track

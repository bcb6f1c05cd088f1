"""Crop expression synthesizer — autoframing evaluated inside ffmpeg.

The export crop follows the cursor, but the crop position has to be a
function of ffmpeg's encode-time clock ``t`` rather than a list of
precomputed frames.  So the focal center is simulated here at full
cursor-sample resolution and then compiled into a nested piecewise-linear
``if(lt(t,…),…)`` expression.

The follow model is a *hybrid* of the motion engine's smoothing:

* **dead zone** — inside a small radius around the focal center the
  center only creeps toward the cursor (micro-follow), so it never looks
  stuck; outside it moves by the excess distance times a follow gain;
* **idle recentre** — once the cursor has been still longer than the
  (smoothing-adjusted) idle threshold, the center decays back to the
  middle of the frame.

All gains are derived from ``intensity`` and ``smoothing``; none is
tunable on its own.
"""

import logging
import math
from dataclasses import dataclass
from typing import List, Optional, Tuple

from .models import CursorSample, MotionProfile, TimelineConfig, ExportProfile
from .motion_engine import INTENSITY_ZOOM, MIN_ZOOM, MAX_ZOOM

logger = logging.getLogger(__name__)


# ffmpeg's expression parser has a nesting limit; keep well below it.
MAX_SEGMENTS = 64

CURSOR_MIN = 0.02           # normalized cursor bounds
CURSOR_MAX = 0.98
CENTER_MIN = 0.03           # normalized focal-center bounds
CENTER_MAX = 0.97

HIGHLIGHT_FILTER = "eq=contrast=1.03:saturation=1.06"

# (dead zone, follow gain, micro-follow gain) per intensity
_HYBRID_BASE = {
    "low":    (0.050, 0.22, 0.05),
    "medium": (0.036, 0.30, 0.07),
    "high":   (0.026, 0.38, 0.10),
}

_OUTPUT_SIZES = {
    ("1080p", "16:9"): (1920, 1080),
    ("1080p", "9:16"): (1080, 1920),
    ("1080p", "1:1"): (1080, 1080),
    ("720p", "16:9"): (1280, 720),
    ("720p", "9:16"): (720, 1280),
    ("720p", "1:1"): (720, 720),
}


@dataclass
class HybridSettings:
    dead_zone: float
    follow_gain: float
    recenter_gain: float
    micro_follow_gain: float
    movement_epsilon: float


def _clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


def responsiveness(smoothing: float) -> float:
    """Low smoothing = more aggressive camera."""
    return _clamp(1.0 - smoothing, 0.0, 1.0)


def hybrid_settings(intensity: str, smoothing: float) -> HybridSettings:
    r = responsiveness(smoothing)
    base_dead_zone, base_follow, base_micro = _HYBRID_BASE.get(intensity, _HYBRID_BASE["medium"])
    follow_gain = _clamp(base_follow + r * 0.30, 0.18, 0.72)
    dead_zone = _clamp(base_dead_zone - r * 0.012, 0.012, 0.08)
    return HybridSettings(
        dead_zone=dead_zone,
        follow_gain=follow_gain,
        recenter_gain=_clamp(follow_gain * 0.56, 0.10, 0.36),
        micro_follow_gain=_clamp(base_micro + r * 0.06, 0.03, 0.22),
        movement_epsilon=_clamp(dead_zone * 0.10, 0.003, 0.018),
    )


def effective_idle_threshold_ms(idle_threshold_ms: float, smoothing: float) -> float:
    """Smoother profiles wait a little longer before recentring."""
    scaled = _clamp(idle_threshold_ms, 120.0, 900.0) * (0.65 + _clamp(smoothing, 0.0, 1.0) * 0.20)
    return _clamp(scaled, 120.0, 900.0)


def follow_with_dead_zone(center: float, target: float, settings: HybridSettings) -> float:
    """Move one axis of the focal center toward *target*."""
    delta = target - center
    if abs(delta) <= settings.dead_zone:
        return _clamp(center + delta * settings.micro_follow_gain, CENTER_MIN, CENTER_MAX)
    overshoot = math.copysign(abs(delta) - settings.dead_zone, delta)
    return _clamp(center + overshoot * settings.follow_gain, CENTER_MIN, CENTER_MAX)


def camera_zoom(profile: MotionProfile) -> float:
    """Zoom factor for the export crop.

    Starts from the intensity's base zoom and uses part of the headroom
    up to the user's cap, more of it the less smoothing is requested.
    """
    if not profile.enabled:
        return 1.0
    base = INTENSITY_ZOOM.get(profile.intensity, INTENSITY_ZOOM["medium"])
    cap = _clamp(profile.max_zoom, MIN_ZOOM, MAX_ZOOM)
    room = max(cap - base, 0.0)
    adaptive = base + room * (0.35 + responsiveness(profile.smoothing) * 0.65)
    return _clamp(min(adaptive, cap), MIN_ZOOM, MAX_ZOOM)


def smooth_focal_path(
    samples: List[CursorSample],
    source_w: float,
    source_h: float,
    profile: MotionProfile,
) -> List[Tuple[float, float, float]]:
    """Simulate the focal center over every sample.

    Returns ``(t_sec, center_x, center_y)`` tuples in normalized frame
    coordinates.
    """
    if not samples:
        return []
    safe_w = max(source_w, 1.0)
    safe_h = max(source_h, 1.0)
    settings = hybrid_settings(profile.intensity, profile.smoothing)
    idle_threshold = effective_idle_threshold_ms(profile.idle_threshold_ms, profile.smoothing)

    normalized = [
        (
            s.t_ms / 1000.0,
            _clamp(s.x / safe_w, CURSOR_MIN, CURSOR_MAX),
            _clamp(s.y / safe_h, CURSOR_MIN, CURSOR_MAX),
        )
        for s in samples
    ]

    t0, cx, cy = normalized[0]
    out = [(t0, cx, cy)]
    prev_t, prev_x, prev_y = normalized[0]
    idle_ms = 0.0
    for t, nx, ny in normalized[1:]:
        dt_ms = max(t - prev_t, 0.0) * 1000.0
        if math.hypot(nx - prev_x, ny - prev_y) <= settings.movement_epsilon:
            idle_ms += dt_ms
        else:
            idle_ms = 0.0

        if idle_ms >= idle_threshold:
            cx += (0.5 - cx) * settings.recenter_gain
            cy += (0.5 - cy) * settings.recenter_gain
        else:
            cx = follow_with_dead_zone(cx, nx, settings)
            cy = follow_with_dead_zone(cy, ny, settings)
        out.append((t, cx, cy))
        prev_t, prev_x, prev_y = t, nx, ny
    return out


def downsample(points: List[tuple], max_segments: int = MAX_SEGMENTS) -> List[tuple]:
    """Keep at most ``max_segments`` segments, always keeping both ends."""
    if not points:
        return []
    step = max(1, math.ceil(len(points) / max_segments))
    kept = points[::step]
    last = points[-1]
    if abs(kept[-1][0] - last[0]) > 0.001:
        kept.append(last)
    return kept


def piecewise_expr(points: List[Tuple[float, float]]) -> str:
    """Compile ``(t_sec, value)`` knots into a nested ffmpeg expression.

    Linear between knots, constant before the first and after the last.
    The innermost branch is the latest segment.
    """
    if not points:
        return "0.5"
    if len(points) == 1:
        return f"{points[0][1]:.6f}"
    expr = f"{points[-1][1]:.6f}"
    for i in range(len(points) - 2, -1, -1):
        t0, v0 = points[i]
        t1, v1 = points[i + 1]
        dt = max(t1 - t0, 0.001)
        seg = f"({v0:.6f}+((t-{t0:.3f})/{dt:.3f})*{v1 - v0:.6f})"
        expr = f"if(lt(t,{t1:.3f}),{seg},{expr})"
    first_t, first_v = points[0]
    return f"if(lt(t,{first_t:.3f}),{first_v:.6f},{expr})"


def build_cursor_position_expr(
    samples: List[CursorSample],
    source_w: float,
    source_h: float,
    profile: MotionProfile,
) -> Optional[Tuple[str, str]]:
    """Focal-center expressions ``(nx, ny)`` for the crop, or None."""
    full = smooth_focal_path(samples, source_w, source_h, profile)
    if not full:
        return None
    knots = downsample(full)
    logger.debug("Focal path: %d samples → %d knots", len(full), len(knots))
    x_expr = piecewise_expr([(t, x) for t, x, _ in knots])
    y_expr = piecewise_expr([(t, y) for t, _, y in knots])
    return x_expr, y_expr


# ── Crop window ─────────────────────────────────────────────────────

def crop_size_exprs(target_ar: float, zoom: float) -> Tuple[str, str]:
    """ffmpeg ``w``/``h`` expressions: letterbox-safe, even, divided by zoom."""
    crop_w = (
        f"if(gt(iw/ih,{target_ar:.6f}),trunc((ih*{target_ar:.6f})/{zoom:.6f}/2)*2,"
        f"trunc(iw/{zoom:.6f}/2)*2)"
    )
    crop_h = (
        f"if(gt(iw/ih,{target_ar:.6f}),trunc(ih/{zoom:.6f}/2)*2,"
        f"trunc((iw/{target_ar:.6f})/{zoom:.6f}/2)*2)"
    )
    return crop_w, crop_h


def static_crop_window(
    source_w: int, source_h: int, target_ar: float, zoom: float = 1.0,
) -> Tuple[int, int, int, int]:
    """Numeric twin of the centered crop: ``(w, h, x, y)`` in pixels."""
    zoom = max(zoom, 1e-6)
    if source_w / source_h > target_ar:
        w = int(source_h * target_ar / zoom / 2) * 2
        h = int(source_h / zoom / 2) * 2
    else:
        w = int(source_w / zoom / 2) * 2
        h = int(source_w / target_ar / zoom / 2) * 2
    return w, h, (source_w - w) // 2, (source_h - h) // 2


def build_crop_filter(
    profile: MotionProfile,
    samples: List[CursorSample],
    target_ar: float,
    source_w: float,
    source_h: float,
) -> str:
    """The ``crop=`` filter for an export.

    Follows the cursor when camera motion is enabled and a track exists;
    otherwise a static centered window at zoom 1.0.
    """
    if profile.enabled:
        exprs = build_cursor_position_expr(samples, source_w, source_h, profile)
        if exprs is not None:
            nx_expr, ny_expr = exprs
            crop_w, crop_h = crop_size_exprs(target_ar, camera_zoom(profile))
            x = f"max(0,min(iw-ow,iw*({nx_expr})-ow/2))"
            y = f"max(0,min(ih-oh,ih*({ny_expr})-oh/2))"
            return f"crop=w='{crop_w}':h='{crop_h}':x='{x}':y='{y}'"
        logger.info("No cursor track, using a static centered crop")

    if source_w > 0 and source_h > 0:
        w, h, x, y = static_crop_window(int(source_w), int(source_h), target_ar)
        logger.info("Static crop %dx%d at (%d,%d)", w, h, x, y)
    crop_w, crop_h = crop_size_exprs(target_ar, 1.0)
    return f"crop=w='{crop_w}':h='{crop_h}':x='(iw-ow)/2':y='(ih-oh)/2'"


def output_resolution(resolution: str, aspect_ratio: str) -> Tuple[int, int]:
    return _OUTPUT_SIZES.get((resolution, aspect_ratio), (1920, 1080))


def build_video_filters(
    motion: MotionProfile,
    timeline: TimelineConfig,
    export: ExportProfile,
    samples: List[CursorSample],
    source_size: Optional[Tuple[int, int]] = None,
) -> str:
    """Complete ``-vf`` chain: crop, optional highlight, scale, SAR/DAR."""
    target_w, target_h = output_resolution(export.resolution, timeline.aspect_ratio)
    source_w, source_h = source_size or (target_w, target_h)
    filters = [
        build_crop_filter(motion, samples, target_w / target_h, source_w, source_h),
    ]
    if timeline.cursor_highlight_enabled:
        filters.append(HIGHLIGHT_FILTER)
    filters.append(f"scale={target_w}:{target_h}")
    filters.append("setsar=1")
    filters.append(f"setdar={target_w}/{target_h}")
    return ",".join(filters)

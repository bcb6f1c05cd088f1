"""Tests for studio.crop_expression — hybrid follow, piecewise expressions, crop filters."""

import logging

import pytest

from studio.crop_expression import (
    CENTER_MAX,
    CENTER_MIN,
    HIGHLIGHT_FILTER,
    MAX_SEGMENTS,
    build_crop_filter,
    build_cursor_position_expr,
    build_video_filters,
    camera_zoom,
    crop_size_exprs,
    downsample,
    effective_idle_threshold_ms,
    follow_with_dead_zone,
    hybrid_settings,
    output_resolution,
    piecewise_expr,
    responsiveness,
    smooth_focal_path,
    static_crop_window,
)
from studio.models import CursorSample, ExportProfile, MotionProfile, TimelineConfig


# ── Hybrid settings ─────────────────────────────────────────────────


class TestHybridSettings:
    def test_responsiveness_is_inverse_smoothing(self) -> None:
        assert responsiveness(0.0) == 1.0
        assert responsiveness(1.0) == 0.0
        assert responsiveness(1.7) == 0.0

    def test_medium_values(self) -> None:
        s = hybrid_settings("medium", 0.5)
        assert s.follow_gain == pytest.approx(0.30 + 0.5 * 0.30)
        assert s.dead_zone == pytest.approx(0.036 - 0.5 * 0.012)
        assert s.recenter_gain == pytest.approx(s.follow_gain * 0.56)
        assert s.micro_follow_gain == pytest.approx(0.07 + 0.5 * 0.06)
        assert s.movement_epsilon == pytest.approx(0.003)

    @pytest.mark.parametrize("intensity", ["low", "medium", "high"])
    @pytest.mark.parametrize("smoothing", [0.0, 0.3, 0.7, 1.0])
    def test_all_gains_within_bounds(self, intensity, smoothing) -> None:
        s = hybrid_settings(intensity, smoothing)
        assert 0.18 <= s.follow_gain <= 0.72
        assert 0.012 <= s.dead_zone <= 0.08
        assert 0.10 <= s.recenter_gain <= 0.36
        assert 0.03 <= s.micro_follow_gain <= 0.22
        assert 0.003 <= s.movement_epsilon <= 0.018

    def test_higher_intensity_follows_harder(self) -> None:
        assert hybrid_settings("high", 0.5).follow_gain > hybrid_settings("low", 0.5).follow_gain

    def test_idle_threshold_scaled_and_clamped(self) -> None:
        assert effective_idle_threshold_ms(500, 0.0) == pytest.approx(325.0)
        assert effective_idle_threshold_ms(500, 1.0) == pytest.approx(425.0)
        assert effective_idle_threshold_ms(50, 0.0) == pytest.approx(120.0)
        assert effective_idle_threshold_ms(5000, 1.0) == pytest.approx(765.0)


class TestDeadZoneFollow:
    def test_micro_follow_inside_dead_zone(self) -> None:
        s = hybrid_settings("medium", 0.5)
        moved = follow_with_dead_zone(0.5, 0.51, s)
        assert moved == pytest.approx(0.5 + 0.01 * s.micro_follow_gain)

    def test_follows_excess_outside_dead_zone(self) -> None:
        s = hybrid_settings("medium", 0.5)
        moved = follow_with_dead_zone(0.5, 0.7, s)
        assert moved == pytest.approx(0.5 + (0.2 - s.dead_zone) * s.follow_gain)

    def test_negative_direction(self) -> None:
        s = hybrid_settings("high", 0.0)
        assert follow_with_dead_zone(0.5, 0.1, s) < 0.5

    def test_center_clamped(self) -> None:
        s = hybrid_settings("high", 0.0)
        center = 0.5
        for _ in range(200):
            center = follow_with_dead_zone(center, 0.0, s)
        assert center == pytest.approx(CENTER_MIN)


class TestCameraZoom:
    def test_disabled_is_one(self) -> None:
        assert camera_zoom(MotionProfile(enabled=False, max_zoom=2.0)) == 1.0

    def test_never_above_cap(self) -> None:
        for intensity in ("low", "medium", "high"):
            for cap in (1.0, 1.05, 1.35, 2.0):
                zoom = camera_zoom(MotionProfile(intensity=intensity, max_zoom=cap, smoothing=0.0))
                assert 1.0 <= zoom <= cap

    def test_less_smoothing_uses_more_headroom(self) -> None:
        eager = camera_zoom(MotionProfile(smoothing=0.0, max_zoom=2.0))
        calm = camera_zoom(MotionProfile(smoothing=1.0, max_zoom=2.0))
        assert eager == pytest.approx(2.0)
        assert calm == pytest.approx(1.08 + 0.92 * 0.35)


# ── Focal path ──────────────────────────────────────────────────────


class TestFocalPath:
    def test_empty(self) -> None:
        assert smooth_focal_path([], 1920, 1080, MotionProfile()) == []

    def test_starts_on_first_normalized_sample(self) -> None:
        path = smooth_focal_path([CursorSample(0, 960, 540)], 1920, 1080, MotionProfile())
        assert path == [(0.0, 0.5, 0.5)]

    def test_cursor_normalized_into_margin(self) -> None:
        path = smooth_focal_path([CursorSample(0, -500, 99999)], 1920, 1080, MotionProfile())
        assert path[0][1] == pytest.approx(0.02)
        assert path[0][2] == pytest.approx(0.98)

    def test_recenters_after_idle(self) -> None:
        profile = MotionProfile(smoothing=0.0, idle_threshold_ms=120)
        samples = [CursorSample(0, 100, 100)]
        samples += [CursorSample(100 * i, 100, 100) for i in range(1, 60)]
        path = smooth_focal_path(samples, 1920, 1080, profile)
        assert path[-1][1] == pytest.approx(0.5, abs=0.01)
        assert path[-1][2] == pytest.approx(0.5, abs=0.01)

    def test_follows_moving_cursor(self, diagonal_track) -> None:
        path = smooth_focal_path(diagonal_track[:30], 1920, 1080, MotionProfile(smoothing=0.2))
        xs = [x for _, x, _ in path]
        assert xs[-1] > xs[0]
        assert all(CENTER_MIN <= x <= CENTER_MAX for x in xs)


# ── Downsampling and expressions ────────────────────────────────────


class TestDownsample:
    def test_empty(self) -> None:
        assert downsample([]) == []

    def test_short_input_untouched(self) -> None:
        pts = [(i * 0.1, 0.5, 0.5) for i in range(10)]
        assert downsample(pts) == pts

    def test_bounded_and_keeps_ends(self) -> None:
        pts = [(i * 0.01, i / 1000.0, 0.5) for i in range(1000)]
        kept = downsample(pts)
        assert len(kept) <= MAX_SEGMENTS + 1
        assert kept[0] == pts[0]
        assert kept[-1] == pts[-1]


class TestPiecewiseExpr:
    def test_empty_is_center(self) -> None:
        assert piecewise_expr([]) == "0.5"

    def test_single_point_constant(self) -> None:
        assert piecewise_expr([(1.0, 0.25)]) == "0.250000"

    def test_two_points(self) -> None:
        expr = piecewise_expr([(0.0, 0.2), (2.0, 0.6)])
        assert expr == (
            "if(lt(t,0.000),0.200000,"
            "if(lt(t,2.000),(0.200000+((t-0.000)/2.000)*0.400000),0.600000))"
        )

    def test_innermost_is_latest_segment(self) -> None:
        expr = piecewise_expr([(0.0, 0.1), (1.0, 0.2), (2.0, 0.3)])
        assert expr.count("if(lt(t,") == 3
        assert expr.endswith(",0.300000)))")
        assert expr.index("lt(t,1.000)") < expr.index("lt(t,2.000)")

    def test_nesting_bounded_for_long_tracks(self) -> None:
        samples = [CursorSample(i * 16, (i * 7) % 1920, (i * 3) % 1080) for i in range(5000)]
        exprs = build_cursor_position_expr(samples, 1920, 1080, MotionProfile())
        assert exprs is not None
        for expr in exprs:
            assert expr.count("if(") <= MAX_SEGMENTS + 2

    def test_no_track_no_expression(self) -> None:
        assert build_cursor_position_expr([], 1920, 1080, MotionProfile()) is None


# ── Crop window ─────────────────────────────────────────────────────


class TestCropWindow:
    def test_size_exprs_are_even_and_zoomed(self) -> None:
        w, h = crop_size_exprs(16 / 9, 1.25)
        assert "trunc(" in w and "/2)*2" in w
        assert "/1.250000/" in h

    def test_static_window_portrait_from_landscape(self) -> None:
        assert static_crop_window(1920, 1080, 9 / 16) == (606, 1080, 657, 0)

    def test_static_window_square(self) -> None:
        assert static_crop_window(1920, 1080, 1.0) == (1080, 1080, 420, 0)

    def test_static_window_zoomed(self) -> None:
        w, h, x, y = static_crop_window(1920, 1080, 1.0, zoom=2.0)
        assert (w, h) == (540, 540)
        assert (x, y) == (690, 270)

    def test_static_window_landscape_from_portrait(self) -> None:
        w, h, x, y = static_crop_window(1080, 1920, 16 / 9)
        assert w == 1080
        assert h == 606
        assert w % 2 == 0 and h % 2 == 0


class TestCropFilter:
    def test_empty_track_falls_back_to_static_center(self) -> None:
        profile = MotionProfile(enabled=True, max_zoom=2.0, smoothing=0.0)
        flt = build_crop_filter(profile, [], 16 / 9, 1920, 1080)
        static_w, static_h = crop_size_exprs(16 / 9, 1.0)
        assert flt == f"crop=w='{static_w}':h='{static_h}':x='(iw-ow)/2':y='(ih-oh)/2'"
        assert "/1.000000/" in flt

    def test_disabled_motion_is_static(self, diagonal_track) -> None:
        flt = build_crop_filter(MotionProfile(enabled=False), diagonal_track, 16 / 9, 1920, 1080)
        assert "x='(iw-ow)/2'" in flt
        assert "lt(t," not in flt

    def test_follow_crop_clamped_to_frame(self, diagonal_track) -> None:
        flt = build_crop_filter(MotionProfile(), diagonal_track, 16 / 9, 1920, 1080)
        assert "x='max(0,min(iw-ow,iw*(" in flt
        assert "y='max(0,min(ih-oh,ih*(" in flt
        assert "lt(t," in flt

    def test_static_crop_logs_pixel_window(self, caplog) -> None:
        with caplog.at_level(logging.INFO, logger="studio.crop_expression"):
            build_crop_filter(MotionProfile(enabled=False), [], 1.0, 1920, 1080)
        assert "Static crop 1080x1080 at (420,0)" in caplog.text


class TestVideoFilters:
    def test_output_resolution(self) -> None:
        assert output_resolution("720p", "9:16") == (720, 1280)
        assert output_resolution("1080p", "1:1") == (1080, 1080)
        assert output_resolution("4k", "16:9") == (1920, 1080)

    def test_chain_order_with_highlight(self, diagonal_track) -> None:
        vf = build_video_filters(
            MotionProfile(), TimelineConfig(aspect_ratio="9:16", cursor_highlight_enabled=True),
            ExportProfile(resolution="720p"), diagonal_track, (1920, 1080),
        )
        assert vf.startswith("crop=")
        assert vf.endswith(f"{HIGHLIGHT_FILTER},scale=720:1280,setsar=1,setdar=720/1280")

    def test_chain_without_highlight(self) -> None:
        vf = build_video_filters(
            MotionProfile(), TimelineConfig(cursor_highlight_enabled=False),
            ExportProfile(), [],
        )
        assert HIGHLIGHT_FILTER not in vf
        assert vf.endswith(",scale=1920:1080,setsar=1,setdar=1920/1080")

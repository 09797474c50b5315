"""
Tests for fixed-distance segmentation and efficiency normalization.
"""
import pytest

from services.sample_normalizer import make_point
from services.segment_analysis import (
    CHART_SEGMENT_M,
    FINGERPRINT_SEGMENT_M,
    compute_segments,
    label_for_score,
    normalize_efficiency,
    segment_series,
    usable_points,
)
from fixtures.series_fixtures import make_cardiac_drift_series, make_series, make_steady_series


class TestUsablePoints:
    def test_filters_standing_and_missing_hr(self):
        series = [
            make_point(distance_m=0.0, speed_ms=3.0, heart_rate=140),   # start line
            make_point(distance_m=10.0, speed_ms=0.4, heart_rate=140),  # standing
            make_point(distance_m=20.0, speed_ms=3.0, heart_rate=25),   # sensor noise
            make_point(distance_m=30.0, speed_ms=3.0, heart_rate=None),
            make_point(distance_m=40.0, speed_ms=3.0, heart_rate=141),
        ]
        assert [p.distance_m for p in usable_points(series)] == [40.0]


class TestSegmentation:
    def test_five_km_gives_twenty_segments(self):
        segments = segment_series(make_steady_series(distance_m=5000), FINGERPRINT_SEGMENT_M)
        assert len(segments) == 20
        assert [s.segment_number for s in segments] == list(range(1, 21))
        assert segments[0].start_distance_m == 0
        assert segments[0].end_distance_m == 250
        assert segments[-1].end_distance_m == 5000

    def test_segment_needs_three_points(self):
        # Points every 200 m: the first segment can only close at the 3rd point.
        series = make_series([(2000.0, 3.0, 150)], step_m=200.0)
        segments = compute_segments(series, FINGERPRINT_SEGMENT_M)
        assert segments[0].end_distance_m == 600
        assert all(s.point_count >= 3 for s in segments)

    def test_short_trailing_segment_is_dropped(self):
        # 5030 m: the 30 m tail is too short to become a segment.
        segments = segment_series(make_steady_series(distance_m=5030), FINGERPRINT_SEGMENT_M)
        assert len(segments) == 20

    def test_long_trailing_segment_is_kept(self):
        segments = segment_series(make_steady_series(distance_m=5100), FINGERPRINT_SEGMENT_M)
        assert len(segments) == 21
        assert segments[-1].start_distance_m == 5000
        assert segments[-1].end_distance_m == 5100

    def test_single_partial_segment_is_not_kept(self):
        segments = segment_series(make_steady_series(distance_m=200), FINGERPRINT_SEGMENT_M)
        assert segments == []

    def test_chart_kilometre_splits(self):
        segments = segment_series(make_steady_series(distance_m=3000), CHART_SEGMENT_M)
        assert len(segments) == 3
        assert segments[0].avg_pace_min_km == pytest.approx(5.0)

    def test_empty_series(self):
        assert segment_series([]) == []


class TestSegmentMetrics:
    def test_averages_and_rounding(self):
        segments = segment_series(make_steady_series(distance_m=1000, heart_rate=150), FINGERPRINT_SEGMENT_M)
        first = segments[0]
        assert first.avg_hr == 150
        assert first.avg_speed_ms == pytest.approx(3.33)
        assert first.avg_pace_min_km == pytest.approx(5.0)
        assert first.raw_efficiency == pytest.approx(22.22, abs=0.01)
        assert first.avg_power is None
        assert first.hr_efficiency_delta is None

    def test_power_based_efficiency(self):
        series = make_series([(1000.0, 4.0, 150)], power_watts=250.0)
        segments = compute_segments(series, FINGERPRINT_SEGMENT_M)
        assert segments[0].avg_power == 250
        assert segments[0].raw_efficiency == pytest.approx(16.0)

    def test_delta_against_previous_segment(self):
        series = make_series([(250.0, 3.0, 150), (500.0, 3.0, 165)])
        segments = compute_segments(series, FINGERPRINT_SEGMENT_M)
        # 20.0 -> 18.18 raw efficiency
        assert segments[1].hr_efficiency_delta == pytest.approx(-9.1)

    def test_delta_uses_reported_previous_averages(self):
        # First segment averages 3.004 m/s and 150.4 bpm, reported as 3.00 and 150.
        first = [
            make_point(distance_m=d, speed_ms=3.004, heart_rate=hr)
            for d, hr in ((50.0, 150), (100.0, 150), (150.0, 151), (200.0, 151), (250.0, 150))
        ]
        second = [make_point(distance_m=d, speed_ms=3.0, heart_rate=150) for d in (300.0, 350.0, 400.0, 450.0, 500.0)]
        segments = compute_segments(first + second, FINGERPRINT_SEGMENT_M)

        assert segments[0].avg_speed_ms == 3.0
        assert segments[0].avg_hr == 150
        assert segments[0].raw_efficiency == 19.97
        assert segments[1].hr_efficiency_delta == 0.0

    def test_scores_are_normalized_from_rounded_efficiency(self):
        segments = segment_series(make_steady_series(distance_m=1000, heart_rate=150), FINGERPRINT_SEGMENT_M)
        raws = [s.raw_efficiency for s in segments]
        assert raws == [round(r, 2) for r in raws]
        assert [s.efficiency_score for s in segments] == normalize_efficiency(raws)


class TestNormalization:
    def test_uniform_efficiency_collapses_to_zero(self):
        assert normalize_efficiency([5.0, 5.0, 5.0]) == [0, 0, 0]

    def test_linear_scaling(self):
        assert normalize_efficiency([10.0, 15.0, 20.0]) == [0, 50, 100]

    def test_scores_stay_in_range(self):
        segments = segment_series(make_cardiac_drift_series())
        scores = [s.efficiency_score for s in segments]
        assert min(scores) == 0
        assert max(scores) == 100
        assert all(0 <= s <= 100 for s in scores)

    def test_empty(self):
        assert normalize_efficiency([]) == []


class TestLabels:
    @pytest.mark.parametrize("score,label", [(100, "green"), (70, "green"), (69, "yellow"), (40, "yellow"), (39, "red"), (0, "red")])
    def test_thresholds(self, score, label):
        assert label_for_score(score) == label

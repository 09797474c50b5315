"""
Tests for provider sample normalization.

Every provider payload shape must come out as the same canonical series:
sorted by distance, pace derived from speed, unusable rows dropped.
"""
import pytest

from services.sample_normalizer import (
    ActivitySource,
    SampleAdapterRegistry,
    SeriesPoint,
    extract_rows,
    make_point,
    normalize_samples,
    pace_from_speed,
)
from fixtures.series_fixtures import make_garmin_samples, make_strava_streams, START_EPOCH_S


class TestPaceFromSpeed:
    def test_five_minute_kilometre(self):
        assert pace_from_speed(1000 / 300) == pytest.approx(5.0)

    def test_zero_or_missing_speed_has_no_pace(self):
        assert pace_from_speed(0) is None
        assert pace_from_speed(None) is None
        assert pace_from_speed(-1.0) is None

    def test_make_point_derives_pace(self):
        p = make_point(distance_m=100.0, speed_ms=4.0)
        assert p.pace_min_per_km == pytest.approx(4.1667, abs=1e-3)


class TestRegistry:
    def test_every_source_has_an_adapter(self):
        assert set(SampleAdapterRegistry.sources()) == set(ActivitySource)

    def test_unknown_source_string_is_rejected(self):
        with pytest.raises(ValueError):
            normalize_samples("suunto", [])


class TestExtractRows:
    def test_list_of_rows_passes_through(self):
        rows = [{"heartRate": 120}, {"heartRate": 121}]
        assert extract_rows(rows) == rows

    def test_parallel_arrays_become_rows(self):
        rows = extract_rows({"time": [0, 1], "heartrate": [100, 101]})
        assert rows == [{"time": 0, "heartrate": 100}, {"time": 1, "heartrate": 101}]

    def test_streams_wrapped_in_data_objects(self):
        rows = extract_rows({"time": {"data": [0, 1]}, "heartrate": {"data": [100, 101]}})
        assert rows[1] == {"time": 1, "heartrate": 101}

    def test_typed_stream_list(self):
        raw = [{"type": "time", "data": [0, 1]}, {"type": "distance", "data": [0.0, 3.0]}]
        assert extract_rows(raw) == [{"time": 0, "distance": 0.0}, {"time": 1, "distance": 3.0}]

    def test_nested_samples_key(self):
        raw = {"summary": {"id": 1}, "samples": [{"heartRate": 130}]}
        assert extract_rows(raw) == [{"heartRate": 130}]

    def test_uneven_arrays_are_padded_with_none(self):
        rows = extract_rows({"time": [0, 1, 2], "heartrate": [100]})
        assert rows[2] == {"time": 2, "heartrate": None}

    def test_none_is_empty(self):
        assert extract_rows(None) == []


class TestGarminNormalization:
    def test_rows_are_normalized_and_sorted(self):
        rows = make_garmin_samples(count=50)
        series = normalize_samples(ActivitySource.garmin, list(reversed(rows)))

        assert len(series) == 50
        distances = [p.distance_m for p in series]
        assert distances == sorted(distances)
        assert all(isinstance(p, SeriesPoint) for p in series)

    def test_epoch_seconds_become_milliseconds(self):
        series = normalize_samples(ActivitySource.garmin, make_garmin_samples(count=3))
        assert series[0].timestamp == START_EPOCH_S * 1000

    def test_millisecond_timestamps_are_kept(self):
        series = normalize_samples(
            ActivitySource.garmin,
            [{"timestamp": START_EPOCH_S * 1000, "distance": 0, "heartRate": 100}],
        )
        assert series[0].timestamp == START_EPOCH_S * 1000

    def test_iso_timestamps(self):
        series = normalize_samples(
            ActivitySource.polar,
            [{"timestamp": "2025-01-01T10:00:00Z", "distance": 5, "heart_rate": 100}],
        )
        assert series[0].timestamp == START_EPOCH_S * 1000

    def test_position_is_carried(self):
        series = normalize_samples(ActivitySource.garmin, make_garmin_samples(count=2))
        assert series[0].latitude == pytest.approx(52.0)
        assert series[0].longitude == pytest.approx(4.0)

    def test_out_of_range_position_is_discarded(self):
        series = normalize_samples(
            ActivitySource.garmin,
            [{"distance": 1, "heartRate": 100, "latitude": 95.0, "longitude": 4.0}],
        )
        assert series[0].latitude is None
        assert series[0].longitude is None

    def test_pace_is_never_read_from_input(self):
        series = normalize_samples(
            ActivitySource.garmin,
            [{"distance": 10, "speed": 4.0, "pace": 1.0, "heartRate": 140}],
        )
        assert series[0].pace_min_per_km == pytest.approx(1000 / 240)


class TestUnusableSamples:
    def test_non_dict_and_empty_rows_are_dropped(self):
        raw = [None, "garbage", {}, {"foo": 1}, {"distance": 10, "heartRate": 150}]
        series = normalize_samples(ActivitySource.garmin, raw)
        assert len(series) == 1
        assert series[0].heart_rate == 150

    def test_negative_distance_is_dropped(self):
        series = normalize_samples(ActivitySource.garmin, [{"distance": -5, "heartRate": 150}])
        assert series == []

    def test_zero_heart_rate_becomes_none(self):
        series = normalize_samples(ActivitySource.garmin, [{"distance": 5, "speed": 3.0, "heartRate": 0}])
        assert series[0].heart_rate is None

    def test_missing_distance_reuses_previous_value(self):
        raw = [
            {"distance": 100, "heartRate": 150},
            {"heartRate": 151},
            {"distance": 120, "heartRate": 152},
        ]
        series = normalize_samples(ActivitySource.garmin, raw)
        assert [p.distance_m for p in series] == [100, 100, 120]

    def test_empty_payload(self):
        assert normalize_samples(ActivitySource.garmin, []) == []
        assert normalize_samples(ActivitySource.strava, {}) == []


class TestSpeedBackfill:
    def test_speed_from_distance_and_time(self):
        raw = [
            {"timestamp": START_EPOCH_S, "distance": 0, "heartRate": 140},
            {"timestamp": START_EPOCH_S + 10, "distance": 30, "heartRate": 140},
        ]
        series = normalize_samples(ActivitySource.zepp_gpx, raw)
        assert series[0].speed_ms is None
        assert series[1].speed_ms == pytest.approx(3.0)
        assert series[1].pace_min_per_km == pytest.approx(1000 / 180)


class TestStravaNormalization:
    def test_parallel_streams(self):
        series = normalize_samples(ActivitySource.strava, make_strava_streams(count=20))
        assert len(series) == 20
        assert series[5].timestamp == 5000
        assert series[5].distance_m == pytest.approx(15.0)
        assert series[5].elevation_m == 12.0

    def test_distance_gap_is_integrated_from_velocity(self):
        streams = {
            "time": [0, 10, 20],
            "distance": [0.0, None, 60.0],
            "velocity_smooth": [3.0, 3.0, 3.0],
            "heartrate": [140, 141, 142],
        }
        series = normalize_samples(ActivitySource.strava, streams)
        assert [p.distance_m for p in series] == pytest.approx([0.0, 30.0, 60.0])


class TestGpxNormalization:
    def test_trackpoints_are_ordered_by_time(self):
        raw = [
            {"time": "2025-01-01T10:00:20Z", "distance": 40, "hr": 150},
            {"time": "2025-01-01T10:00:00Z", "distance": 0, "hr": 148},
            {"time": "2025-01-01T10:00:10Z", "distance": 20, "hr": 149},
        ]
        series = normalize_samples(ActivitySource.strava_gpx, raw)
        assert [p.heart_rate for p in series] == [148, 149, 150]
        assert series[2].speed_ms == pytest.approx(2.0)


class TestSeriesPointSerialization:
    def test_to_dict_can_hide_timestamp_and_position(self):
        p = make_point(distance_m=1.0, speed_ms=3.0, timestamp=1, latitude=1.0, longitude=2.0)
        d = p.to_dict(include_timestamp=False, include_position=False)
        assert "timestamp" not in d
        assert "latitude" not in d and "longitude" not in d
        assert d["distance_m"] == 1.0

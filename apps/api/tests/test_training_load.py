"""
Unit tests for the training load scorer (strain, ATL/CTL, fitness score).
"""
import math
from datetime import date, timedelta

import pytest

from services.training_load import (
    DEFAULT_STRAIN_CONFIG,
    StrainConfig,
    StrainInput,
    aggregate_daily_strain,
    calculate_strain,
    capacity_score,
    compute_fitness_score,
    compute_rolling_loads,
    consistency_score,
    intensity_multiplier,
    recovery_balance_score,
    sport_multiplier,
)

TARGET = date(2025, 3, 1)


def _activity(**overrides):
    values = dict(activity_date=TARGET, duration_seconds=3600, activity_type="other")
    values.update(overrides)
    return StrainInput(**values)


class TestIntensity:
    def test_hr_ratio(self):
        assert intensity_multiplier(_activity(avg_hr=144)) == pytest.approx(0.8)

    def test_hr_is_clamped(self):
        assert intensity_multiplier(_activity(avg_hr=60)) == 0.5
        assert intensity_multiplier(_activity(avg_hr=400)) == 2.0

    def test_pace_ratio_without_hr(self):
        assert intensity_multiplier(_activity(avg_pace_min_km=5.0)) == pytest.approx(1.2)

    def test_hr_wins_over_pace(self):
        assert intensity_multiplier(_activity(avg_hr=180, avg_pace_min_km=3.0)) == pytest.approx(1.0)

    def test_neutral_without_either(self):
        assert intensity_multiplier(_activity()) == 1.0


class TestSportMultiplier:
    @pytest.mark.parametrize("activity_type,expected", [
        ("Running", 1.2),
        ("trail_running", 1.2),
        ("ROAD_CYCLING", 1.0),
        ("open_water_swimming", 1.3),
        ("strength_training", 0.8),
        ("Yoga", 0.3),
        ("walking", 0.4),
        ("hiking", 0.7),
        ("rowing", 1.0),
        (None, 1.0),
    ])
    def test_substring_match(self, activity_type, expected):
        assert sport_multiplier(activity_type) == expected


class TestStrain:
    def test_short_activity_scores_zero(self):
        assert calculate_strain(_activity(duration_seconds=299)) == 0.0

    def test_one_hour_run(self):
        strain = calculate_strain(_activity(activity_type="running", avg_hr=150))
        expected = math.log(61) * 10 * (150 / 180) * 1.2
        assert strain == pytest.approx(round(expected, 2))

    def test_elevation_bonus_above_threshold(self):
        flat = calculate_strain(_activity(elevation_gain_m=50))
        hilly = calculate_strain(_activity(elevation_gain_m=300))
        assert flat == calculate_strain(_activity())
        assert hilly == pytest.approx(round(math.log(61) * 10 + math.log(4) * 5, 2))

    def test_custom_config(self):
        config = StrainConfig(duration_scale=20.0)
        assert calculate_strain(_activity(), config) == pytest.approx(2 * calculate_strain(_activity()), abs=0.02)

    def test_default_config_is_frozen(self):
        with pytest.raises(Exception):
            DEFAULT_STRAIN_CONFIG.duration_scale = 1.0


class TestDailyAggregation:
    def test_same_day_activities_sum_across_providers(self):
        daily = aggregate_daily_strain([
            _activity(provider="garmin"),
            _activity(provider="strava"),
            _activity(activity_date=TARGET - timedelta(days=1)),
        ])
        single = calculate_strain(_activity())
        assert daily[TARGET] == pytest.approx(2 * single)
        assert daily[TARGET - timedelta(days=1)] == pytest.approx(single)

    def test_zero_strain_day_is_present(self):
        daily = aggregate_daily_strain([_activity(duration_seconds=60)])
        assert daily == {TARGET: 0.0}


class TestRollingLoads:
    def test_single_day(self):
        assert compute_rolling_loads({TARGET: 100.0}, TARGET) == (pytest.approx(100.0), pytest.approx(100.0))

    def test_days_ago_is_positional(self):
        # Two entries a week apart still count as positions 0 and 1.
        daily = {TARGET - timedelta(days=7): 100.0, TARGET: 0.0}
        atl, ctl = compute_rolling_loads(daily, TARGET)
        assert atl == pytest.approx(100 * math.exp(-1 / 7))
        assert ctl == pytest.approx(100 * math.exp(-1 / 42))

    def test_future_dates_are_ignored(self):
        daily = {TARGET: 10.0, TARGET + timedelta(days=1): 1000.0}
        assert compute_rolling_loads(daily, TARGET)[0] == pytest.approx(10.0)

    def test_only_last_42_values(self):
        daily = {TARGET - timedelta(days=i): 10.0 for i in range(60)}
        _, ctl = compute_rolling_loads(daily, TARGET)
        assert ctl == pytest.approx(sum(10 * math.exp(-i / 42) for i in range(42)))


class TestComponentScores:
    def test_capacity_is_capped_at_60(self):
        assert capacity_score(1200) == 60
        assert capacity_score(5000) == 60
        assert capacity_score(400) == 20

    def test_consistency_counts_previous_14_days(self):
        daily = {TARGET - timedelta(days=i): 10.0 for i in range(1, 15)}
        assert consistency_score(daily, TARGET) == 20

    def test_consistency_excludes_target_day(self):
        daily = {TARGET: 50.0}
        assert consistency_score(daily, TARGET) == 0

    def test_consistency_partial(self):
        daily = {TARGET - timedelta(days=i): 10.0 for i in range(1, 8)}
        assert consistency_score(daily, TARGET) == pytest.approx(10.0)

    @pytest.mark.parametrize("atl,ctl,expected", [
        (100, 100, 20),
        (80, 100, 20),
        (120, 100, 20),
        (60, 100, 15),
        (150, 100, 15),
        (40, 100, 10),
        (200, 100, 10),
        (30, 100, 5),
        (250, 100, 5),
        (50, 0, 10),
    ])
    def test_recovery_step_function(self, atl, ctl, expected):
        assert recovery_balance_score(atl, ctl) == expected


class TestFitnessScore:
    def test_daily_trainer_with_large_chronic_load(self):
        """14/14 active days and a CTL above 1200 give full capacity and consistency."""
        daily = {TARGET - timedelta(days=i): 100.0 for i in range(42)}
        breakdown = compute_fitness_score(daily, TARGET, activity_count=42)

        assert breakdown.ctl_42day >= 1200
        assert breakdown.capacity_score == 60
        assert breakdown.consistency_score == 20
        ratio = breakdown.atl_7day / breakdown.ctl_42day
        assert breakdown.recovery_balance_score == recovery_balance_score(ratio, 1.0)

    def test_components_sum_to_total(self):
        daily = {TARGET - timedelta(days=i): 37.3 * (i % 3) for i in range(30)}
        b = compute_fitness_score(daily, TARGET)
        assert b.fitness_score == pytest.approx(b.capacity_score + b.consistency_score + b.recovery_balance_score)
        assert 0 <= b.fitness_score <= 100

    def test_breakdown_serializes_date(self):
        d = compute_fitness_score({TARGET: 10.0}, TARGET).to_dict()
        assert d["calendar_date"] == "2025-03-01"
        assert d["daily_strain"] == 10.0

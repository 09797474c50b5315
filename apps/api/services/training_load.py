"""
Training Load Scorer

Calculates training stress metrics:
- BPS (Biopeak Strain) per activity
- Daily strain (sum of all activities that day, all providers)
- ATL (Acute Training Load) - fatigue, 7-day exponential weighting
- CTL (Chronic Training Load) - fitness, 42-day exponential weighting
- Fitness score = capacity (0-60) + consistency (0-20) + recovery (0-20)

Pure functions only; fetching and persistence live in
services.fitness_score.

The strain constants (sport multipliers, elevation bonus, intensity
references) are empirically tuned and live in StrainConfig.
"""

from datetime import date, timedelta
from typing import Dict, Iterable, Optional, Tuple
from dataclasses import dataclass, asdict
import math
import logging

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StrainConfig:
    """Tunable BPS constants."""
    min_duration_minutes: float = 5.0
    duration_scale: float = 10.0
    hr_reference_bpm: float = 180.0
    pace_reference_min_km: float = 6.0
    intensity_floor: float = 0.5
    intensity_ceiling: float = 2.0
    elevation_threshold_m: float = 50.0
    elevation_scale_m: float = 100.0
    elevation_bonus_scale: float = 5.0
    # Ordered: first case-insensitive substring match wins
    sport_multipliers: Tuple[Tuple[str, float], ...] = (
        ("running", 1.2),
        ("cycling", 1.0),
        ("swimming", 1.3),
        ("strength", 0.8),
        ("yoga", 0.3),
        ("walking", 0.4),
        ("hiking", 0.7),
    )


DEFAULT_STRAIN_CONFIG = StrainConfig()


@dataclass
class StrainInput:
    """One activity summary, provider-agnostic."""
    activity_date: date
    duration_seconds: float
    avg_hr: Optional[float] = None
    avg_pace_min_km: Optional[float] = None
    elevation_gain_m: Optional[float] = None
    activity_type: str = "unknown"
    provider: Optional[str] = None
    activity_id: Optional[str] = None
    distance_m: Optional[float] = None


@dataclass
class FitnessScoreBreakdown:
    """Composite score for one athlete on one date"""
    calendar_date: date
    fitness_score: float
    capacity_score: float  # 0-60
    consistency_score: float  # 0-20
    recovery_balance_score: float  # 0-20
    daily_strain: float
    atl_7day: float
    ctl_42day: float
    activity_count: int = 0

    def to_dict(self) -> Dict:
        d = asdict(self)
        d["calendar_date"] = self.calendar_date.isoformat()
        return d


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


# =========================================================================
# STRAIN
# =========================================================================

def intensity_multiplier(activity: StrainInput, config: StrainConfig = DEFAULT_STRAIN_CONFIG) -> float:
    """HR ratio when HR exists, else pace ratio, else 1.0."""
    if activity.avg_hr and activity.avg_hr > 0:
        return _clamp(activity.avg_hr / config.hr_reference_bpm, config.intensity_floor, config.intensity_ceiling)
    if activity.avg_pace_min_km and activity.avg_pace_min_km > 0:
        return _clamp(
            config.pace_reference_min_km / activity.avg_pace_min_km,
            config.intensity_floor,
            config.intensity_ceiling,
        )
    return 1.0


def sport_multiplier(activity_type: Optional[str], config: StrainConfig = DEFAULT_STRAIN_CONFIG) -> float:
    kind = (activity_type or "").lower()
    for sport, multiplier in config.sport_multipliers:
        if sport in kind:
            return multiplier
    return 1.0


def calculate_strain(activity: StrainInput, config: StrainConfig = DEFAULT_STRAIN_CONFIG) -> float:
    """Biopeak Strain for one activity, rounded to 2 decimals."""
    minutes = (activity.duration_seconds or 0) / 60
    if minutes < config.min_duration_minutes:
        return 0.0

    strain = math.log(minutes + 1) * config.duration_scale
    strain *= intensity_multiplier(activity, config)

    gain = activity.elevation_gain_m or 0
    if gain > config.elevation_threshold_m:
        strain += math.log(gain / config.elevation_scale_m + 1) * config.elevation_bonus_scale

    strain *= sport_multiplier(activity.activity_type, config)
    return round(strain, 2)


def aggregate_daily_strain(
    activities: Iterable[StrainInput],
    config: StrainConfig = DEFAULT_STRAIN_CONFIG,
) -> Dict[date, float]:
    """Sum strain per calendar date. Dates with activities are present even at 0."""
    daily: Dict[date, float] = {}
    for activity in activities:
        daily[activity.activity_date] = daily.get(activity.activity_date, 0.0) + calculate_strain(activity, config)
    return daily


# =========================================================================
# ATL / CTL / COMPOSITE
# =========================================================================

ATL_DECAY_DAYS = 7  # Acute (fatigue) - short term
CTL_DECAY_DAYS = 42  # Chronic (fitness) - long term
ROLLING_WINDOW_VALUES = 42
CONSISTENCY_WINDOW_DAYS = 14


def compute_rolling_loads(daily_strain: Dict[date, float], target_date: date) -> Tuple[float, float]:
    """
    (ATL, CTL) over the last 42 daily-strain values up to target_date.

    daysAgo is the position counted back from the most recent included
    value, so only dates that have a strain entry take part.
    """
    dates = sorted(d for d in daily_strain if d <= target_date)[-ROLLING_WINDOW_VALUES:]
    atl = 0.0
    ctl = 0.0
    for days_ago, day in enumerate(reversed(dates)):
        strain = daily_strain[day]
        atl += strain * math.exp(-days_ago / ATL_DECAY_DAYS)
        ctl += strain * math.exp(-days_ago / CTL_DECAY_DAYS)
    return atl, ctl


def capacity_score(ctl: float) -> float:
    return min(60.0, ctl / 20)


def consistency_score(daily_strain: Dict[date, float], target_date: date) -> float:
    """Active days among the 14 days before target_date."""
    active = sum(
        1 for offset in range(1, CONSISTENCY_WINDOW_DAYS + 1)
        if daily_strain.get(target_date - timedelta(days=offset), 0) > 0
    )
    return min(20.0, active / CONSISTENCY_WINDOW_DAYS * 20)


def recovery_balance_score(atl: float, ctl: float) -> float:
    if ctl <= 0:
        return 10.0
    ratio = atl / ctl
    if 0.8 <= ratio <= 1.2:
        return 20.0
    if 0.6 <= ratio <= 1.5:
        return 15.0
    if 0.4 <= ratio <= 2.0:
        return 10.0
    return 5.0


def compute_fitness_score(
    daily_strain: Dict[date, float],
    target_date: date,
    activity_count: int = 0,
) -> FitnessScoreBreakdown:
    atl, ctl = compute_rolling_loads(daily_strain, target_date)

    capacity = round(capacity_score(ctl), 2)
    consistency = round(consistency_score(daily_strain, target_date), 2)
    recovery = round(recovery_balance_score(atl, ctl), 2)

    return FitnessScoreBreakdown(
        calendar_date=target_date,
        fitness_score=round(capacity + consistency + recovery, 2),
        capacity_score=capacity,
        consistency_score=consistency,
        recovery_balance_score=recovery,
        daily_strain=round(daily_strain.get(target_date, 0.0), 2),
        atl_7day=round(atl, 2),
        ctl_42day=round(ctl, 2),
        activity_count=activity_count,
    )

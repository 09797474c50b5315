"""Heart-rate zone distribution.

Max HR comes from an ordered chain of resolvers evaluated lazily; the
first one that returns a value wins:

    1. explicit max HR from the athlete profile
    2. 220 - age, age from birth date
    3. highest HR observed in the series
    4. 190

Time per sample is estimated from timestamps, else distance/speed, else
one second. Samples without HR do not count towards any zone or the
total, so percentages sum to ~100 whenever any HR was recorded.
"""
from __future__ import annotations

from dataclasses import dataclass, asdict, field
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from services.sample_normalizer import SeriesPoint

FALLBACK_MAX_HR = 190


@dataclass(frozen=True)
class ZoneDefinition:
    zone: int
    label: str
    min_pct: float
    max_pct: float
    color_token: str


ZONE_DEFINITIONS: Tuple[ZoneDefinition, ...] = (
    ZoneDefinition(1, "Recovery", 0.0, 0.6, "bg-blue-500"),
    ZoneDefinition(2, "Aerobic", 0.6, 0.7, "bg-green-500"),
    ZoneDefinition(3, "Threshold", 0.7, 0.8, "bg-yellow-500"),
    ZoneDefinition(4, "Anaerobic", 0.8, 0.9, "bg-orange-500"),
    ZoneDefinition(5, "Maximum", 0.9, 1.5, "bg-red-500"),
)


@dataclass(frozen=True)
class HeartRateZone:
    zone: str
    label: str
    min_hr: int
    max_hr: int
    time_in_zone_seconds: int
    percentage: int
    color_token: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ZoneDistribution:
    max_hr: int
    max_hr_source: str
    total_seconds: int
    zones: List[HeartRateZone] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "max_hr": self.max_hr,
            "max_hr_source": self.max_hr_source,
            "total_seconds": self.total_seconds,
            "zones": [z.to_dict() for z in self.zones],
        }


# ---------------------------------------------------------------------------
# Max HR resolution
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MaxHrContext:
    series: Sequence[SeriesPoint] = ()
    user_max_hr: Optional[int] = None
    birth_date: Optional[date] = None
    as_of: Optional[date] = None


def age_on(birth_date: date, as_of: date) -> int:
    """Whole years, one less when the birthday has not come yet."""
    before_birthday = (as_of.month, as_of.day) < (birth_date.month, birth_date.day)
    return as_of.year - birth_date.year - int(before_birthday)


def from_user_setting(ctx: MaxHrContext) -> Optional[int]:
    if ctx.user_max_hr and ctx.user_max_hr > 0:
        return int(ctx.user_max_hr)
    return None


def from_age(ctx: MaxHrContext) -> Optional[int]:
    if ctx.birth_date is None:
        return None
    age = age_on(ctx.birth_date, ctx.as_of or date.today())
    if age <= 0 or age >= 120:
        return None
    return 220 - age


def from_observed(ctx: MaxHrContext) -> Optional[int]:
    observed = [p.heart_rate for p in ctx.series if p.heart_rate]
    return max(observed) if observed else None


def fallback(ctx: MaxHrContext) -> Optional[int]:
    return FALLBACK_MAX_HR


MAX_HR_RESOLVERS: Tuple[Tuple[str, Callable[[MaxHrContext], Optional[int]]], ...] = (
    ("user_setting", from_user_setting),
    ("age_formula", from_age),
    ("observed", from_observed),
    ("fallback", fallback),
)


def resolve_max_hr(ctx: MaxHrContext, resolvers=MAX_HR_RESOLVERS) -> Tuple[int, str]:
    for name, resolver in resolvers:
        value = resolver(ctx)
        if value is not None:
            return value, name
    return FALLBACK_MAX_HR, "fallback"


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

def estimate_sample_durations(series: Sequence[SeriesPoint]) -> List[int]:
    """Seconds attributed to each sample (rounded, at least 1)."""
    n = len(series)
    durations = []
    for i, p in enumerate(series):
        nxt = series[i + 1] if i + 1 < n else None
        if nxt is not None and p.timestamp is not None and nxt.timestamp is not None:
            dt = max(1, round((nxt.timestamp - p.timestamp) / 1000))
        elif nxt is not None and p.speed_ms is not None and p.speed_ms > 0:
            dt = max(1, round((nxt.distance_m - p.distance_m) / p.speed_ms))
        else:
            dt = 1
        durations.append(int(dt))
    return durations


def zone_bounds(max_hr: int) -> List[Tuple[ZoneDefinition, int, int]]:
    return [(d, int(round(d.min_pct * max_hr)), int(round(d.max_pct * max_hr))) for d in ZONE_DEFINITIONS]


def _zone_index(hr: int, bounds: List[Tuple[ZoneDefinition, int, int]]) -> Optional[int]:
    last = len(bounds) - 1
    for i, (_, low, high) in enumerate(bounds):
        if i == last:
            if hr >= low:
                return i
        elif low <= hr < high:
            return i
    return None


def classify_zones(
    series: Sequence[SeriesPoint],
    user_max_hr: Optional[int] = None,
    birth_date: Optional[date] = None,
    as_of: Optional[date] = None,
) -> ZoneDistribution:
    """Time-in-zone for the 5 zones; always returns all 5."""
    max_hr, source = resolve_max_hr(MaxHrContext(series, user_max_hr, birth_date, as_of))
    bounds = zone_bounds(max_hr)
    seconds = [0] * len(bounds)

    for p, dt in zip(series, estimate_sample_durations(series)):
        if not p.heart_rate:
            continue
        idx = _zone_index(p.heart_rate, bounds)
        if idx is not None:
            seconds[idx] += dt

    total = sum(seconds)
    zones = [
        HeartRateZone(
            zone=f"Zone {d.zone}",
            label=d.label,
            min_hr=low,
            max_hr=high,
            time_in_zone_seconds=secs,
            percentage=int(round(secs / total * 100)) if total > 0 else 0,
            color_token=d.color_token,
        )
        for (d, low, high), secs in zip(bounds, seconds)
    ]
    return ZoneDistribution(max_hr=max_hr, max_hr_source=source, total_seconds=total, zones=zones)

"""Fixed-distance segment analysis.

Partitions a canonical series into fixed-distance segments (250 m for
the efficiency fingerprint, 1 km for chart splits) and scores each one.

Segmentation is a fold over the immutable point sequence: the state
carries the closed segments, the points of the open segment and the
distance of the last boundary. A segment closes when the distance since
the last boundary reaches the target AND it holds at least 3 points.
The trailing partial segment is kept only when it has at least 3 points,
a previous segment exists and it spans more than 50 m.

Raw efficiency is speed per unit of effort:
    (avg_speed / avg_power) * 1000   when the segment has power
    (avg_speed / avg_hr) * 1000      otherwise
and is normalized to 0-100 across the activity afterwards.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, asdict
from functools import reduce
from typing import Any, Dict, List, NamedTuple, Optional, Sequence, Tuple

from services.sample_normalizer import SeriesPoint, pace_from_speed

logger = logging.getLogger(__name__)

FINGERPRINT_SEGMENT_M = 250.0
CHART_SEGMENT_M = 1000.0

MIN_POINTS_PER_SEGMENT = 3
MIN_TRAILING_SPAN_M = 50.0

# Point validity for segment scoring
MIN_SPEED_MS = 0.5
MIN_HEART_RATE = 30

GREEN_THRESHOLD = 70
YELLOW_THRESHOLD = 40


@dataclass(frozen=True)
class Segment:
    segment_number: int
    start_distance_m: int
    end_distance_m: int
    avg_pace_min_km: float
    avg_hr: int
    avg_power: Optional[int]
    avg_speed_ms: float
    raw_efficiency: float
    efficiency_score: int
    hr_efficiency_delta: Optional[float]
    label: str
    point_count: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class _ClosedSegment(NamedTuple):
    start_m: float
    end_m: float
    point_count: int
    avg_speed: float
    avg_hr: float
    avg_power: Optional[float]
    raw_efficiency: float
    delta: Optional[float]


class _FoldState(NamedTuple):
    closed: Tuple[_ClosedSegment, ...]
    current: Tuple[SeriesPoint, ...]
    boundary_m: float


def usable_points(series: Sequence[SeriesPoint]) -> List[SeriesPoint]:
    """Points carrying enough signal to score: moving, with HR, past the start."""
    return [
        p for p in series
        if p.speed_ms is not None and p.speed_ms > MIN_SPEED_MS
        and p.heart_rate is not None and p.heart_rate > MIN_HEART_RATE
        and p.distance_m > 0
    ]


def _mean(values: Sequence[float]) -> Optional[float]:
    return sum(values) / len(values) if values else None


def _efficiency(speed: float, hr: float, power: Optional[float]) -> float:
    if power:
        return (speed / power) * 1000.0
    if hr:
        return (speed / hr) * 1000.0
    return 0.0


def _close_segment(
    points: Tuple[SeriesPoint, ...],
    start_m: float,
    end_m: float,
    previous: Optional[_ClosedSegment],
) -> _ClosedSegment:
    avg_speed = _mean([p.speed_ms for p in points]) or 0.0
    avg_hr = _mean([p.heart_rate for p in points]) or 0.0
    avg_power = _mean([p.power_watts for p in points if p.power_watts is not None and p.power_watts > 0])

    raw = _efficiency(avg_speed, avg_hr, avg_power)

    delta = None
    if previous is not None:
        # Compared against the previous segment's reported (rounded) averages.
        # Power-based only when both segments have power; HR-based otherwise.
        prev_power = round(previous.avg_power) if avg_power and previous.avg_power else None
        prev_raw = _efficiency(round(previous.avg_speed, 2), round(previous.avg_hr), prev_power)
        delta = ((raw - prev_raw) / prev_raw) * 100.0 if prev_raw > 0 else 0.0

    return _ClosedSegment(
        start_m=start_m,
        end_m=end_m,
        point_count=len(points),
        avg_speed=avg_speed,
        avg_hr=avg_hr,
        avg_power=avg_power,
        raw_efficiency=round(raw, 2),
        delta=delta,
    )


def _fold_step(target_m: float):
    def step(state: _FoldState, p: SeriesPoint) -> _FoldState:
        current = state.current + (p,)
        if p.distance_m - state.boundary_m >= target_m and len(current) >= MIN_POINTS_PER_SEGMENT:
            previous = state.closed[-1] if state.closed else None
            seg = _close_segment(current, state.boundary_m, p.distance_m, previous)
            return _FoldState(state.closed + (seg,), (), p.distance_m)
        return _FoldState(state.closed, current, state.boundary_m)
    return step


def _finish(state: _FoldState) -> Tuple[_ClosedSegment, ...]:
    rest = state.current
    if (
        len(rest) >= MIN_POINTS_PER_SEGMENT
        and state.closed
        and rest[-1].distance_m - state.boundary_m > MIN_TRAILING_SPAN_M
    ):
        tail = _close_segment(rest, state.boundary_m, rest[-1].distance_m, state.closed[-1])
        return state.closed + (tail,)
    return state.closed


def label_for_score(score: float) -> str:
    if score >= GREEN_THRESHOLD:
        return "green"
    if score >= YELLOW_THRESHOLD:
        return "yellow"
    return "red"


def normalize_efficiency(raw_values: Sequence[float]) -> List[int]:
    """Linear 0-100 scaling against the activity's own range (range 0 -> all 0)."""
    if not raw_values:
        return []
    low, high = min(raw_values), max(raw_values)
    span = (high - low) or 1.0
    return [int(round((v - low) / span * 100)) for v in raw_values]


def compute_segments(
    points: Sequence[SeriesPoint],
    segment_distance_m: float = FINGERPRINT_SEGMENT_M,
) -> List[Segment]:
    """Segment ``points`` (already filtered and sorted by distance)."""
    initial = _FoldState(closed=(), current=(), boundary_m=0.0)
    closed = _finish(reduce(_fold_step(segment_distance_m), tuple(points), initial))

    scores = normalize_efficiency([s.raw_efficiency for s in closed])

    return [
        Segment(
            segment_number=i + 1,
            start_distance_m=int(round(s.start_m)),
            end_distance_m=int(round(s.end_m)),
            avg_pace_min_km=round(pace_from_speed(s.avg_speed) or 99.0, 2),
            avg_hr=int(round(s.avg_hr)),
            avg_power=int(round(s.avg_power)) if s.avg_power else None,
            avg_speed_ms=round(s.avg_speed, 2),
            raw_efficiency=s.raw_efficiency,
            efficiency_score=score,
            hr_efficiency_delta=round(s.delta, 1) if s.delta is not None else None,
            label=label_for_score(score),
            point_count=s.point_count,
        )
        for i, (s, score) in enumerate(zip(closed, scores))
    ]


def segment_series(
    series: Sequence[SeriesPoint],
    segment_distance_m: float = FINGERPRINT_SEGMENT_M,
) -> List[Segment]:
    """Filter a canonical series to usable points and segment it."""
    return compute_segments(usable_points(series), segment_distance_m)

"""Series resampling for chart payloads.

Two interchangeable strategies, both pure ``series -> series`` functions
that keep order, never exceed their cap and are idempotent for the same
cap:

    sample_by_distance  distance-anchored: one point per step, the first
                        point past every whole kilometre, first and last
                        points; stride-thinned to the cap.
    lttb_downsample     largest-triangle-three-buckets on (distance,
                        pace or HR); keeps peaks and valleys on very
                        large series.
"""
from __future__ import annotations

import math
from enum import Enum
from typing import List, Optional, Sequence

from services.sample_normalizer import SeriesPoint

DEFAULT_MAX_POINTS = 2000
DEFAULT_STEP_M = 50.0
LARGE_SERIES_THRESHOLD = 10_000
LTTB_TARGET_POINTS = 5000


class ResampleStrategy(str, Enum):
    distance_anchored = "distance_anchored"
    visual_fidelity = "visual_fidelity"


def thin_by_stride(series: Sequence, cap: int) -> List:
    """Uniform stride thinning that always keeps the last element."""
    n = len(series)
    if n <= cap:
        return list(series)
    if cap <= 1:
        return [series[-1]] if cap == 1 else []
    stride = math.ceil(n / cap)
    thinned = list(series[::stride])
    if thinned[-1] is not series[-1]:
        if len(thinned) < cap:
            thinned.append(series[-1])
        else:
            thinned[-1] = series[-1]
    return thinned


def sample_by_distance(
    series: Sequence[SeriesPoint],
    cap: int = DEFAULT_MAX_POINTS,
    step_m: float = DEFAULT_STEP_M,
) -> List[SeriesPoint]:
    """Distance-anchored sampling.

    A point is kept when it is the first or last point, when it lies at
    least ``step_m`` past the previously kept point, or when it is the
    first point past a whole-kilometre mark.
    """
    n = len(series)
    if n <= 2:
        return list(series)

    kept = [series[0]]
    for i in range(1, n - 1):
        p = series[i]
        crosses_km = math.floor(p.distance_m / 1000.0) > math.floor(series[i - 1].distance_m / 1000.0)
        if crosses_km or p.distance_m - kept[-1].distance_m >= step_m:
            kept.append(p)
    kept.append(series[-1])

    return thin_by_stride(kept, cap)


def _lttb_value(p: SeriesPoint, channel: str) -> float:
    value = getattr(p, channel)
    return float(value) if value is not None else 0.0


def lttb_downsample(series: Sequence[SeriesPoint], target: int = LTTB_TARGET_POINTS) -> List[SeriesPoint]:
    """Largest-Triangle-Three-Buckets downsampling on distance/pace (HR when no pace)."""
    n = len(series)
    if n <= target:
        return list(series)
    if target < 3:
        return thin_by_stride(series, target)

    channel = "pace_min_per_km" if any(p.pace_min_per_km is not None for p in series) else "heart_rate"

    sampled = [series[0]]
    bucket_size = (n - 2) / (target - 2)

    a_idx = 0
    for i in range(1, target - 1):
        bucket_start = int((i - 1) * bucket_size) + 1
        bucket_end = min(int(i * bucket_size) + 1, n - 1)

        next_start = int(i * bucket_size) + 1
        next_end = min(int((i + 1) * bucket_size) + 1, n)

        # Average of next bucket (for triangle area)
        next_points = series[next_start:next_end]
        count = max(1, len(next_points))
        avg_x = sum(p.distance_m for p in next_points) / count
        avg_y = sum(_lttb_value(p, channel) for p in next_points) / count

        max_area = -1.0
        best_idx = bucket_start
        a_x = series[a_idx].distance_m
        a_y = _lttb_value(series[a_idx], channel)

        for j in range(bucket_start, bucket_end):
            p_x = series[j].distance_m
            p_y = _lttb_value(series[j], channel)
            area = abs((a_x - avg_x) * (p_y - a_y) - (a_x - p_x) * (avg_y - a_y))
            if area > max_area:
                max_area = area
                best_idx = j

        sampled.append(series[best_idx])
        a_idx = best_idx

    sampled.append(series[-1])
    return sampled


def choose_strategy(length: int, large_series_threshold: int = LARGE_SERIES_THRESHOLD) -> ResampleStrategy:
    if length > large_series_threshold:
        return ResampleStrategy.visual_fidelity
    return ResampleStrategy.distance_anchored


def resample_series(
    series: Sequence[SeriesPoint],
    strategy: Optional[ResampleStrategy] = None,
    cap: int = DEFAULT_MAX_POINTS,
    step_m: float = DEFAULT_STEP_M,
    large_series_threshold: int = LARGE_SERIES_THRESHOLD,
    lttb_target: int = LTTB_TARGET_POINTS,
) -> List[SeriesPoint]:
    """Resample with an explicit strategy, or pick one by series length.

    The automatic path leaves a series that already fits under ``cap``
    untouched, so feeding its output back in returns the same list.
    """
    if strategy is None:
        if len(series) <= cap:
            return list(series)
        strategy = choose_strategy(len(series), large_series_threshold)
    if strategy == ResampleStrategy.visual_fidelity:
        return lttb_downsample(series, min(lttb_target, cap))
    return sample_by_distance(series, cap=cap, step_m=step_m)

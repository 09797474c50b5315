"""Alerts, coaching recommendations and overall score for a segment sequence.

Three independent scanners run in order over the segments and append to
one alert list: efficiency drop against a trailing moving average, HR
drift without pace gain, and power drop. The list is deduplicated by
``distance_km`` (first detection wins) and capped.

Recommendations are derived in fixed priority order and capped at 3.
"""
from __future__ import annotations

import statistics
from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Optional, Sequence

from services.segment_analysis import Segment


@dataclass(frozen=True)
class AlertConfig:
    """All detection thresholds (percentages unless noted)."""
    moving_average_window: int = 3
    efficiency_drop_pct: float = 15.0
    efficiency_drop_danger_pct: float = 25.0
    hr_drift_pct: float = 8.0
    hr_drift_danger_pct: float = 12.0
    hr_drift_max_speed_gain_pct: float = 2.0
    power_drop_pct: float = 15.0
    max_alerts: int = 8

    # Recommendations
    endurance_gap_points: float = 20.0
    hr_drift_alerts_for_recommendation: int = 2
    power_cv_pct: float = 15.0
    low_overall_efficiency: float = 50.0
    empty_third_default: float = 50.0
    max_recommendations: int = 3


DEFAULT_ALERT_CONFIG = AlertConfig()


@dataclass(frozen=True)
class Alert:
    distance_km: str
    description: str
    severity: str  # warning | danger
    kind: str  # efficiency_drop | hr_drift | power_drop

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Recommendation:
    icon: str
    title: str
    description: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _distance_km(seg: Segment) -> str:
    return f"{seg.start_distance_m / 1000:.1f}"


def safe_mean(values: Sequence[float]) -> Optional[float]:
    return statistics.fmean(values) if values else None


def safe_pstdev(values: Sequence[float]) -> Optional[float]:
    return statistics.pstdev(values) if values else None


# ---------------------------------------------------------------------------
# Scanners
# ---------------------------------------------------------------------------

def scan_efficiency_drops(segments: Sequence[Segment], config: AlertConfig = DEFAULT_ALERT_CONFIG) -> List[Alert]:
    window = config.moving_average_window
    alerts = []
    for i in range(window, len(segments)):
        moving_avg = safe_mean([s.efficiency_score for s in segments[i - window:i]])
        if not moving_avg:
            continue
        current = segments[i]
        drop = (moving_avg - current.efficiency_score) / moving_avg * 100
        if drop > config.efficiency_drop_pct:
            alerts.append(Alert(
                distance_km=_distance_km(current),
                description=f"Efficiency fell {drop:.0f}% below the average of the previous {window} segments",
                severity="danger" if drop > config.efficiency_drop_danger_pct else "warning",
                kind="efficiency_drop",
            ))
    return alerts


def scan_hr_drift(segments: Sequence[Segment], config: AlertConfig = DEFAULT_ALERT_CONFIG) -> List[Alert]:
    alerts = []
    for prev, current in zip(segments, segments[1:]):
        if not prev.avg_hr or not prev.avg_speed_ms:
            continue
        hr_change = (current.avg_hr - prev.avg_hr) / prev.avg_hr * 100
        speed_change = (current.avg_speed_ms - prev.avg_speed_ms) / prev.avg_speed_ms * 100
        if hr_change > config.hr_drift_pct and speed_change < config.hr_drift_max_speed_gain_pct:
            alerts.append(Alert(
                distance_km=_distance_km(current),
                description=f"Heart rate rose {hr_change:.0f}% without a matching gain in pace (cardiac drift)",
                severity="danger" if hr_change > config.hr_drift_danger_pct else "warning",
                kind="hr_drift",
            ))
    return alerts


def scan_power_drops(segments: Sequence[Segment], config: AlertConfig = DEFAULT_ALERT_CONFIG) -> List[Alert]:
    alerts = []
    for prev, current in zip(segments, segments[1:]):
        if not prev.avg_power or not current.avg_power:
            continue
        drop = (prev.avg_power - current.avg_power) / prev.avg_power * 100
        if drop > config.power_drop_pct:
            alerts.append(Alert(
                distance_km=_distance_km(current),
                description=f"Power dropped {drop:.0f}% from the previous segment",
                severity="warning",
                kind="power_drop",
            ))
    return alerts


def generate_alerts(segments: Sequence[Segment], config: AlertConfig = DEFAULT_ALERT_CONFIG) -> List[Alert]:
    """Run all scanners, dedupe by distance_km (first wins), cap."""
    if len(segments) < config.moving_average_window:
        return []

    detected = (
        scan_efficiency_drops(segments, config)
        + scan_hr_drift(segments, config)
        + scan_power_drops(segments, config)
    )

    seen = set()
    unique = []
    for alert in detected:
        if alert.distance_km in seen:
            continue
        seen.add(alert.distance_km)
        unique.append(alert)
    return unique[:config.max_alerts]


# ---------------------------------------------------------------------------
# Recommendations and score
# ---------------------------------------------------------------------------

def generate_recommendations(
    segments: Sequence[Segment],
    alerts: Sequence[Alert],
    config: AlertConfig = DEFAULT_ALERT_CONFIG,
) -> List[Recommendation]:
    recommendations: List[Recommendation] = []
    n = len(segments)
    if n == 0:
        return recommendations

    scores = [s.efficiency_score for s in segments]
    first_third = scores[:int(n * 0.33)]
    last_third = scores[int(n * 0.66):]
    first_avg = safe_mean(first_third)
    last_avg = safe_mean(last_third)
    first_avg = config.empty_third_default if first_avg is None else first_avg
    last_avg = config.empty_third_default if last_avg is None else last_avg

    if first_avg - last_avg > config.endurance_gap_points:
        recommendations.append(Recommendation(
            icon="dumbbell",
            title="Build muscular endurance",
            description=(
                f"Efficiency fell from {first_avg:.0f} to {last_avg:.0f} between the first and last "
                "third of the run. Add long runs with a progressive finish and strength work."
            ),
        ))

    drift_alerts = sum(1 for a in alerts if a.kind == "hr_drift")
    if drift_alerts >= config.hr_drift_alerts_for_recommendation:
        recommendations.append(Recommendation(
            icon="heart",
            title="Control cardiac drift",
            description=(
                f"Heart rate climbed without a pace gain {drift_alerts} times. Work on hydration, "
                "heat management and aerobic base volume."
            ),
        ))

    powers = [s.avg_power for s in segments if s.avg_power]
    power_mean = safe_mean(powers)
    if power_mean:
        cv = (safe_pstdev(powers) or 0.0) / power_mean * 100
        if cv > config.power_cv_pct:
            recommendations.append(Recommendation(
                icon="zap",
                title="Stabilize your power output",
                description=f"Power varied {cv:.0f}% across segments. Practice holding an even effort.",
            ))

    overall_mean = safe_mean(scores) or 0.0
    if overall_mean < config.low_overall_efficiency and len(recommendations) < config.max_recommendations:
        recommendations.append(Recommendation(
            icon="target",
            title="Improve running economy",
            description="Overall efficiency was low. Drills, strides and cadence work help economy.",
        ))

    return recommendations[:config.max_recommendations]


def overall_score(segments: Sequence[Segment]) -> int:
    """Weighted mean efficiency; weight grows from 1.0 (first) towards 2.0 (last)."""
    n = len(segments)
    if n == 0:
        return 0
    weights = [1 + i / n for i in range(n)]
    weighted = sum(s.efficiency_score * w for s, w in zip(segments, weights))
    return int(round(weighted / sum(weights)))

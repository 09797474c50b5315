"""
Efficiency Fingerprint

Segments an activity into 250 m blocks, scores each block's efficiency,
scans for anomalies and derives coaching recommendations. Results are
cached per (user, activity, source) in EfficiencyFingerprint and served
until CURRENT_FINGERPRINT_VERSION is bumped or a recompute is forced.

Too little data is a result, not an error: fewer than 10 usable points
or fewer than 2 segments gives insufficient_data with empty lists and a
score of 0, and nothing is cached.

Usage:
    fingerprint = get_or_compute_fingerprint(db, user_id, activity_id, ActivitySource.strava)
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from core.logging import log_context
from models import EfficiencyFingerprint
from services.activity_store import fetch_raw_samples
from services.derived_store import upsert_row
from services.efficiency_alerts import (
    Alert,
    AlertConfig,
    DEFAULT_ALERT_CONFIG,
    Recommendation,
    generate_alerts,
    generate_recommendations,
    overall_score,
)
from services.sample_normalizer import ActivitySource, SeriesPoint, normalize_samples
from services.segment_analysis import FINGERPRINT_SEGMENT_M, Segment, compute_segments, usable_points

logger = logging.getLogger(__name__)

# Bump this when segmentation or scoring changes to invalidate all caches.
CURRENT_FINGERPRINT_VERSION = 1

MIN_USABLE_POINTS = 10
MIN_SEGMENTS = 2


@dataclass
class FingerprintResult:
    segments: List[Segment] = field(default_factory=list)
    alerts: List[Alert] = field(default_factory=list)
    recommendations: List[Recommendation] = field(default_factory=list)
    overall_score: int = 0
    insufficient_data: bool = False
    computed_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "segments": [s.to_dict() for s in self.segments],
            "alerts": [a.to_dict() for a in self.alerts],
            "recommendations": [r.to_dict() for r in self.recommendations],
            "overall_score": self.overall_score,
            "insufficient_data": self.insufficient_data,
            "computed_at": self.computed_at,
        }


def analyze_efficiency(
    series: Sequence[SeriesPoint],
    config: AlertConfig = DEFAULT_ALERT_CONFIG,
) -> FingerprintResult:
    """Segments, alerts, recommendations and overall score for one series."""
    points = usable_points(series)
    if len(points) < MIN_USABLE_POINTS:
        return FingerprintResult(insufficient_data=True)

    segments = compute_segments(points, FINGERPRINT_SEGMENT_M)
    if len(segments) < MIN_SEGMENTS:
        return FingerprintResult(insufficient_data=True)

    alerts = generate_alerts(segments, config)
    return FingerprintResult(
        segments=segments,
        alerts=alerts,
        recommendations=generate_recommendations(segments, alerts, config),
        overall_score=overall_score(segments),
        computed_at=datetime.now(timezone.utc).isoformat(),
    )


def _key(user_id: str, activity_id: str, source: ActivitySource) -> Dict[str, Any]:
    return {"user_id": user_id, "activity_id": activity_id, "activity_source": source.value}


def _get_cached(db: Session, user_id: str, activity_id: str, source: ActivitySource) -> Optional[Dict[str, Any]]:
    """Cached fingerprint if it exists and matches the current version."""
    row = (
        db.query(EfficiencyFingerprint)
        .filter_by(**_key(user_id, activity_id, source))
        .filter(EfficiencyFingerprint.analysis_version == CURRENT_FINGERPRINT_VERSION)
        .first()
    )
    if row is None:
        return None
    return {
        "segments": row.segments,
        "alerts": row.alerts,
        "recommendations": row.recommendations,
        "overall_score": row.overall_score,
        "insufficient_data": False,
        "computed_at": row.computed_at.isoformat() if row.computed_at else None,
    }


def _store(db: Session, user_id: str, activity_id: str, source: ActivitySource, result: Dict[str, Any]) -> None:
    upsert_row(
        db,
        EfficiencyFingerprint,
        key=_key(user_id, activity_id, source),
        values={
            "segments": result["segments"],
            "alerts": result["alerts"],
            "recommendations": result["recommendations"],
            "overall_score": result["overall_score"],
            "analysis_version": CURRENT_FINGERPRINT_VERSION,
            "computed_at": datetime.fromisoformat(result["computed_at"]),
        },
    )


def get_or_compute_fingerprint(
    db: Session,
    user_id: str,
    activity_id: str,
    source: ActivitySource,
    force_recompute: bool = False,
) -> Dict[str, Any]:
    """
    Cached fingerprint, or compute and cache it.

    Raises UpstreamFetchError when the samples cannot be read and
    PersistenceError when the result cannot be saved.
    """
    if not force_recompute:
        cached = _get_cached(db, user_id, activity_id, source)
        if cached is not None:
            return cached

    raw = fetch_raw_samples(db, user_id, activity_id, source)
    series = normalize_samples(source, raw) if raw is not None else []
    result = analyze_efficiency(series)

    ctx = log_context(user_id=user_id, activity_id=activity_id, provider=source.value)
    if result.insufficient_data:
        logger.info(f"Insufficient data for efficiency fingerprint ({len(series)} points)", extra=ctx)
        return result.to_dict()

    result_dict = result.to_dict()
    _store(db, user_id, activity_id, source, result_dict)
    logger.info(
        f"Efficiency fingerprint: {len(result.segments)} segments, {len(result.alerts)} alerts, "
        f"score {result.overall_score}",
        extra=ctx,
    )
    return result_dict


def invalidate_fingerprint(db: Session, user_id: str, activity_id: str, source: ActivitySource) -> None:
    """Drop the cached fingerprint, e.g. when new samples arrive."""
    db.query(EfficiencyFingerprint).filter_by(**_key(user_id, activity_id, source)).delete()
    db.commit()

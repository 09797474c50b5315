"""
Activity Chart Cache Service

Builds the per-activity chart payload (resampled series, HR zones,
headline stats, 1 km splits) and keeps it in ActivityChartCache keyed by
(user, source, activity, version). GPS tracks go to ActivityCoordinates.

Lifecycle of a cache row:
    pending  written before any work starts
    ready    payload stored (possibly empty with insufficient_data)
    error    error_message stored; the exception is re-raised

Usage:
    result = build_activity_chart_cache(db, user_id, activity_id, ActivitySource.garmin)
"""
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from core.config import settings
from core.logging import log_context
from models import ActivityChartCache, ActivityCoordinates
from services.activity_store import detect_source, fetch_profile, fetch_raw_samples
from services.derived_store import upsert_row
from services.heart_rate_zones import classify_zones
from services.sample_normalizer import ActivitySource, SeriesPoint, normalize_samples
from services.segment_analysis import CHART_SEGMENT_M, segment_series
from services.series_resampling import resample_series, thin_by_stride

logger = logging.getLogger(__name__)

# Paces at or above this (min/km) are standing still, not running.
MAX_AVERAGED_PACE = 20.0


@dataclass
class ChartPayload:
    series: List[Dict[str, Any]]
    zones: List[Dict[str, Any]]
    segments: List[Dict[str, Any]]
    stats: Dict[str, Any]
    insufficient_data: bool = False
    coordinates: Optional[Dict[str, Any]] = None


@dataclass
class ChartBuildResult:
    user_id: str
    activity_id: str
    activity_source: Optional[str]
    version: int
    build_status: str
    insufficient_data: bool = False
    stats: Dict[str, Any] = field(default_factory=dict)
    series_points: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "activity_id": self.activity_id,
            "activity_source": self.activity_source,
            "version": self.version,
            "build_status": self.build_status,
            "insufficient_data": self.insufficient_data,
            "stats": self.stats,
            "series_points": self.series_points,
        }


# ---------------------------------------------------------------------------
# Pure payload construction
# ---------------------------------------------------------------------------

def summarize_series(series: Sequence[SeriesPoint]) -> Dict[str, Any]:
    """Headline stats for the chart header."""
    if not series:
        return {
            "distance_km": 0.0,
            "avg_hr": None,
            "max_hr": None,
            "avg_pace_min_per_km": None,
            "avg_speed_ms": None,
            "duration_seconds": None,
            "data_points_count": 0,
        }

    hrs = [p.heart_rate for p in series if p.heart_rate]
    paces = [p.pace_min_per_km for p in series if p.pace_min_per_km and 0 < p.pace_min_per_km < MAX_AVERAGED_PACE]
    speeds = [p.speed_ms for p in series if p.speed_ms and p.speed_ms > 0]
    stamps = [p.timestamp for p in series if p.timestamp is not None]

    return {
        "distance_km": round(series[-1].distance_m / 1000, 2),
        "avg_hr": int(round(sum(hrs) / len(hrs))) if hrs else None,
        "max_hr": max(hrs) if hrs else None,
        "avg_pace_min_per_km": round(sum(paces) / len(paces), 2) if paces else None,
        "avg_speed_ms": round(sum(speeds) / len(speeds), 2) if speeds else None,
        "duration_seconds": int(round((max(stamps) - min(stamps)) / 1000)) if len(stamps) > 1 else None,
        "data_points_count": len(series),
    }


def extract_coordinates(series: Sequence[SeriesPoint], max_points: Optional[int] = None) -> Optional[Dict[str, Any]]:
    """Sampled GPS track with bounding box; None when the series has no positions."""
    track = [(p.latitude, p.longitude) for p in series if p.latitude is not None and p.longitude is not None]
    if not track:
        return None

    sampled = thin_by_stride(track, max_points or settings.GPS_MAX_POINTS)
    lats = [lat for lat, _ in track]
    lons = [lon for _, lon in track]

    return {
        "coordinates": [[lat, lon] for lat, lon in sampled],
        "total_points": len(track),
        "sampled_points": len(sampled),
        "starting_latitude": track[0][0],
        "starting_longitude": track[0][1],
        "bounding_box": [[min(lats), min(lons)], [max(lats), max(lons)]],
    }


def build_chart_payload(
    series: Sequence[SeriesPoint],
    user_max_hr: Optional[int] = None,
    birth_date: Optional[date] = None,
    as_of: Optional[date] = None,
) -> ChartPayload:
    """Chart payload from a canonical series."""
    moving = [p for p in series if (p.heart_rate and p.heart_rate > 0) or (p.speed_ms and p.speed_ms > 0)]

    sampled = resample_series(
        moving,
        cap=settings.CHART_MAX_POINTS,
        step_m=settings.CHART_SAMPLE_STEP_M,
        large_series_threshold=settings.LARGE_SERIES_THRESHOLD,
        lttb_target=settings.LTTB_TARGET_POINTS,
    )
    zones = classify_zones(sampled, user_max_hr=user_max_hr, birth_date=birth_date, as_of=as_of)
    segments = segment_series(moving, CHART_SEGMENT_M)

    stats = summarize_series(sampled)
    stats["max_hr_used"] = zones.max_hr
    stats["max_hr_source"] = zones.max_hr_source
    insufficient = len(sampled) == 0
    stats["insufficient_data"] = insufficient

    return ChartPayload(
        series=[p.to_dict(include_timestamp=False, include_position=False) for p in sampled],
        zones=[z.to_dict() for z in zones.zones],
        segments=[s.to_dict() for s in segments],
        stats=stats,
        insufficient_data=insufficient,
        coordinates=extract_coordinates(series),
    )


# ---------------------------------------------------------------------------
# Cache build
# ---------------------------------------------------------------------------

def _cache_key(user_id: str, activity_id: str, source: str, version: int) -> Dict[str, Any]:
    return {
        "user_id": user_id,
        "activity_source": source,
        "activity_id": activity_id,
        "version": version,
    }


def _store_coordinates(db: Session, user_id: str, activity_id: str, source: str, coords: Dict[str, Any]) -> None:
    upsert_row(
        db,
        ActivityCoordinates,
        key={"user_id": user_id, "activity_source": source, "activity_id": activity_id},
        values=coords,
    )


def build_activity_chart_cache(
    db: Session,
    user_id: str,
    activity_id: str,
    source: Optional[ActivitySource] = None,
    version: Optional[int] = None,
) -> ChartBuildResult:
    """
    Build (or rebuild) the chart cache row for one activity.

    Missing samples are not an error: the row becomes ready with an empty
    series and insufficient_data set. Any fetch or compute failure marks the
    row as error and is re-raised; a failed write raises PersistenceError.
    """
    version = version or settings.CHART_CACHE_VERSION
    ctx = log_context(user_id=user_id, activity_id=activity_id, provider=source.value if source else None)

    if source is None:
        source = detect_source(db, user_id, activity_id)
        if source is None:
            logger.info("No samples stored under any provider", extra=ctx)
            return ChartBuildResult(
                user_id=user_id,
                activity_id=activity_id,
                activity_source=None,
                version=version,
                build_status="ready",
                insufficient_data=True,
            )
        ctx = log_context(user_id=user_id, activity_id=activity_id, provider=source.value)

    key = _cache_key(user_id, activity_id, source.value, version)
    upsert_row(db, ActivityChartCache, key, {"build_status": "pending", "error_message": None})

    try:
        raw = fetch_raw_samples(db, user_id, activity_id, source)
        series = normalize_samples(source, raw) if raw is not None else []
        profile = fetch_profile(db, user_id)
        payload = build_chart_payload(
            series,
            user_max_hr=profile.max_heart_rate if profile else None,
            birth_date=profile.birth_date if profile else None,
        )
    except Exception as e:
        logger.error(f"Chart build failed: {e}", exc_info=True, extra=ctx)
        upsert_row(db, ActivityChartCache, key, {"build_status": "error", "error_message": str(e)[:1000]})
        raise

    if payload.insufficient_data:
        logger.info(f"Chart cache built without data ({len(series)} raw points)", extra=ctx)

    upsert_row(
        db,
        ActivityChartCache,
        key,
        {
            "series": payload.series,
            "zones": payload.zones,
            "segments": payload.segments,
            "stats": payload.stats,
            "build_status": "ready",
            "error_message": None,
            "built_at": datetime.now(timezone.utc),
        },
    )
    if payload.coordinates is not None:
        _store_coordinates(db, user_id, activity_id, source.value, payload.coordinates)

    logger.info(f"Chart cache ready: {len(payload.series)} points", extra=ctx)
    return ChartBuildResult(
        user_id=user_id,
        activity_id=activity_id,
        activity_source=source.value,
        version=version,
        build_status="ready",
        insufficient_data=payload.insufficient_data,
        stats=payload.stats,
        series_points=len(payload.series),
    )


def get_chart_cache(
    db: Session,
    user_id: str,
    activity_id: str,
    source: ActivitySource,
    version: Optional[int] = None,
) -> Optional[ActivityChartCache]:
    return (
        db.query(ActivityChartCache)
        .filter_by(**_cache_key(user_id, activity_id, source.value, version or settings.CHART_CACHE_VERSION))
        .first()
    )

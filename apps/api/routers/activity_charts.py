"""
Activity Charts Router

Builds and serves the cached chart payload for an activity:
- resampled series (distance, pace, HR, power, elevation)
- 5 heart-rate zones
- headline stats and 1 km splits
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import Any, Dict, List, Optional
from pydantic import BaseModel

from core.database import get_db
from core.exceptions import NotFoundError
from services.activity_chart import build_activity_chart_cache, get_chart_cache
from services.sample_normalizer import ActivitySource

router = APIRouter(prefix="/v1/activity-charts", tags=["Activity Charts"])


# ============ Request / Response Models ============

class BuildChartRequest(BaseModel):
    user_id: str
    activity_id: str
    activity_source: Optional[ActivitySource] = None
    version: Optional[int] = None


class BuildChartResponse(BaseModel):
    user_id: str
    activity_id: str
    activity_source: Optional[str]
    version: int
    build_status: str
    insufficient_data: bool
    series_points: int
    stats: Dict[str, Any]


class ChartCacheResponse(BaseModel):
    user_id: str
    activity_id: str
    activity_source: str
    version: int
    build_status: str
    error_message: Optional[str] = None
    series: List[Dict[str, Any]] = []
    zones: List[Dict[str, Any]] = []
    segments: List[Dict[str, Any]] = []
    stats: Dict[str, Any] = {}


# ============ Endpoints ============

@router.post("/build", response_model=BuildChartResponse)
def build_chart(request: BuildChartRequest, db: Session = Depends(get_db)):
    """
    Build (or rebuild) the chart cache for one activity.

    When activity_source is omitted the first provider holding samples
    for the activity is used.
    """
    result = build_activity_chart_cache(
        db,
        user_id=request.user_id,
        activity_id=request.activity_id,
        source=request.activity_source,
        version=request.version,
    )
    return BuildChartResponse(**result.to_dict())


@router.get("/{activity_source}/{activity_id}", response_model=ChartCacheResponse)
def get_chart(
    activity_source: ActivitySource,
    activity_id: str,
    user_id: str,
    version: Optional[int] = None,
    db: Session = Depends(get_db),
):
    row = get_chart_cache(db, user_id, activity_id, activity_source, version)
    if row is None:
        raise NotFoundError("Chart cache", f"{activity_source.value}/{activity_id}")

    return ChartCacheResponse(
        user_id=row.user_id,
        activity_id=row.activity_id,
        activity_source=row.activity_source,
        version=row.version,
        build_status=row.build_status,
        error_message=row.error_message,
        series=row.series or [],
        zones=row.zones or [],
        segments=row.segments or [],
        stats=row.stats or {},
    )

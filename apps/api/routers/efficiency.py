"""
Efficiency Fingerprint Router

Per-activity efficiency segments, anomaly alerts and recommendations.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List, Optional
from pydantic import BaseModel

from core.database import get_db
from services.efficiency_fingerprint import get_or_compute_fingerprint
from services.sample_normalizer import ActivitySource

router = APIRouter(prefix="/v1/efficiency-fingerprint", tags=["Efficiency"])


class FingerprintRequest(BaseModel):
    user_id: str
    activity_id: str
    activity_source: ActivitySource
    force_recompute: bool = False


class SegmentResponse(BaseModel):
    segment_number: int
    start_distance_m: int
    end_distance_m: int
    avg_pace_min_km: float
    avg_hr: int
    avg_power: Optional[int] = None
    avg_speed_ms: float
    raw_efficiency: float
    efficiency_score: int
    hr_efficiency_delta: Optional[float] = None
    label: str
    point_count: int


class AlertResponse(BaseModel):
    distance_km: str
    description: str
    severity: str
    kind: str


class RecommendationResponse(BaseModel):
    icon: str
    title: str
    description: str


class FingerprintResponse(BaseModel):
    segments: List[SegmentResponse]
    alerts: List[AlertResponse]
    recommendations: List[RecommendationResponse]
    overall_score: int
    insufficient_data: bool
    computed_at: Optional[str] = None


@router.post("", response_model=FingerprintResponse)
def compute_fingerprint(request: FingerprintRequest, db: Session = Depends(get_db)):
    """
    Efficiency fingerprint for one activity.

    Served from cache unless force_recompute is set. Activities with too
    little data return insufficient_data=true with empty lists.
    """
    return get_or_compute_fingerprint(
        db,
        user_id=request.user_id,
        activity_id=request.activity_id,
        source=request.activity_source,
        force_recompute=request.force_recompute,
    )

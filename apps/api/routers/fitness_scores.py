"""
Fitness Scores Router

- Calculate one athlete's fitness score for a date
- Backfill scores for entitled athletes over a date range
- Score history for charting
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List, Optional
from datetime import date, timedelta
from pydantic import BaseModel, Field

from core.config import settings
from core.database import get_db
from core.exceptions import ValidationError
from services.fitness_backfill import backfill_fitness_scores
from services.fitness_score import get_score_history, score_user_date

router = APIRouter(prefix="/v1/fitness-scores", tags=["Fitness Scores"])


# ============ Request / Response Models ============

class CalculateScoreRequest(BaseModel):
    user_id: str
    target_date: Optional[date] = None


class FitnessScoreResponse(BaseModel):
    user_id: str
    calendar_date: date
    insufficient_data: bool = False
    fitness_score: float = 0.0
    capacity_score: float = 0.0
    consistency_score: float = 0.0
    recovery_balance_score: float = 0.0
    daily_strain: float = 0.0
    atl_7day: float = 0.0
    ctl_42day: float = 0.0
    activity_count: int = 0


class BackfillRequest(BaseModel):
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    batch_size: Optional[int] = Field(default=None, ge=1, le=500)
    offset: int = Field(default=0, ge=0)


class BackfillResponse(BaseModel):
    users_processed: int
    scores_created: int
    total_users: int
    offset: int
    next_offset: Optional[int] = None
    duration_s: float
    errors: List[str] = []
    aborted: bool = False


class ScoreHistoryResponse(BaseModel):
    user_id: str
    scores: List[FitnessScoreResponse]


# ============ Endpoints ============

@router.post("/calculate", response_model=FitnessScoreResponse)
def calculate_score(request: CalculateScoreRequest, db: Session = Depends(get_db)):
    """
    Calculate and save the fitness score for one athlete and date.

    Without activities in the lookback window nothing is saved and
    insufficient_data is returned.
    """
    target = request.target_date or date.today()
    breakdown = score_user_date(db, request.user_id, target)
    if breakdown is None:
        return FitnessScoreResponse(user_id=request.user_id, calendar_date=target, insufficient_data=True)
    return FitnessScoreResponse(user_id=request.user_id, **breakdown.to_dict())


@router.post("/backfill", response_model=BackfillResponse)
def backfill_scores(request: BackfillRequest):
    """
    Score one page of entitled athletes. Call again with next_offset
    until it comes back null.
    """
    start = request.start_date or date.fromisoformat(settings.BACKFILL_DEFAULT_START_DATE)
    end = request.end_date or date.today()
    if start > end:
        raise ValidationError("start_date must not be after end_date", field="start_date")

    result = backfill_fitness_scores(start, end, batch_size=request.batch_size, offset=request.offset)
    return BackfillResponse(**result.to_dict())


@router.get("/{user_id}", response_model=ScoreHistoryResponse)
def get_history(
    user_id: str,
    days: int = 30,
    end_date: Optional[date] = None,
    db: Session = Depends(get_db),
):
    end = end_date or date.today()
    rows = get_score_history(db, user_id, end - timedelta(days=days), end)
    return ScoreHistoryResponse(
        user_id=user_id,
        scores=[
            FitnessScoreResponse(
                user_id=row.user_id,
                calendar_date=row.calendar_date,
                fitness_score=row.fitness_score,
                capacity_score=row.capacity_score,
                consistency_score=row.consistency_score,
                recovery_balance_score=row.recovery_balance_score,
                daily_strain=row.daily_strain,
                atl_7day=row.atl_7day,
                ctl_42day=row.ctl_42day,
            )
            for row in rows
        ],
    )

"""
Fitness Score Service

Loads an athlete's activity summaries from every provider over the
lookback window, scores them with services.training_load and upserts one
FitnessScoreDaily row per (user, date).

The single-date path and the backfill share ``score_user_date`` so both
produce identical rows for the same inputs. The difference is only what
happens when the write fails: the single-date path raises, the batch
path logs and moves on.
"""
import logging
from datetime import date, timedelta
from typing import List, Optional

from sqlalchemy.orm import Session

from core.config import settings
from core.exceptions import PersistenceError
from core.logging import log_context
from models import FitnessScoreDaily
from services.activity_store import fetch_provider_activities
from services.activity_summaries import summary_to_strain_input
from services.derived_store import upsert_row
from services.training_load import (
    FitnessScoreBreakdown,
    StrainInput,
    aggregate_daily_strain,
    compute_fitness_score,
)

logger = logging.getLogger(__name__)


class FitnessScoreCalculator:
    """
    Scores one athlete on one date.

    Usage:
        calc = FitnessScoreCalculator(db)
        breakdown = calc.calculate_and_store(user_id, date(2025, 3, 1))
    """

    def __init__(self, db: Session, lookback_days: Optional[int] = None):
        self.db = db
        self.lookback_days = lookback_days or settings.FITNESS_LOOKBACK_DAYS

    def load_activities(self, user_id: str, target_date: date) -> List[StrainInput]:
        start = target_date - timedelta(days=self.lookback_days)
        rows = fetch_provider_activities(self.db, user_id, start, target_date)
        activities = []
        for row in rows:
            try:
                activities.append(
                    summary_to_strain_input(row.provider, row.activity_date, row.summary or {}, row.activity_id)
                )
            except (KeyError, ValueError) as e:
                # Unknown provider or unusable summary; skip this activity only
                logger.warning(
                    f"Skipping activity summary: {e}",
                    extra=log_context(user_id=user_id, activity_id=row.activity_id, provider=row.provider),
                )
        return activities

    def calculate(self, user_id: str, target_date: date) -> Optional[FitnessScoreBreakdown]:
        """Score without saving. None when the lookback window has no activities."""
        activities = self.load_activities(user_id, target_date)
        if not activities:
            return None
        daily = aggregate_daily_strain(activities)
        return compute_fitness_score(daily, target_date, activity_count=len(activities))

    def store(self, user_id: str, breakdown: FitnessScoreBreakdown) -> None:
        upsert_row(
            self.db,
            FitnessScoreDaily,
            key={"user_id": user_id, "calendar_date": breakdown.calendar_date},
            values={
                "fitness_score": breakdown.fitness_score,
                "capacity_score": breakdown.capacity_score,
                "consistency_score": breakdown.consistency_score,
                "recovery_balance_score": breakdown.recovery_balance_score,
                "daily_strain": breakdown.daily_strain,
                "atl_7day": breakdown.atl_7day,
                "ctl_42day": breakdown.ctl_42day,
            },
        )

    def calculate_and_store(self, user_id: str, target_date: date) -> Optional[FitnessScoreBreakdown]:
        breakdown = self.calculate(user_id, target_date)
        if breakdown is None:
            logger.info(
                f"No activities in the last {self.lookback_days} days, nothing to score",
                extra=log_context(user_id=user_id, date=target_date.isoformat()),
            )
            return None
        self.store(user_id, breakdown)
        logger.info(
            f"Fitness score {breakdown.fitness_score} "
            f"(capacity {breakdown.capacity_score}, consistency {breakdown.consistency_score}, "
            f"recovery {breakdown.recovery_balance_score})",
            extra=log_context(user_id=user_id, date=target_date.isoformat()),
        )
        return breakdown


def score_user_date(
    db: Session,
    user_id: str,
    target_date: date,
    raise_on_persist_error: bool = True,
) -> Optional[FitnessScoreBreakdown]:
    """
    Compute and upsert one fitness score.

    Returns None when there was nothing to score. With
    ``raise_on_persist_error=False`` a failed write is logged and also
    returns None, so batch callers only count rows that were saved.
    """
    calc = FitnessScoreCalculator(db)
    if raise_on_persist_error:
        return calc.calculate_and_store(user_id, target_date)

    breakdown = calc.calculate(user_id, target_date)
    if breakdown is None:
        return None
    try:
        calc.store(user_id, breakdown)
    except PersistenceError:
        # Already logged with the natural key by upsert_row
        return None
    return breakdown


def get_score_history(db: Session, user_id: str, start: date, end: date) -> List[FitnessScoreDaily]:
    return (
        db.query(FitnessScoreDaily)
        .filter(
            FitnessScoreDaily.user_id == user_id,
            FitnessScoreDaily.calendar_date >= start,
            FitnessScoreDaily.calendar_date <= end,
        )
        .order_by(FitnessScoreDaily.calendar_date)
        .all()
    )

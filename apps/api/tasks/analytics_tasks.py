"""
Celery tasks for activity analytics.

Each task opens its own session, returns a status dict and never lets a
single item's failure escape unhandled. Retrying is left to whoever
enqueued the task.
"""
import logging
from datetime import date, timedelta
from typing import Dict, Optional

from celery import Task
from sqlalchemy.orm import Session

from core.database import get_db_sync
from core.exceptions import AnalyticsError
from core.logging import log_context
from services.activity_chart import build_activity_chart_cache
from services.efficiency_fingerprint import get_or_compute_fingerprint
from services.fitness_backfill import backfill_fitness_scores
from services.fitness_score import score_user_date
from services.sample_normalizer import ActivitySource
from tasks import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(name="tasks.build_activity_chart_cache", bind=True)
def build_activity_chart_cache_task(
    self: Task,
    user_id: str,
    activity_id: str,
    activity_source: Optional[str] = None,
    version: Optional[int] = None,
) -> Dict:
    db: Session = get_db_sync()
    try:
        source = ActivitySource(activity_source) if activity_source else None
        result = build_activity_chart_cache(db, user_id, activity_id, source, version)
        return {"status": "success", **result.to_dict()}
    except Exception as e:
        db.rollback()
        logger.error(
            f"Chart cache task failed: {e}",
            exc_info=True,
            extra=log_context(user_id=user_id, activity_id=activity_id, provider=activity_source),
        )
        return {"status": "error", "error": str(e), "user_id": user_id, "activity_id": activity_id}
    finally:
        db.close()


@celery_app.task(name="tasks.compute_efficiency_fingerprint", bind=True)
def compute_efficiency_fingerprint_task(
    self: Task,
    user_id: str,
    activity_id: str,
    activity_source: str,
    force_recompute: bool = False,
) -> Dict:
    db: Session = get_db_sync()
    try:
        result = get_or_compute_fingerprint(
            db, user_id, activity_id, ActivitySource(activity_source), force_recompute=force_recompute
        )
        return {
            "status": "success",
            "user_id": user_id,
            "activity_id": activity_id,
            "insufficient_data": result["insufficient_data"],
            "overall_score": result["overall_score"],
            "alerts": len(result["alerts"]),
        }
    except (AnalyticsError, ValueError) as e:
        db.rollback()
        logger.error(
            f"Fingerprint task failed: {e}",
            extra=log_context(user_id=user_id, activity_id=activity_id, provider=activity_source),
        )
        return {"status": "error", "error": str(e), "user_id": user_id, "activity_id": activity_id}
    finally:
        db.close()


@celery_app.task(name="tasks.calculate_fitness_score", bind=True)
def calculate_fitness_score_task(self: Task, user_id: str, target_date: Optional[str] = None) -> Dict:
    db: Session = get_db_sync()
    target = date.fromisoformat(target_date) if target_date else date.today()
    try:
        breakdown = score_user_date(db, user_id, target)
        if breakdown is None:
            return {"status": "skipped", "user_id": user_id, "date": target.isoformat(), "insufficient_data": True}
        return {"status": "success", "user_id": user_id, **breakdown.to_dict()}
    except AnalyticsError as e:
        db.rollback()
        logger.error(f"Fitness score task failed: {e}", extra=log_context(user_id=user_id, date=target.isoformat()))
        return {"status": "error", "error": str(e), "user_id": user_id, "date": target.isoformat()}
    finally:
        db.close()


@celery_app.task(name="tasks.backfill_fitness_scores", bind=True)
def backfill_fitness_scores_task(
    self: Task,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    batch_size: int = 10,
    offset: int = 0,
    days_back: Optional[int] = None,
    follow: bool = True,
) -> Dict:
    """
    Score one page of users and, when ``follow`` is set, enqueue the next
    page until next_offset comes back empty.
    """
    end = date.fromisoformat(end_date) if end_date else date.today()
    if start_date:
        start = date.fromisoformat(start_date)
    else:
        start = end - timedelta(days=days_back or 0)

    try:
        result = backfill_fitness_scores(start, end, batch_size=batch_size, offset=offset)
    except AnalyticsError as e:
        logger.error(f"Backfill task failed before processing users: {e}")
        return {"status": "error", "error": str(e), "offset": offset}

    if follow and result.next_offset is not None:
        backfill_fitness_scores_task.delay(
            start_date=start.isoformat(),
            end_date=end.isoformat(),
            batch_size=batch_size,
            offset=result.next_offset,
            follow=True,
        )

    return {"status": "success", **result.to_dict()}

"""
Celery tasks for background processing.

Tasks are defined here and imported by both the API (to enqueue) and
the worker (to execute).
"""
from celery import Celery
from celery.schedules import crontab
from core.config import settings

# Create Celery app instance
celery_app = Celery(
    "biopeak_analytics",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=30 * 60,  # 30 minutes max per task
    task_soft_time_limit=25 * 60,  # 25 minutes soft limit
)

celery_app.conf.beat_schedule = {
    # Yesterday's scores for every entitled athlete, one page per run
    "nightly-fitness-backfill": {
        "task": "tasks.backfill_fitness_scores",
        "schedule": crontab(hour=3, minute=15),
        "kwargs": {"days_back": 1},
    },
}

# Import tasks to register them
from . import analytics_tasks  # noqa: E402

__all__ = ["celery_app"]

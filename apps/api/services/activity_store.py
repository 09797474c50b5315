"""
Read access to the externally owned activity tables.

Every read is bounded (statement_timeout on PostgreSQL) and database
errors surface as UpstreamFetchError carrying the identifiers of the
request. Nothing here retries; callers own the retry policy.
"""
import logging
from datetime import date
from typing import Any, List, Optional

from sqlalchemy import distinct, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.config import settings
from core.exceptions import UpstreamFetchError
from core.logging import log_context
from models import ActivityDetail, AthleteProfile, ProviderActivity, Subscriber
from services.sample_normalizer import ActivitySource

logger = logging.getLogger(__name__)

# Probe order when the caller does not say which provider an activity came from.
SOURCE_PROBE_ORDER = (
    ActivitySource.garmin,
    ActivitySource.polar,
    ActivitySource.zepp_gpx,
    ActivitySource.strava_gpx,
    ActivitySource.strava,
)


def _bound_statement_time(db: Session) -> None:
    if db.get_bind().dialect.name == "postgresql":
        timeout_ms = int(settings.UPSTREAM_FETCH_TIMEOUT_S * 1000)
        db.execute(text(f"SET LOCAL statement_timeout = {timeout_ms}"))


def _fetch_failed(db: Session, e: Exception, what: str, user_id=None, activity_id=None, provider=None):
    db.rollback()
    logger.error(
        f"Failed to fetch {what}: {e}",
        extra=log_context(user_id=user_id, activity_id=activity_id, provider=provider),
    )
    return UpstreamFetchError(f"Failed to fetch {what}", user_id=user_id, activity_id=activity_id, provider=provider)


def fetch_raw_samples(db: Session, user_id: str, activity_id: str, source: ActivitySource) -> Optional[Any]:
    """Raw sample payload for one activity, or None when nothing is stored."""
    try:
        _bound_statement_time(db)
        row = (
            db.query(ActivityDetail.payload)
            .filter(
                ActivityDetail.user_id == user_id,
                ActivityDetail.activity_id == activity_id,
                ActivityDetail.provider == source.value,
            )
            .first()
        )
    except SQLAlchemyError as e:
        raise _fetch_failed(db, e, "activity samples", user_id, activity_id, source.value) from e
    return row[0] if row is not None else None


def detect_source(db: Session, user_id: str, activity_id: str) -> Optional[ActivitySource]:
    """First provider (in probe order) that holds samples for this activity."""
    try:
        _bound_statement_time(db)
        providers = {
            p for (p,) in db.query(ActivityDetail.provider).filter(
                ActivityDetail.user_id == user_id,
                ActivityDetail.activity_id == activity_id,
            )
        }
    except SQLAlchemyError as e:
        raise _fetch_failed(db, e, "activity providers", user_id, activity_id) from e
    for source in SOURCE_PROBE_ORDER:
        if source.value in providers:
            return source
    return None


def fetch_profile(db: Session, user_id: str) -> Optional[AthleteProfile]:
    try:
        _bound_statement_time(db)
        return db.query(AthleteProfile).filter(AthleteProfile.user_id == user_id).first()
    except SQLAlchemyError as e:
        raise _fetch_failed(db, e, "athlete profile", user_id) from e


def fetch_provider_activities(db: Session, user_id: str, start: date, end: date) -> List[ProviderActivity]:
    """Activity summaries from every provider with start <= activity_date <= end."""
    try:
        _bound_statement_time(db)
        return (
            db.query(ProviderActivity)
            .filter(
                ProviderActivity.user_id == user_id,
                ProviderActivity.activity_date >= start,
                ProviderActivity.activity_date <= end,
            )
            .order_by(ProviderActivity.activity_date, ProviderActivity.provider, ProviderActivity.activity_id)
            .all()
        )
    except SQLAlchemyError as e:
        raise _fetch_failed(db, e, "provider activities", user_id) from e


def fetch_activity_dates(db: Session, user_id: str, start: date, end: date) -> List[date]:
    """Distinct dates with at least one activity, ascending."""
    try:
        _bound_statement_time(db)
        rows = (
            db.query(distinct(ProviderActivity.activity_date))
            .filter(
                ProviderActivity.user_id == user_id,
                ProviderActivity.activity_date >= start,
                ProviderActivity.activity_date <= end,
            )
            .order_by(ProviderActivity.activity_date)
            .all()
        )
    except SQLAlchemyError as e:
        raise _fetch_failed(db, e, "activity dates", user_id) from e
    return [d for (d,) in rows]


def fetch_eligible_user_ids(db: Session, start: date, end: date) -> List[str]:
    """Subscribed users with at least one activity in range, sorted."""
    try:
        _bound_statement_time(db)
        rows = (
            db.query(distinct(ProviderActivity.user_id))
            .join(Subscriber, Subscriber.user_id == ProviderActivity.user_id)
            .filter(
                Subscriber.subscribed.is_(True),
                ProviderActivity.activity_date >= start,
                ProviderActivity.activity_date <= end,
            )
            .all()
        )
    except SQLAlchemyError as e:
        raise _fetch_failed(db, e, "eligible users") from e
    return sorted(u for (u,) in rows)

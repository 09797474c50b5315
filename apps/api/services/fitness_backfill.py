"""
Fitness score backfill.

Scores every activity date of every entitled athlete in a date range.
Work is paged by (offset, batch_size) over the sorted list of eligible
users and processed in chunks of BACKFILL_CONCURRENCY users at a time,
each user on its own thread and its own session.

A user that fails is recorded in ``errors`` and the batch carries on; a
date that fails inside a user is logged and skipped. Rows already
written stay in place, so a stopped batch resumes from ``next_offset``.
"""
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, asdict, field
from datetime import date
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from core.config import settings
from core.database import SessionLocal
from core.exceptions import UpstreamFetchError
from core.logging import log_context
from services.activity_store import fetch_activity_dates, fetch_eligible_user_ids
from services.fitness_score import score_user_date

logger = logging.getLogger(__name__)


@dataclass
class BackfillResult:
    users_processed: int
    scores_created: int
    total_users: int
    offset: int
    next_offset: Optional[int]
    duration_s: float
    errors: List[str] = field(default_factory=list)
    aborted: bool = False

    def to_dict(self):
        return asdict(self)


def backfill_user(db: Session, user_id: str, start_date: date, end_date: date) -> int:
    """Score every activity date of one user; returns rows written."""
    dates = fetch_activity_dates(db, user_id, start_date, end_date)
    logger.info(f"User {user_id}: {len(dates)} dates to score", extra=log_context(user_id=user_id))

    created = 0
    for target_date in dates:
        try:
            if score_user_date(db, user_id, target_date, raise_on_persist_error=False) is not None:
                created += 1
        except UpstreamFetchError as e:
            logger.error(
                f"Skipping {target_date} for {user_id}: {e}",
                extra=log_context(user_id=user_id, date=target_date.isoformat()),
            )
    return created


def _run_user(session_factory: Callable[[], Session], user_id: str, start_date: date, end_date: date) -> int:
    db = session_factory()
    try:
        return backfill_user(db, user_id, start_date, end_date)
    finally:
        db.close()


def backfill_fitness_scores(
    start_date: date,
    end_date: date,
    batch_size: Optional[int] = None,
    offset: int = 0,
    concurrency: Optional[int] = None,
    session_factory: Callable[[], Session] = SessionLocal,
    should_stop: Optional[Callable[[], bool]] = None,
) -> BackfillResult:
    """
    Backfill one page of users.

    ``should_stop`` is polled between chunks; once it returns True the
    remaining users of the page are left for the next run.
    """
    started = time.monotonic()
    batch_size = batch_size or settings.BACKFILL_BATCH_SIZE
    concurrency = concurrency or settings.BACKFILL_CONCURRENCY

    db = session_factory()
    try:
        user_ids = fetch_eligible_user_ids(db, start_date, end_date)
    finally:
        db.close()

    total_users = len(user_ids)
    page = user_ids[offset:offset + batch_size]
    next_offset = offset + batch_size if offset + batch_size < total_users else None

    logger.info(
        f"Backfill {start_date}..{end_date}: users {offset + 1}-{offset + len(page)} of {total_users}"
    )

    users_processed = 0
    scores_created = 0
    errors: List[str] = []
    aborted = False
    resume_at = next_offset

    with ThreadPoolExecutor(max_workers=concurrency) as pool:
        for chunk_start in range(0, len(page), concurrency):
            if should_stop is not None and should_stop():
                aborted = True
                resume_at = offset + chunk_start
                logger.warning(f"Backfill stopped by caller; resume at offset {resume_at}")
                break

            chunk = page[chunk_start:chunk_start + concurrency]
            futures = [
                pool.submit(_run_user, session_factory, user_id, start_date, end_date)
                for user_id in chunk
            ]
            for user_id, future in zip(chunk, futures):
                try:
                    scores_created += future.result()
                    users_processed += 1
                except Exception as e:
                    logger.error(f"Backfill failed for user {user_id}: {e}", extra=log_context(user_id=user_id))
                    errors.append(f"User {user_id}: {e}")

    duration = round(time.monotonic() - started, 1)
    logger.info(f"Backfill batch complete: {users_processed} users, {scores_created} scores in {duration}s")

    return BackfillResult(
        users_processed=users_processed,
        scores_created=scores_created,
        total_users=total_users,
        offset=offset,
        next_offset=resume_at,
        duration_s=duration,
        errors=errors,
        aborted=aborted,
    )

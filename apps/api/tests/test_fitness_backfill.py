"""
Tests for the batched fitness score backfill.

The backfill opens its own sessions (one per user thread), so fixtures
commit their rows and the per-test table cleanup removes them.
"""
from datetime import date, timedelta
from unittest.mock import patch

import pytest

from core.database import SessionLocal
from core.exceptions import UpstreamFetchError
from models import FitnessScoreDaily, ProviderActivity, Subscriber
from services import fitness_backfill
from services.activity_store import fetch_eligible_user_ids
from services.fitness_backfill import backfill_fitness_scores, backfill_user
from services.fitness_score import score_user_date

START = date(2025, 2, 1)
END = date(2025, 2, 10)

RUN = {
    "duration_in_seconds": 2700,
    "distance_in_meters": 9000,
    "average_heart_rate_in_beats_per_minute": 148,
    "activity_type": "RUNNING",
}


def add_user(db, user_id, subscribed=True, days=(START, START + timedelta(days=2), END)):
    db.add(Subscriber(user_id=user_id, subscribed=subscribed, subscription_tier="pro" if subscribed else None))
    for day in days:
        db.add(ProviderActivity(
            user_id=user_id,
            activity_id=f"{user_id}-{day.isoformat()}",
            provider="garmin",
            activity_date=day,
            summary=RUN,
        ))
    db.commit()


class TestEligibility:
    def test_only_subscribed_users_with_activity_in_range(self, db_session):
        add_user(db_session, "u-b")
        add_user(db_session, "u-a")
        add_user(db_session, "u-free", subscribed=False)
        add_user(db_session, "u-old", days=(START - timedelta(days=30),))

        assert fetch_eligible_user_ids(db_session, START, END) == ["u-a", "u-b"]


class TestBackfillUser:
    def test_scores_every_activity_date(self, db_session):
        add_user(db_session, "u-a")
        assert backfill_user(db_session, "u-a", START, END) == 3
        dates = [r.calendar_date for r in db_session.query(FitnessScoreDaily).order_by(FitnessScoreDaily.calendar_date)]
        assert dates == [START, START + timedelta(days=2), END]

    def test_failed_date_is_skipped(self, db_session):
        add_user(db_session, "u-a")
        real = fitness_backfill.score_user_date

        def flaky(db, user_id, target_date, **kwargs):
            if target_date == START:
                raise UpstreamFetchError("timeout", user_id=user_id)
            return real(db, user_id, target_date, **kwargs)

        with patch.object(fitness_backfill, "score_user_date", side_effect=flaky):
            assert backfill_user(db_session, "u-a", START, END) == 2


class TestBackfillBatch:
    def test_scores_all_users(self, db_session):
        for user_id in ("u-a", "u-b", "u-c"):
            add_user(db_session, user_id)

        result = backfill_fitness_scores(START, END, batch_size=10, concurrency=2)

        assert result.total_users == 3
        assert result.users_processed == 3
        assert result.scores_created == 9
        assert result.next_offset is None
        assert result.errors == []
        assert result.aborted is False
        assert db_session.query(FitnessScoreDaily).count() == 9

    def test_batch_matches_single_path(self, db_session):
        add_user(db_session, "u-a")
        backfill_fitness_scores(START, END, batch_size=10, concurrency=1)
        batch_rows = {
            r.calendar_date: (r.fitness_score, r.atl_7day, r.ctl_42day)
            for r in db_session.query(FitnessScoreDaily).all()
        }

        db_session.query(FitnessScoreDaily).delete()
        db_session.commit()

        for day in batch_rows:
            score_user_date(db_session, "u-a", day)
        single_rows = {
            r.calendar_date: (r.fitness_score, r.atl_7day, r.ctl_42day)
            for r in db_session.query(FitnessScoreDaily).all()
        }
        assert single_rows == batch_rows

    def test_paging(self, db_session):
        for user_id in ("u-a", "u-b", "u-c"):
            add_user(db_session, user_id)

        first = backfill_fitness_scores(START, END, batch_size=2, offset=0, concurrency=1)
        assert first.users_processed == 2
        assert first.next_offset == 2

        second = backfill_fitness_scores(START, END, batch_size=2, offset=first.next_offset, concurrency=1)
        assert second.users_processed == 1
        assert second.next_offset is None

    def test_one_user_failure_does_not_stop_the_batch(self, db_session):
        for user_id in ("u-a", "u-b", "u-c"):
            add_user(db_session, user_id)
        real = fitness_backfill.backfill_user

        def failing_for_b(db, user_id, start, end):
            if user_id == "u-b":
                raise RuntimeError("boom")
            return real(db, user_id, start, end)

        with patch.object(fitness_backfill, "backfill_user", side_effect=failing_for_b):
            result = backfill_fitness_scores(START, END, batch_size=10, concurrency=1)

        assert result.users_processed == 2
        assert result.scores_created == 6
        assert len(result.errors) == 1
        assert "u-b" in result.errors[0]

    def test_should_stop_between_chunks(self, db_session):
        for user_id in ("u-a", "u-b", "u-c", "u-d"):
            add_user(db_session, user_id)
        calls = []

        def stop_after_first_chunk():
            calls.append(1)
            return len(calls) > 1

        result = backfill_fitness_scores(
            START, END, batch_size=10, concurrency=2, should_stop=stop_after_first_chunk,
        )
        assert result.aborted is True
        assert result.users_processed == 2
        assert result.next_offset == 2

    def test_no_eligible_users(self, db_session):
        result = backfill_fitness_scores(START, END)
        assert result.total_users == 0
        assert result.users_processed == 0
        assert result.next_offset is None

    def test_uses_given_session_factory(self, db_session):
        add_user(db_session, "u-a")
        opened = []

        def factory():
            opened.append(1)
            return SessionLocal()

        backfill_fitness_scores(START, END, concurrency=1, session_factory=factory)
        # one session to list users, one per user
        assert len(opened) == 2

"""
Tests for the read-only activity store queries.
"""
from datetime import date
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from core.exceptions import UpstreamFetchError
from models import AthleteProfile, ProviderActivity
from services import activity_store
from services.sample_normalizer import ActivitySource

USER = "athlete-1"
START = date(2025, 3, 1)
END = date(2025, 3, 31)

READS = [
    ("fetch_raw_samples", (USER, "g-1", ActivitySource.garmin)),
    ("detect_source", (USER, "g-1")),
    ("fetch_profile", (USER,)),
    ("fetch_provider_activities", (USER, START, END)),
    ("fetch_activity_dates", (USER, START, END)),
    ("fetch_eligible_user_ids", (START, END)),
]


class TestStatementTimeout:
    @pytest.mark.parametrize("name,args", READS)
    def test_every_read_is_bounded(self, db_session, name, args):
        with patch.object(activity_store, "_bound_statement_time") as bound:
            getattr(activity_store, name)(db_session, *args)
        bound.assert_called_once_with(db_session)

    def test_timeout_is_set_on_postgres(self):
        db = MagicMock()
        db.get_bind.return_value.dialect.name = "postgresql"
        activity_store._bound_statement_time(db)
        statement = str(db.execute.call_args.args[0])
        assert "SET LOCAL statement_timeout" in statement

    def test_no_timeout_statement_on_sqlite(self, db_session):
        with patch.object(db_session, "execute") as execute:
            activity_store._bound_statement_time(db_session)
        execute.assert_not_called()


class TestReadFailures:
    @pytest.mark.parametrize("name,args", READS)
    def test_database_error_becomes_upstream_fetch_error(self, db_session, name, args):
        failure = OperationalError("SELECT", {}, Exception("canceling statement due to statement timeout"))
        with patch.object(activity_store, "_bound_statement_time", side_effect=failure):
            with pytest.raises(UpstreamFetchError):
                getattr(activity_store, name)(db_session, *args)


class TestReads:
    def test_profile(self, db_session):
        db_session.add(AthleteProfile(user_id=USER, birth_date=date(1990, 5, 1), max_heart_rate=188))
        db_session.commit()
        assert activity_store.fetch_profile(db_session, USER).max_heart_rate == 188
        assert activity_store.fetch_profile(db_session, "someone-else") is None

    def test_activity_dates_are_distinct_and_sorted(self, db_session):
        for activity_id, day in (("a", date(2025, 3, 5)), ("b", date(2025, 3, 2)), ("c", date(2025, 3, 5))):
            db_session.add(ProviderActivity(
                user_id=USER, activity_id=activity_id, provider="garmin", activity_date=day, summary={},
            ))
        db_session.commit()
        assert activity_store.fetch_activity_dates(db_session, USER, START, END) == [
            date(2025, 3, 2), date(2025, 3, 5),
        ]

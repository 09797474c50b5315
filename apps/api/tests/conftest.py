"""
Pytest configuration and fixtures

Tests run against a throwaway SQLite file unless DATABASE_URL is set.
The schema is built with the real Alembic migrations; every table is
emptied after each test so nothing leaks between tests. (Rollback
isolation does not work here: the backfill opens its own sessions on
worker threads and must see committed rows.)
"""
import os
import sys
import tempfile
from pathlib import Path

import pytest

# Add the parent directory to the path so we can import from services
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

_TEST_DB_DIR = tempfile.mkdtemp(prefix="biopeak-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{_TEST_DB_DIR}/analytics.db")
os.environ.setdefault("LOG_FORMAT", "text")


@pytest.fixture(scope="session", autouse=True)
def _ensure_db_schema_is_at_head():
    """Apply the Alembic migrations once per test session."""
    try:
        from alembic import command
        from alembic.config import Config

        api_root = Path(__file__).resolve().parents[1]
        cfg = Config(str(api_root / "alembic.ini"))
        # script_location in alembic.ini is relative
        cfg.set_main_option("script_location", str(api_root / "alembic"))
        command.upgrade(cfg, "head")
    except Exception as e:
        # Tests should fail loudly if migrations cannot be applied.
        raise RuntimeError(f"Failed to upgrade DB to Alembic head: {e}") from e


from core.database import Base, SessionLocal, engine  # noqa: E402
import models  # noqa: E402,F401


def _clear_tables():
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())


@pytest.fixture(scope="function")
def db_session():
    """
    A session on the test database.

    Rows committed during the test are deleted afterwards.
    """
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        _clear_tables()


@pytest.fixture
def client(db_session):
    """API client sharing the per-test cleanup of db_session."""
    from fastapi.testclient import TestClient
    from main import app

    return TestClient(app)


@pytest.fixture
def subscribed_user(db_session):
    from models import Subscriber

    user = Subscriber(user_id="athlete-1", subscribed=True, subscription_tier="pro")
    db_session.add(user)
    db_session.commit()
    return user

#!/usr/bin/env python3
"""Database bootstrap: run Alembic migrations.

Always run `alembic upgrade head` on startup. If migrations fail, fail
fast rather than serve on an unknown schema. The create-all fallback is
only for an empty database whose migration history cannot be replayed.
"""

import os
import sys
import time
from dotenv import load_dotenv

load_dotenv()


def check_db_ready():
    """Check if database is ready"""
    from core.database import check_db_connection

    return check_db_connection()


def _get_alembic_config():
    """Load Alembic config for programmatic migrations."""
    from alembic.config import Config

    here = os.path.dirname(os.path.abspath(__file__))
    cfg = Config(os.path.join(here, "alembic.ini"))
    cfg.set_main_option("script_location", os.path.join(here, "alembic"))
    return cfg


def alembic_upgrade_head() -> None:
    """Apply all pending migrations."""
    from alembic import command

    command.upgrade(_get_alembic_config(), "head")


def alembic_stamp_head() -> None:
    """Stamp alembic_version as head (no schema changes)."""
    from alembic import command

    command.stamp(_get_alembic_config(), "head")


def create_schema_directly():
    """Fallback: create schema directly from SQLAlchemy models, then stamp head."""
    from sqlalchemy import inspect
    from core.database import Base, engine
    import models  # noqa: F401  (registers tables on Base.metadata)

    existing = set(inspect(engine).get_table_names())
    derived = {"activity_chart_cache", "efficiency_fingerprint", "fitness_score_daily"}
    if existing & derived:
        raise RuntimeError(
            f"Refusing direct schema creation on a database that already has {sorted(existing & derived)}. "
            f"Run Alembic migrations instead."
        )

    print("Creating schema directly from models...")
    Base.metadata.create_all(engine, checkfirst=True)
    alembic_stamp_head()
    print("Schema created successfully!")


def main():
    print("Waiting for database to be ready...")
    max_retries = 30
    retry_count = 0

    while retry_count < max_retries:
        if check_db_ready():
            print("Database is ready!")
            break
        retry_count += 1
        print(f"Database is unavailable - sleeping (attempt {retry_count}/{max_retries})")
        time.sleep(1)
    else:
        print("ERROR: Database is not ready after maximum retries")
        sys.exit(1)

    try:
        print("Running alembic upgrade head...")
        alembic_upgrade_head()
        print("Migrations applied.")
    except Exception as e:
        print(f"Alembic upgrade failed: {e}")
        if "--allow-create-all" in sys.argv:
            create_schema_directly()
        else:
            sys.exit(1)


if __name__ == "__main__":
    main()

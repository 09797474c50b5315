"""
Upserts for the derived tables.

Derived rows are pure functions of their inputs, so the natural key is
the only coordination needed: concurrent writers of the same key
converge and the last write wins. An insert that loses a race against
another writer is replayed as an update.
"""
import logging
from typing import Any, Dict, Type

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from core.exceptions import PersistenceError
from core.logging import log_context

logger = logging.getLogger(__name__)


def _apply(db: Session, model: Type, key: Dict[str, Any], values: Dict[str, Any]):
    existing = db.query(model).filter_by(**key).first()
    if existing is not None:
        for column, value in values.items():
            setattr(existing, column, value)
        row = existing
    else:
        row = model(**key, **values)
        db.add(row)
    db.commit()
    return row


def upsert_row(db: Session, model: Type, key: Dict[str, Any], values: Dict[str, Any]):
    """
    Insert or overwrite the row identified by ``key``.

    Raises PersistenceError (after rolling back) when the write fails.
    """
    try:
        try:
            return _apply(db, model, key, values)
        except IntegrityError:
            # Another writer inserted the same key first
            db.rollback()
            return _apply(db, model, key, values)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(
            f"Failed to upsert {model.__tablename__}: {e}",
            extra=log_context(table=model.__tablename__, **{k: str(v) for k, v in key.items()}),
        )
        raise PersistenceError(f"Failed to save {model.__tablename__}", table=model.__tablename__, key=key) from e

# Overview: Service-layer operations for concurrency; transaction scope and row locking.

from __future__ import annotations

from contextlib import contextmanager

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from ..extensions import db
from ..errors import PersistenceFailure, TransactionTimeout

_TIMEOUT_MARKERS = ("locked", "timeout", "timed out", "deadlock")


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    unit_of_work() opens SQLite transactions with BEGIN IMMEDIATE instead.
    """
    return query.with_for_update()


def translate_db_error(exc: SQLAlchemyError) -> PersistenceFailure:
    """Map a driver/ORM failure onto the retryable persistence taxonomy."""
    message = str(getattr(exc, "orig", None) or exc).lower()
    if isinstance(exc, OperationalError) and any(marker in message for marker in _TIMEOUT_MARKERS):
        return TransactionTimeout(
            "Timed out waiting for the database, please retry",
            details={"cause": type(exc).__name__},
        )
    return PersistenceFailure(details={"cause": type(exc).__name__})


@contextmanager
def unit_of_work():
    """
    One atomic transaction on db.session.

    Commits when the block exits cleanly. Any exception rolls back everything
    flushed inside the block; SQLAlchemy errors surface as PersistenceFailure
    (or TransactionTimeout), domain errors propagate unchanged.

    No automatic retry: callers decide whether to re-run with fresh state.
    """
    try:
        if db.engine.dialect.name == "sqlite" and not db.session().in_transaction():
            db.session.execute(text("BEGIN IMMEDIATE"))
        yield db.session
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.warning("Unit of work rolled back: %s", exc.__class__.__name__)
        raise translate_db_error(exc) from exc
    except BaseException:
        db.session.rollback()
        raise

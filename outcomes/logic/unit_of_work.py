"""
Unit of Work

One transaction per engine mutation. Every read and write a cascade
performs goes through the UnitOfWork handed down the call chain; nothing
is committed until the whole cascade has succeeded.
"""

import logging
from contextlib import contextmanager
from typing import Callable, Iterator

from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.orm import Session

from .errors import OutcomeEngineError, TransactionConflict
from .store import MappingGraph, NodeRepository, ScoreStore

logger = logging.getLogger(__name__)


class UnitOfWork:
    """Bundles the collaborators that share one session/transaction."""

    def __init__(self, db: Session):
        self.db = db
        self.nodes = NodeRepository(db)
        self.graph = MappingGraph(db)
        self.scores = ScoreStore(db)


# SQLSTATEs of serialization failures, deadlocks and unique violations
CONFLICT_SQLSTATES = {"40001", "40P01", "23505"}

# SQLite carries no SQLSTATE; match its driver messages instead
SQLITE_CONFLICT_MESSAGES = ("database is locked", "unique constraint failed")


def is_write_conflict(error: DBAPIError) -> bool:
    """True when the driver error means a concurrent write, not a broken store."""
    orig = error.orig
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if code:
        return code in CONFLICT_SQLSTATES
    message = str(orig).lower()
    return any(marker in message for marker in SQLITE_CONFLICT_MESSAGES)


@contextmanager
def unit_of_work(session_factory: Callable[[], Session]) -> Iterator[UnitOfWork]:
    """
    Open a session, yield a UnitOfWork, then commit or roll back.

    Write conflicts reported by the database (serialization failures,
    deadlocks, concurrent inserts of the same row) surface as
    TransactionConflict. Any other database error, such as a lost
    connection or a missing table, is re-raised unchanged after the
    rollback.
    """
    db = session_factory()
    try:
        yield UnitOfWork(db)
        db.commit()
    except (OperationalError, IntegrityError) as e:
        db.rollback()
        if not is_write_conflict(e):
            logger.error(f"Unit of work rolled back after store error: {e.orig!r}")
            raise
        logger.warning(f"Transaction conflict, rolled back: {e.orig}")
        raise TransactionConflict(
            "The store reported a conflicting write; the mutation was rolled back and must be retried."
        ) from e
    except OutcomeEngineError:
        db.rollback()
        raise
    except Exception as e:
        db.rollback()
        logger.error(f"Unit of work rolled back after unexpected error: {e!r}")
        raise
    finally:
        db.close()

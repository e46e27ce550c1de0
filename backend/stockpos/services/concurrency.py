# Overview: Transaction scope and row locking shared by every settlement.

from __future__ import annotations

import logging
from contextlib import contextmanager

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from ..validation import ConflictError, PersistenceError, ServiceError

logger = logging.getLogger(__name__)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; there the write lock taken by
    BEGIN IMMEDIATE in transaction() serializes writers instead.
    """
    return query.with_for_update()


def _begin_immediate(session) -> None:
    conn = session.connection()
    if conn.dialect.name != "sqlite":
        return
    dbapi_conn = conn.connection.dbapi_connection
    if not getattr(dbapi_conn, "in_transaction", False):
        session.execute(text("BEGIN IMMEDIATE"))


@contextmanager
def transaction(session, *, label: str = "transaction"):
    """
    All-or-nothing scope for a settlement.

    Commits when the block exits cleanly; on any exception everything written
    inside the block is rolled back. Domain errors propagate unchanged and
    store failures are surfaced as PersistenceError. Nothing is retried here.
    """
    try:
        _begin_immediate(session)
        yield session
        session.commit()
    except ConflictError as exc:
        session.rollback()
        logger.warning("%s rolled back: %s", label, exc)
        raise
    except ServiceError:
        session.rollback()
        raise
    except SQLAlchemyError as exc:
        session.rollback()
        logger.exception("%s rejected by the store", label)
        raise PersistenceError(
            f"{label} failed: {exc.__class__.__name__}",
            details={"error": str(getattr(exc, "orig", None) or exc)},
        ) from exc
    except Exception:
        session.rollback()
        raise

# Overview: Concurrency helpers shared by services; row locks, retries, compare-and-swap.

from __future__ import annotations

import logging
import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db

logger = logging.getLogger(__name__)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE (writes are serialized per database),
    other DBs will honor it.
    """
    return query.with_for_update()


def execute_conditional(stmt) -> bool:
    """
    Execute a guarded UPDATE and report whether exactly one row matched.

    The WHERE clause carries the precondition (expected status, enough available
    stock), so check-and-write is one statement with no read/write gap.
    """
    result = db.session.execute(stmt.execution_options(synchronize_session=False))
    return result.rowcount == 1


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). Any other exception rolls the session back
    and propagates, so a failed operation never leaves partial writes pending.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            logger.warning("Retrying after concurrency failure (attempt %d): %s", attempt + 1, exc)
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
    if last_exc:
        raise last_exc


def run_in_transaction(func, *, commit: bool = True):
    """
    Run func and commit, with retry. With commit=False the caller owns the
    transaction: func runs once, flushed but uncommitted, and retry/rollback is
    left to the outer operation.
    """
    if not commit:
        result = func()
        db.session.flush()
        return result

    def _op():
        result = func()
        db.session.commit()
        return result

    return run_with_retry(_op)


def commit_with_retry(*, attempts: int = 3, backoff_base: float = 0.1):
    """Commit current session with retry handling."""
    def _op():
        db.session.commit()
    return run_with_retry(_op, attempts=attempts, backoff_base=backoff_base)

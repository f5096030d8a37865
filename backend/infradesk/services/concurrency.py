# Overview: Service-layer helpers for transactions, row locks and retries.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError

from ..errors import InternalError
from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    Where a read-then-write decision depends on rows that are not
    themselves updated (derived capacity sums), use claim_row instead.
    """
    return query.with_for_update()


def claim_row(model, row_id: int, column) -> int:
    """
    Take a write lock on one row for the rest of the transaction.

    Issues `UPDATE ... SET column = column WHERE id = :row_id`. The value
    does not change, but the statement opens the write transaction on
    SQLite (RESERVED lock, so a second claimer waits on the busy timeout
    and then reads committed data) and holds the row lock elsewhere.
    Returns the number of rows matched.
    """
    return (
        db.session.query(model)
        .filter(model.id == row_id)
        .update({column: column}, synchronize_session=False)
    )


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float = 0.05):
    """
    Execute a DB operation with retry on transient lock failures.

    Retries on OperationalError (deadlocks, "database is locked"). The
    operation must be safe to re-run from scratch: it re-reads state and
    re-validates every guard on each attempt.
    """
    if attempts is None:
        attempts = current_app.config.get("TX_RETRY_ATTEMPTS", 3)

    for attempt in range(attempts):
        try:
            return func()
        except OperationalError as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                current_app.logger.exception("Transaction failed after %s attempts", attempts)
                raise InternalError("Storage failure, please retry") from exc
            time.sleep(backoff_base * (2 ** attempt))


def run_in_transaction(func, *, attempts: int | None = None):
    """
    Run func as one atomic unit of work: commit on success, roll back on
    any error and re-raise it.
    """
    def _op():
        try:
            result = func()
            db.session.commit()
            return result
        except Exception:
            db.session.rollback()
            raise

    return run_with_retry(_op, attempts=attempts)

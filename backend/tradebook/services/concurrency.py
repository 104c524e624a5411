# Overview: Service-layer helpers for locking, retry and atomic units of work.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; begin_write_transaction()
    takes the database write lock up front instead.
    """
    return query.with_for_update()


def begin_write_transaction() -> None:
    """
    On SQLite, take the RESERVED lock at the start of the unit of work.

    Two writers that both read a draft and then try to upgrade their locks
    would otherwise deadlock; BEGIN IMMEDIATE makes the second one wait until
    the first commits, so it re-reads committed state.
    """
    if db.engine.dialect.name != "sqlite":
        return
    connection = db.session.connection()
    driver_connection = connection.connection.driver_connection
    if not driver_connection.in_transaction:
        db.session.execute(text("BEGIN IMMEDIATE"))


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts).
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
            current_app.logger.warning(
                "Retrying transaction after concurrency conflict (attempt %s/%s): %s",
                attempt + 1,
                attempts,
                exc.__class__.__name__,
            )
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc


def atomic(func, *, attempts: int | None = None):
    """
    Run func as one unit of work: write transaction, func(), commit.

    Any exception rolls the whole unit back, so a failed transition leaves no
    stock movement, ledger entry or status change behind. Lock and stale
    version conflicts re-run func from the top; func must re-check document
    status before writing so a retry can never apply effects twice.
    """
    if attempts is None:
        attempts = current_app.config.get("TRANSACTION_RETRY_ATTEMPTS", 3)

    def _op():
        try:
            begin_write_transaction()
            result = func()
            db.session.commit()
            return result
        except (OperationalError, StaleDataError):
            raise
        except Exception:
            db.session.rollback()
            raise

    return run_with_retry(_op, attempts=attempts)

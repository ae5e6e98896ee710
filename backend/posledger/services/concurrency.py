# Overview: Locking and retry helpers shared by the transactional services.

from __future__ import annotations

import time

from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    Pair with acquire_write_lock() where SQLite must serialize writers too.
    """
    return query.with_for_update()


def acquire_write_lock() -> None:
    """
    On SQLite, take the database write lock before reading state that the
    following writes depend on (running balances, cumulative returns).

    Issues BEGIN IMMEDIATE only when the driver has not opened a
    transaction yet; once a write has happened the lock is already held.
    No-op on other dialects, where lock_for_update() does the job.
    """
    if db.engine.dialect.name != "sqlite":
        return
    dbapi_conn = db.session.connection().connection.dbapi_connection
    if not getattr(dbapi_conn, "in_transaction", False):
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
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc

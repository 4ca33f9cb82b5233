# Overview: Transaction helpers for read-then-write sequences on shared rows.

from __future__ import annotations

import time

from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for stock and allocation updates.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; there begin_immediate() takes
    the database write lock instead, and version_id columns catch the rest.
    """
    return query.with_for_update()


def begin_immediate() -> None:
    """Take the SQLite write lock up front so check-then-deduct runs serialized."""
    if db.engine.dialect.name == "sqlite":
        db.session.execute(text("BEGIN IMMEDIATE"))


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (a version_id mismatch: another writer changed the row after it was read).
    The operation is re-run from scratch, so it re-reads current state and
    re-validates before writing again.
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


def run_in_transaction(func, *, immediate: bool = True, attempts: int = 3, backoff_base: float = 0.1):
    """
    Run func() as one all-or-nothing unit of work and commit it.

    Any exception (domain errors included) rolls the session back before it
    propagates, so a rejected operation leaves no partial state behind and the
    next unit of work starts clean.
    """
    def _op():
        try:
            if immediate:
                begin_immediate()
            result = func()
            db.session.commit()
            return result
        except Exception:
            db.session.rollback()
            raise

    return run_with_retry(_op, attempts=attempts, backoff_base=backoff_base)

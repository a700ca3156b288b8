# Overview: Retry helpers for concurrent writes.

from __future__ import annotations

import time

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1,
                   retry_on: tuple[type[Exception], ...] = (OperationalError, StaleDataError)):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts) by default. func must be safe to re-run
    from scratch: the session is rolled back before every retry.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except retry_on as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc


def upsert_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.05):
    """
    Run a find-or-create-then-update unit of work.

    A concurrent writer creating the same unique row first surfaces as an
    IntegrityError; the retry then finds the row and updates it instead.
    """
    return run_with_retry(
        func,
        attempts=attempts,
        backoff_base=backoff_base,
        retry_on=(OperationalError, StaleDataError, IntegrityError),
    )

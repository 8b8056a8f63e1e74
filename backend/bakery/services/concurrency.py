# Overview: Locking, retry and lazy-row helpers shared by every stock writer.

from __future__ import annotations

import time

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for read-modify-write paths (bulk edit, fixes).

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a unit of work, retrying on lock/deadlock and stale-row failures.

    Each failed attempt is rolled back before the next one, so a caller never
    observes partial state from an attempt that did not commit.
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


def get_or_create(model, **keys):
    """
    Return the row matching `keys`, inserting it when absent.

    The insert runs in a SAVEPOINT; when a concurrent writer created the same
    row first, the unique constraint fires and the winner's row is returned.
    """
    query = db.session.query(model).filter_by(**keys)
    row = query.first()
    if row is not None:
        return row, False

    try:
        with db.session.begin_nested():
            row = model(**keys)
            db.session.add(row)
        return row, True
    except IntegrityError:
        row = query.first()
        if row is None:
            raise
        return row, False

# Overview: Service-layer transaction boundary; serializes every ledger mutation.

"""
Ledger transaction boundary.

Every mutating operation runs inside `ledger_transaction()`:
- one re-entrant lock per application (ledger instance) serializes writers
- the whole body commits once at the outermost level, or rolls back on
  any exception, so a failed check never leaves partial state behind
- nested use (checkout settling several orders) joins the outer transaction
"""

from __future__ import annotations

import threading
import time
from contextlib import contextmanager

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db

_state = threading.local()
_locks_guard = threading.Lock()


def _ledger_lock() -> threading.RLock:
    app = current_app._get_current_object()
    lock = app.extensions.get("ledger_lock")
    if lock is None:
        with _locks_guard:
            lock = app.extensions.setdefault("ledger_lock", threading.RLock())
    return lock


def in_ledger_transaction() -> bool:
    return getattr(_state, "depth", 0) > 0


@contextmanager
def ledger_transaction():
    """Run the enclosed block as one atomic ledger transaction."""
    with _ledger_lock():
        depth = getattr(_state, "depth", 0)
        _state.depth = depth + 1
        try:
            yield db.session
            if depth == 0:
                db.session.commit()
        except Exception:
            if depth == 0:
                db.session.rollback()
            raise
        finally:
            _state.depth = depth


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (locked database) and StaleDataError
    (optimistic version conflicts). Inside an enclosing ledger transaction
    the call runs once; the outermost caller owns the retry.
    """
    if in_ledger_transaction():
        return func()

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

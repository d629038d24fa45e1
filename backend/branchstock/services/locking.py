# Overview: Per-key exclusive locking for stock positions; encapsulates row locks and in-process mutexes.

from __future__ import annotations

import threading
import time
import weakref

from sqlalchemy import event
from sqlalchemy.orm import Session

from ..errors import TransientError


"""
Stock position locking

- Each (variant_id, branch_id) key has at most one owner at a time.
- Ownership is layered:
    1. an in-process mutex per key (threads of this process)
    2. SELECT ... FOR UPDATE on the stock_accounts row (other processes, row-locking databases)
    3. on SQLite, which ignores FOR UPDATE, a no-op UPDATE of the row that takes
       the database write lock (other processes sharing the file)
- Ownership belongs to the session transaction that acquired it and is
  released when that transaction ends (commit, rollback, or close).
- Keys never block each other in-process. SQLite writes are file-wide, so
  there writers on different keys still queue at the database.
"""

_SESSION_KEY = "branchstock.stock_locks"


class _KeyLock:
    __slots__ = ("mutex", "__weakref__")

    def __init__(self):
        self.mutex = threading.Lock()


class KeyLockRegistry:
    """Hands out one mutex per key; idle keys are dropped once nobody references them."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: "weakref.WeakValueDictionary[tuple, _KeyLock]" = weakref.WeakValueDictionary()

    def get(self, key: tuple) -> _KeyLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = _KeyLock()
                self._locks[key] = lock
            return lock


registry = KeyLockRegistry()


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    SQLite is covered by claim_sqlite_write_lock.
    """
    return query.with_for_update()


def claim_sqlite_write_lock(session: Session, touch_statement) -> None:
    """
    Hold the SQLite database write lock until the session transaction ends.

    touch_statement is a no-op UPDATE of the row about to be read. Writers in
    other processes wait in their own touch (bounded by the busy timeout) and
    then read the committed balance. Run it before any read in the transaction:
    SQLite only retries a busy write lock for a connection not yet reading.
    No-op on other databases.
    """
    if session.get_bind().dialect.name != "sqlite":
        return
    session.execute(touch_statement.execution_options(synchronize_session=False))


def _held(session: Session) -> dict:
    return session.info.setdefault(_SESSION_KEY, {})


def holds_stock_lock(session: Session, key: tuple) -> bool:
    return key in session.info.get(_SESSION_KEY, {})


def acquire_stock_lock(session: Session, key: tuple, *, timeout: float) -> None:
    """
    Take exclusive ownership of a key for the session's current transaction.

    Re-acquiring a key the session already owns is a no-op.
    Raises TransientError when the wait exceeds timeout.
    """
    held = _held(session)
    if key in held:
        return
    lock = registry.get(key)
    if not lock.mutex.acquire(timeout=timeout if timeout and timeout > 0 else -1):
        raise TransientError(
            f"Timed out after {timeout:g}s waiting for stock lock on variant={key[0]} branch={key[1]}",
            details={"variant_id": key[0], "branch_id": key[1]},
        )
    held[key] = lock


def release_stock_lock(session: Session, key: tuple) -> None:
    lock = session.info.get(_SESSION_KEY, {}).pop(key, None)
    if lock is not None:
        lock.mutex.release()


def release_stock_locks(session: Session) -> None:
    held = session.info.pop(_SESSION_KEY, None) or {}
    for lock in held.values():
        lock.mutex.release()


def _on_transaction_end(session, transaction):
    # Savepoints end inside the outer transaction; only the root releases ownership
    if transaction.parent is None:
        release_stock_locks(session)


def install_session_hooks() -> None:
    """Idempotent: registers the lock release hook on every ORM session."""
    if not event.contains(Session, "after_transaction_end", _on_transaction_end):
        event.listen(Session, "after_transaction_end", _on_transaction_end)


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Call func, retrying on TransientError with exponential backoff.

    For callers only: the coordinator never retries on its own. Terminal
    errors (not found, insufficient stock, conflict) propagate immediately.
    """
    for attempt in range(attempts):
        try:
            return func()
        except TransientError:
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))

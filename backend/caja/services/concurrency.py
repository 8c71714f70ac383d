# Overview: Locking, transaction and retry primitives shared by the guarded services.

"""
Concurrency primitives.

Three guarded resources exist: a cash session (open flag + movement set), a
sale's refunded total and a client's outstanding receivables. Each write path
takes, in this order:

1. an in-process keyed lock with a bounded wait (entity_lock), so writers in
   this process serialize even on SQLite, which ignores FOR UPDATE;
2. a row lock on the owning row (lock_for_update), which serializes writers
   across processes on PostgreSQL/MySQL;
3. an optimistic version check (version_id_col) on the owning row, which
   turns any remaining lost update into StaleDataError.

Lock order when two locks are held: entity (sale, client) -> cash session.
Keyed locks must stay held until the transaction that depends on them has
committed.
"""

from __future__ import annotations

import threading
import time
from contextlib import ExitStack, contextmanager

from flask import current_app, has_app_context
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import Conflict
from ..extensions import db


class _KeyedLock:
    """An RLock plus the number of threads holding or waiting for it."""

    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = threading.RLock()
        self.users = 0


# Entries live only while some thread holds or waits for the key
_registry_guard = threading.Lock()
_entity_locks: dict[tuple[str, int], _KeyedLock] = {}


def _config(key: str, default):
    if has_app_context():
        return current_app.config.get(key, default)
    return default


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    populate_existing() makes sure the row is re-read even when the session
    already holds a stale copy in its identity map.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update().populate_existing()


def _checkout(kind: str, key: int) -> threading.RLock:
    with _registry_guard:
        entry = _entity_locks.get((kind, key))
        if entry is None:
            entry = _entity_locks[(kind, key)] = _KeyedLock()
        entry.users += 1
        return entry.lock


def _checkin(kind: str, key: int) -> None:
    with _registry_guard:
        entry = _entity_locks[(kind, key)]
        entry.users -= 1
        if entry.users == 0:
            del _entity_locks[(kind, key)]


@contextmanager
def entity_lock(kind: str, key: int, timeout: float | None = None):
    """
    Hold the process-wide lock for one entity.

    Raises Conflict when the lock cannot be acquired within the bounded wait.
    """
    if timeout is None:
        timeout = float(_config("CAJA_LOCK_TIMEOUT_SECONDS", 5.0))
    lock = _checkout(kind, key)
    if not lock.acquire(timeout=timeout):
        _checkin(kind, key)
        raise Conflict(f"Timed out waiting for {kind} {key}", resource=kind, resource_id=key)
    try:
        yield
    finally:
        lock.release()
        _checkin(kind, key)


@contextmanager
def entity_locks(*keys: tuple[str, int], timeout: float | None = None):
    """Acquire several keyed locks in the given order; release in reverse."""
    with ExitStack() as stack:
        for kind, key in keys:
            stack.enter_context(entity_lock(kind, key, timeout=timeout))
        yield


@contextmanager
def transaction():
    """
    Commit on success, roll back on any error.

    A failed validation therefore leaves no partial state behind (no orphan
    movement, no half-closed session).
    """
    try:
        yield db.session
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float = 0.05):
    """
    Execute a guarded operation, retrying on concurrency-related failures.

    Retries on OperationalError (deadlocks, lock timeouts) and StaleDataError
    (optimistic locking conflicts). Each retry re-runs the whole operation, so
    balance checks are evaluated again against fresh totals. When attempts
    are exhausted the failure surfaces as Conflict.
    """
    if attempts is None:
        attempts = int(_config("CAJA_CONFLICT_RETRY_ATTEMPTS", 3))
    attempts = max(1, attempts)

    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise Conflict(f"Concurrent update ({type(exc).__name__})") from exc
            if has_app_context():
                current_app.logger.info(
                    "Concurrency conflict (%s), retrying attempt %d/%d",
                    type(exc).__name__, attempt + 2, attempts,
                )
            time.sleep(backoff_base * (2 ** attempt))

# Overview: Service-layer concurrency helpers: keyed in-process locks and retry on write conflicts.

from __future__ import annotations

import threading
import time
import weakref
from contextlib import contextmanager

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


_registry_lock = threading.Lock()
# Entries disappear once no thread holds or waits on the lock
_keyed_locks: weakref.WeakValueDictionary[tuple[str, object], threading.RLock] = weakref.WeakValueDictionary()


def keyed_lock(namespace: str, key: object) -> threading.RLock:
    """
    Return the process-wide lock for (namespace, key), creating it on first use.

    Locks are re-entrant so a holder can call helpers that take the same lock.
    """
    with _registry_lock:
        lock = _keyed_locks.get((namespace, key))
        if lock is None:
            lock = threading.RLock()
            _keyed_locks[(namespace, key)] = lock
        return lock


@contextmanager
def hold(namespace: str, key: object):
    lock = keyed_lock(namespace, key)
    with lock:
        yield


def user_lock(user_id: int):
    """Serializes the limit-check-and-update sequence for one user."""
    return hold("user", user_id)


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts on versioned rows).
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

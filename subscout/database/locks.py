"""
Per-entity mutual exclusion for state transitions.

Locks are held for the duration of a single transition only. They serialize
workers inside one process; the conditional updates and partial unique
indexes in the database keep the invariants across processes.
"""

import threading
import weakref
from contextlib import contextmanager
from typing import Any, Generator, Hashable, Tuple


def user_key(user_id: int) -> Tuple[str, int]:
    return ('user', user_id)


def service_key(user_id: int, service_name: str) -> Tuple[str, int, str]:
    return ('service', user_id, service_name.lower())


def subscription_key(subscription_id: int) -> Tuple[str, int]:
    return ('subscription', subscription_id)


class _EntityLock:
    """Re-entrant lock wrapper that can be weakly referenced."""

    def __init__(self):
        self._lock = threading.RLock()

    def acquire(self):
        self._lock.acquire()

    def release(self):
        self._lock.release()


class EntityLockManager:
    """Hands out one re-entrant lock per entity key."""

    def __init__(self):
        self._guard = threading.Lock()
        # Unused locks are collected once nobody holds a reference
        self._locks: "weakref.WeakValueDictionary[Hashable, Any]" = weakref.WeakValueDictionary()

    def _lock_for(self, key: Hashable):
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = _EntityLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, *keys: Hashable) -> Generator[None, None, None]:
        """Acquire the locks for ``keys`` in the given order."""
        acquired = []
        try:
            for key in keys:
                lock = self._lock_for(key)
                lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()


# Shared by every component in the process unless one is injected
_default_lock_manager = EntityLockManager()


def get_lock_manager() -> EntityLockManager:
    return _default_lock_manager

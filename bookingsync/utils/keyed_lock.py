"""
Per-key mutual exclusion.

One lock per booking code, created on demand and dropped once no thread
holds or waits on it. Different codes never block each other.
"""

import threading
from contextlib import contextmanager
from typing import Dict


class KeyedLock:
    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}
        self._users: Dict[str, int] = {}

    @contextmanager
    def hold(self, key: str):
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            self._users[key] = self._users.get(key, 0) + 1

        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                self._users[key] -= 1
                if self._users[key] == 0:
                    del self._users[key]
                    del self._locks[key]

    def active_keys(self) -> int:
        with self._guard:
            return len(self._locks)


# Shared by the webhook pipeline and the scheduler's gap fill
booking_locks = KeyedLock()

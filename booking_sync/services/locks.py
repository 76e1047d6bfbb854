"""
In-process keyed locks.

Serializes work on one key (a property id) while letting different keys
proceed in parallel. Locks are re-entrant and discarded once unused.
"""

import threading
from contextlib import contextmanager
from typing import Generator


class KeyedLocks:
    """A registry of re-entrant locks created on demand per key."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.RLock] = {}
        self._users: dict[str, int] = {}

    @contextmanager
    def hold(self, key: str) -> Generator[None, None, None]:
        """
        Hold the lock for ``key`` for the duration of the block.

        Args:
            key: Lock key
        """
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.RLock()
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

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

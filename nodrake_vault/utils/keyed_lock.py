"""
Per-key mutual exclusion within one process.

Used to serialize token refreshes for the same (user, provider) so a burst of
concurrent callers produces a single provider refresh. Locks are created on
first use and dropped when the last holder or waiter releases them.
"""

import threading
from contextlib import contextmanager
from typing import Dict, Hashable, Iterator, Optional, Tuple


class KeyedLock:
    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[Hashable, Tuple[threading.Lock, int]] = {}

    def _checkout(self, key: Hashable) -> threading.Lock:
        with self._guard:
            lock, refs = self._locks.get(key, (None, 0))
            if lock is None:
                lock = threading.Lock()
            self._locks[key] = (lock, refs + 1)
            return lock

    def _checkin(self, key: Hashable) -> None:
        with self._guard:
            lock, refs = self._locks[key]
            if refs <= 1:
                del self._locks[key]
            else:
                self._locks[key] = (lock, refs - 1)

    @contextmanager
    def hold(self, key: Hashable, timeout: Optional[float] = None) -> Iterator[bool]:
        """
        Hold the lock for ``key`` for the duration of the block.

        Yields True when acquired; False when ``timeout`` elapsed first, in which
        case the block runs without the lock and the caller decides what to do.
        """
        lock = self._checkout(key)
        acquired = lock.acquire(timeout=-1 if timeout is None else timeout)
        try:
            yield acquired
        finally:
            if acquired:
                lock.release()
            self._checkin(key)

    def active_keys(self) -> int:
        with self._guard:
            return len(self._locks)

import asyncio
from typing import Dict, Hashable


class KeyedLocks:
    """One asyncio.Lock per key, e.g. per user id.

    Idle locks are dropped once more than `max_idle` keys are held, so the
    map does not grow with every user ever seen.
    """

    def __init__(self, max_idle: int = 1024):
        self.max_idle = max_idle
        self._locks: Dict[Hashable, asyncio.Lock] = {}

    def __call__(self, key: Hashable) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            if len(self._locks) >= self.max_idle:
                self._prune()
            lock = self._locks[key] = asyncio.Lock()
        return lock

    @staticmethod
    def _idle(lock: asyncio.Lock) -> bool:
        # A released lock can still have a woken waiter that has not re-acquired it yet
        return not lock.locked() and not getattr(lock, "_waiters", None)

    def _prune(self) -> None:
        for key in [k for k, lock in self._locks.items() if self._idle(lock)]:
            del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)

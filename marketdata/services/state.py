"""
SynchronizedMap - keyed process-lifetime state with per-key locking.

Each key gets its own lock, so updates for one identifier never block
another and read-modify-write sequences on the same key cannot interleave.
"""

import threading
from typing import Callable, Generic, TypeVar

K = TypeVar("K")
V = TypeVar("V")
R = TypeVar("R")


class SynchronizedMap(Generic[K, V]):
    """
    Map whose values are only mutated through ``compute``.

    Usage:
        counters: SynchronizedMap[str, int] = SynchronizedMap()

        def bump(current: int | None) -> tuple[int, int]:
            new = (current or 0) + 1
            return new, new

        value = counters.compute("key", bump)
    """

    def __init__(self):
        self._values: dict[K, V] = {}
        self._locks: dict[K, threading.Lock] = {}
        self._guard = threading.Lock()

    def _lock_for(self, key: K) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    def compute(self, key: K, fn: Callable[[V | None], tuple[V, R]]) -> R:
        """
        Atomically replace the value for ``key``.

        ``fn`` receives the current value (or None) and returns
        ``(new_value, result)``; ``result`` is handed back to the caller.
        """
        with self._lock_for(key):
            new_value, result = fn(self._values.get(key))
            self._values[key] = new_value
            return result

    def get(self, key: K) -> V | None:
        with self._lock_for(key):
            return self._values.get(key)

    def pop(self, key: K) -> V | None:
        with self._lock_for(key):
            return self._values.pop(key, None)

    def keys(self) -> list[K]:
        with self._guard:
            return list(self._values.keys())

    def clear(self) -> None:
        """Drop every value, each under its own key lock. Locks are kept."""
        with self._guard:
            locks = list(self._locks.items())
        for key, lock in locks:
            with lock:
                self._values.pop(key, None)

    def __len__(self) -> int:
        return len(self._values)

    def __contains__(self, key: object) -> bool:
        return key in self._values

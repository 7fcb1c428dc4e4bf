"""
Cache-miss coordination strategies.

Two concurrent misses for the same unseen bucket both fetch upstream and
both `put`; the last write wins and every generation is complete, so this
is only wasteful, never wrong. `BucketLocked` collapses concurrent misses
inside one process; `Unlocked` keeps the plain behaviour. The orchestrator
calls `guard.hold(bucket_key)` either way.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Dict, Iterator


class MissGuard(ABC):
    kind: str = "abstract"

    @abstractmethod
    @contextmanager
    def hold(self, bucket_key: str) -> Iterator[bool]:
        """Yield True when the holder should re-check the cache before fetching."""
        ...


class Unlocked(MissGuard):
    kind = "unlocked"

    @contextmanager
    def hold(self, bucket_key: str) -> Iterator[bool]:
        yield False


class BucketLocked(MissGuard):
    """Per-bucket in-process lock; waiters re-read the cache once they get in."""

    kind = "bucket_locked"

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}
        self._waiters: Dict[str, int] = {}

    def _acquire_slot(self, bucket_key: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(bucket_key)
            if lock is None:
                lock = threading.Lock()
                self._locks[bucket_key] = lock
            self._waiters[bucket_key] = self._waiters.get(bucket_key, 0) + 1
            return lock

    def _release_slot(self, bucket_key: str) -> None:
        with self._guard:
            n = self._waiters.get(bucket_key, 1) - 1
            if n <= 0:
                self._waiters.pop(bucket_key, None)
                self._locks.pop(bucket_key, None)
            else:
                self._waiters[bucket_key] = n

    @contextmanager
    def hold(self, bucket_key: str) -> Iterator[bool]:
        lock = self._acquire_slot(bucket_key)
        try:
            with lock:
                yield True
        finally:
            self._release_slot(bucket_key)

    def active_buckets(self) -> int:
        with self._guard:
            return len(self._locks)


def create_miss_guard(single_flight: bool) -> MissGuard:
    return BucketLocked() if single_flight else Unlocked()

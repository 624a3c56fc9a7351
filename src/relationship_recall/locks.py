"""Per-key mutual exclusion for match/merge and embedding writes."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional

from .errors import ConflictError
from .logger import get_logger

log = get_logger(__name__)


class KeyedLocks:
    """A lock per string key, created on demand and dropped when unused.

    Several keys are always taken in sorted order, so two holders of
    overlapping key sets cannot deadlock.
    """

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}
        self._refs: Dict[str, int] = {}

    def _checkout(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
                self._refs[key] = 0
            self._refs[key] += 1
            return lock

    def _checkin(self, key: str) -> None:
        with self._guard:
            self._refs[key] -= 1
            if self._refs[key] == 0:
                del self._refs[key]
                del self._locks[key]

    @contextmanager
    def hold(self, *keys: str, timeout: Optional[float] = None) -> Iterator[None]:
        """Hold every key for the duration of the block.

        Raises ConflictError when a key cannot be acquired within the timeout.
        """
        wait = self.timeout if timeout is None else timeout
        held: List[tuple[str, threading.Lock]] = []
        try:
            for key in sorted(set(keys)):
                lock = self._checkout(key)
                if not lock.acquire(timeout=-1 if wait is None else wait):
                    self._checkin(key)
                    log.warning("Lock wait timed out for key %r", key)
                    raise ConflictError(f"another operation holds {key!r}; retry")
                held.append((key, lock))
            yield
        finally:
            for key, lock in reversed(held):
                lock.release()
                self._checkin(key)

    def active_keys(self) -> List[str]:
        with self._guard:
            return sorted(self._locks)

"""Tests for per-key locking."""

import threading
import time

import pytest

from relationship_recall.errors import ConflictError
from relationship_recall.locks import KeyedLocks


class TestKeyedLocks:
    def test_same_key_is_exclusive(self) -> None:
        locks = KeyedLocks()
        inside = []
        overlap = []

        def work() -> None:
            with locks.hold("name:jane"):
                inside.append(1)
                if len(inside) > 1:
                    overlap.append(True)
                time.sleep(0.01)
                inside.pop()

        threads = [threading.Thread(target=work) for _ in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert overlap == []

    def test_different_keys_do_not_block(self) -> None:
        locks = KeyedLocks(timeout=0.05)
        with locks.hold("a"):
            with locks.hold("b"):
                pass

    def test_timeout_raises_conflict(self) -> None:
        locks = KeyedLocks(timeout=0.05)
        held = threading.Event()
        release = threading.Event()

        def holder() -> None:
            with locks.hold("name:sam"):
                held.set()
                release.wait(2)

        t = threading.Thread(target=holder)
        t.start()
        held.wait(2)
        try:
            with pytest.raises(ConflictError):
                with locks.hold("name:sam", "name:other"):
                    pass
            # The key acquired before the timeout was released again.
            assert "name:other" not in locks.active_keys()
        finally:
            release.set()
            t.join()

    def test_unused_locks_are_dropped(self) -> None:
        locks = KeyedLocks()
        with locks.hold("x", "y", "x"):
            assert locks.active_keys() == ["x", "y"]
        assert locks.active_keys() == []

"""Tests for the search result cache."""

import json
import threading
import time
from unittest.mock import MagicMock

import redis

from relationship_recall.cache import SearchResultCache, normalize_query, query_fingerprint
from relationship_recall.config import CacheConfig
from relationship_recall.models import SearchResult


def _results(*ids: str) -> list:
    return [SearchResult(i, 0.9 - n * 0.1, n, [i]) for n, i in enumerate(ids)]


class TestFingerprint:
    """Query normalization."""

    def test_case_and_whitespace_insensitive(self) -> None:
        assert query_fingerprint("People  with Technology\texperience ") == query_fingerprint(
            "people with technology experience"
        )

    def test_different_queries_differ(self) -> None:
        assert query_fingerprint("coffee") != query_fingerprint("hiking")

    def test_normalize_query(self) -> None:
        assert normalize_query("  A   B ") == "a b"


class TestEntryLifecycle:
    """Absent -> Fresh -> Invalidated -> Absent."""

    def test_store_then_get(self) -> None:
        cache = SearchResultCache(CacheConfig())
        assert cache.get("fp", 5) is None
        assert cache.store("fp", 5, _results("a", "b"), cache.token())
        assert [r.interaction_id for r in cache.get("fp", 5)] == ["a", "b"]

    def test_limit_is_part_of_key(self) -> None:
        cache = SearchResultCache(CacheConfig())
        cache.store("fp", 5, _results("a"), cache.token())
        assert cache.get("fp", 10) is None

    def test_store_refused_after_invalidation(self) -> None:
        cache = SearchResultCache(CacheConfig())
        token = cache.token()
        cache.invalidate_interaction("unrelated")
        assert not cache.store("fp", 5, _results("a"), token)
        assert cache.get("fp", 5) is None
        assert cache.get_stats()["skipped_stores"] == 1

    def test_invalidate_interaction_is_targeted(self) -> None:
        cache = SearchResultCache(CacheConfig())
        cache.store("q1", 5, _results("a", "b"), cache.token())
        cache.store("q2", 5, _results("c"), cache.token())

        assert cache.invalidate_interaction("b") == 1

        assert cache.get("q1", 5) is None
        assert cache.get("q2", 5) is not None

    def test_invalidation_covers_pool_and_cluster_members(self) -> None:
        cache = SearchResultCache(CacheConfig())
        results = [SearchResult("a", 0.9, 0, ["a", "a-dupe"])]
        cache.store("q1", 1, results, cache.token(), interaction_ids=["a", "a-dupe", "overfetched"])

        assert cache.invalidate_interaction("overfetched") == 1
        assert cache.get("q1", 1) is None

    def test_invalidate_all(self) -> None:
        cache = SearchResultCache(CacheConfig())
        cache.store("q1", 5, _results("a"), cache.token())
        cache.store("q2", 5, [], cache.token())

        assert cache.invalidate_all("test") == 2
        assert len(cache) == 0
        assert cache.get("q1", 5) is None

    def test_ttl_expiry(self) -> None:
        cache = SearchResultCache(CacheConfig(ttl_seconds=0))
        cache.store("fp", 5, _results("a"), cache.token())
        assert cache.get("fp", 5) is None
        assert len(cache) == 0

    def test_eviction_drops_least_recently_used(self) -> None:
        cache = SearchResultCache(CacheConfig(max_entries=2))
        cache.store("q1", 5, _results("a"), cache.token())
        cache.store("q2", 5, _results("b"), cache.token())
        cache.get("q1", 5)
        cache.store("q3", 5, _results("c"), cache.token())

        assert cache.get("q2", 5) is None
        assert cache.get("q1", 5) is not None
        assert cache.get_stats()["evictions"] == 1
        # The evicted entry no longer appears in the reverse index.
        assert cache.invalidate_interaction("b") == 0

    def test_stats(self) -> None:
        cache = SearchResultCache(CacheConfig())
        cache.get("fp", 5)
        cache.store("fp", 5, _results("a"), cache.token())
        cache.get("fp", 5)

        stats = cache.get_stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["hit_rate"] == 0.5
        assert stats["backend"] == "memory"


class TestRedisMirror:
    """Shared second tier, exercised against a mocked client."""

    def test_store_writes_entry_and_reverse_index(self) -> None:
        client = MagicMock()
        client.get.return_value = None
        pipe = client.pipeline.return_value
        cache = SearchResultCache(CacheConfig(ttl_seconds=60), redis_client=client)

        cache.store("fp", 5, _results("a"), cache.token())

        key, ttl, payload = pipe.setex.call_args[0]
        assert key == "search:fp:5"
        assert ttl == 60
        assert json.loads(payload)["results"][0]["interaction_id"] == "a"
        pipe.sadd.assert_called_once_with("search:ix:a", "search:fp:5")
        pipe.execute.assert_called_once()

    def test_redis_hit_when_generation_matches(self) -> None:
        payload = json.dumps({"generation": 3, "results": [r.to_dict() for r in _results("x")]})
        store = {"search:fp:5": payload, "search:generation": "3"}
        client = MagicMock()
        client.get.side_effect = store.get
        cache = SearchResultCache(CacheConfig(), redis_client=client)

        hit = cache.get("fp", 5)

        assert [r.interaction_id for r in hit] == ["x"]
        assert cache.get_stats()["redis_hits"] == 1

    def test_redis_entry_from_old_generation_is_ignored(self) -> None:
        payload = json.dumps({"generation": 2, "results": [r.to_dict() for r in _results("x")]})
        store = {"search:fp:5": payload, "search:generation": "3"}
        client = MagicMock()
        client.get.side_effect = store.get
        cache = SearchResultCache(CacheConfig(), redis_client=client)

        assert cache.get("fp", 5) is None

    def test_invalidate_all_bumps_shared_generation(self) -> None:
        client = MagicMock()
        cache = SearchResultCache(CacheConfig(), redis_client=client)
        cache.invalidate_all()
        client.incr.assert_called_once_with("search:generation")

    def test_invalidate_interaction_deletes_remote_keys(self) -> None:
        client = MagicMock()
        client.smembers.return_value = {"search:other:5"}
        cache = SearchResultCache(CacheConfig(), redis_client=client)

        cache.invalidate_interaction("a")

        client.delete.assert_any_call("search:other:5")
        client.delete.assert_any_call("search:ix:a")

    def test_redis_errors_fall_back_to_memory(self) -> None:
        client = MagicMock()
        client.get.side_effect = redis.ConnectionError("down")
        client.pipeline.side_effect = redis.ConnectionError("down")
        cache = SearchResultCache(CacheConfig(), redis_client=client)

        assert cache.store("fp", 5, _results("a"), cache.token())
        assert cache.get("fp", 5) is not None
        assert cache.get("other", 5) is None
        assert cache.get_stats()["redis_errors"] >= 2


class TestConcurrentReaders:
    """Readers see a whole entry or none while invalidation runs."""

    def test_reads_during_invalidation(self) -> None:
        cache = SearchResultCache(CacheConfig())
        seen = []
        stop = time.time() + 0.3

        def reader() -> None:
            while time.time() < stop:
                got = cache.get("fp", 2)
                if got is not None:
                    seen.append(tuple(r.interaction_id for r in got))

        def writer() -> None:
            while time.time() < stop:
                cache.store("fp", 2, _results("a", "b"), cache.token())
                cache.invalidate_all()

        threads = [threading.Thread(target=reader) for _ in range(3)] + [threading.Thread(target=writer)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert set(seen) <= {("a", "b")}


class SharedRedis:
    """In-memory stand-in for the few Redis commands the cache issues."""

    def __init__(self) -> None:
        self.data: dict = {}
        self.sets: dict = {}
        self.gate = None

    def get(self, key):
        if self.gate is not None:
            self.gate.wait(2)
        return self.data.get(key)

    def incr(self, key):
        self.data[key] = str(int(self.data.get(key, 0)) + 1)
        return int(self.data[key])

    def smembers(self, key):
        return set(self.sets.get(key, ()))

    def delete(self, *keys):
        for key in keys:
            self.data.pop(key, None)
            self.sets.pop(key, None)

    def pipeline(self):
        return _SharedPipeline(self)


class _SharedPipeline:
    def __init__(self, owner: SharedRedis) -> None:
        self.owner = owner
        self.ops: list = []

    def setex(self, key, ttl, value):
        self.ops.append(lambda: self.owner.data.__setitem__(key, value))

    def sadd(self, key, member):
        self.ops.append(lambda: self.owner.sets.setdefault(key, set()).add(member))

    def expire(self, key, ttl):
        pass

    def execute(self):
        for op in self.ops:
            op()


class TestSharedWorkers:
    """Two caches in different workers sharing one Redis."""

    def _pair(self, shared: SharedRedis) -> tuple:
        config = CacheConfig(redis_enabled=True)
        return SearchResultCache(config, redis_client=shared), SearchResultCache(config, redis_client=shared)

    def test_fresh_entry_is_shared(self) -> None:
        worker_a, worker_b = self._pair(SharedRedis())
        worker_a.store("fp", 5, _results("a"), worker_a.token())

        assert [r.interaction_id for r in worker_b.get("fp", 5)] == ["a"]
        assert worker_b.get_stats()["redis_hits"] == 1

    def test_invalidate_all_reaches_other_memory_tier(self) -> None:
        worker_a, worker_b = self._pair(SharedRedis())
        worker_a.store("fp", 5, _results("old"), worker_a.token())
        assert worker_a.get("fp", 5) is not None

        worker_b.invalidate_all()

        assert worker_a.get("fp", 5) is None
        assert worker_b.get("fp", 5) is None
        assert worker_a.get_stats()["stale_drops"] == 1

    def test_targeted_invalidation_reaches_other_memory_tier(self) -> None:
        worker_a, worker_b = self._pair(SharedRedis())
        worker_a.store("fp", 5, _results("old"), worker_a.token())

        worker_b.invalidate_interaction("old")

        assert worker_a.get("fp", 5) is None

    def test_result_started_before_remote_invalidation_is_not_stored(self) -> None:
        shared = SharedRedis()
        worker_a, worker_b = self._pair(shared)
        token = worker_a.token()

        worker_b.invalidate_all()

        assert not worker_a.store("fp", 5, _results("old"), token)
        assert worker_a.get("fp", 5) is None
        assert worker_b.get("fp", 5) is None
        assert "search:fp:5" not in shared.data

    def test_slow_redis_does_not_block_other_callers(self) -> None:
        shared = SharedRedis()
        cache = SearchResultCache(CacheConfig(redis_enabled=True), redis_client=shared)
        cache.store("fp", 5, _results("a"), cache.token())
        shared.gate = threading.Event()

        reader = threading.Thread(target=cache.get, args=("fp", 5))
        reader.start()
        try:
            counted = []
            sizer = threading.Thread(target=lambda: counted.append(len(cache)))
            sizer.start()
            sizer.join(1)
            assert counted == [1]
        finally:
            shared.gate.set()
            reader.join()

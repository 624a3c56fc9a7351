"""Search result cache keyed by normalized query fingerprint.

Entries live in process memory and are optionally mirrored to Redis so
several workers can share them. An entry is Fresh from ``store`` until it is
invalidated, expires or is evicted; invalidated entries are dropped
immediately and never returned.

Invalidation is either global (``invalidate_all``, used when corpus ownership
or membership changes) or targeted at entries whose results reference one
interaction (``invalidate_interaction``). A search records ``token()`` before
it reads the corpus and passes it to ``store``; the store is refused if any
invalidation happened in between, so a result computed from a pre-mutation
corpus is never cached after that mutation.

With Redis, every invalidation also advances the shared generation key.
Other workers cannot tell which of their in-process entries cite an
interaction, so each tier only serves entries stamped with the current
shared generation. Network calls are made outside the in-process lock.
"""

from __future__ import annotations

import hashlib
import json
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set

import redis

from .config import CacheConfig
from .logger import get_logger
from .models import SearchResult
from .utils import collapse_whitespace

log = get_logger(__name__)


def normalize_query(query: str) -> str:
    return collapse_whitespace(query).lower()


def query_fingerprint(query: str) -> str:
    """Stable hash of the lowercased, whitespace-collapsed query."""
    return hashlib.sha256(normalize_query(query).encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class CacheToken:
    """Invalidation state observed when a search started."""

    mutations: int
    remote_generation: Optional[int] = None


@dataclass
class CacheEntry:
    results: List[SearchResult]
    interaction_ids: Set[str]
    created_at: float
    generation: int = 0
    remote_generation: Optional[int] = None
    extra: Dict[str, Any] = field(default_factory=dict)


def get_redis_client(config: CacheConfig) -> Optional[Any]:
    """Connect to Redis when enabled; ``None`` keeps the cache in-process."""
    if not config.redis_enabled:
        return None
    client = redis.Redis(
        host=config.redis_host,
        port=config.redis_port,
        db=config.redis_db,
        password=config.redis_password,
        decode_responses=True,
    )
    try:
        client.ping()
    except redis.RedisError as exc:
        log.error("Failed to connect to Redis cache: %s, using in-memory cache only", exc)
        return None
    log.info("Redis cache connection established: %s:%s (db=%s)", config.redis_host, config.redis_port, config.redis_db)
    return client


class SearchResultCache:
    def __init__(self, config: Optional[CacheConfig] = None, redis_client: Optional[Any] = None):
        self.config = config or CacheConfig()
        self._redis = redis_client
        self._lock = threading.RLock()
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._by_interaction: Dict[str, Set[str]] = {}
        self._generation = 0
        self._mutations = 0
        self._stats = {
            "hits": 0,
            "misses": 0,
            "memory_hits": 0,
            "redis_hits": 0,
            "redis_errors": 0,
            "stores": 0,
            "skipped_stores": 0,
            "stale_drops": 0,
            "invalidations": 0,
            "entries_invalidated": 0,
            "evictions": 0,
        }

    # --- keys ------------------------------------------------------------

    def _key(self, fingerprint: str, limit: int) -> str:
        return f"{self.config.key_prefix}:{fingerprint}:{limit}"

    def _redis_generation_key(self) -> str:
        return f"{self.config.key_prefix}:generation"

    def _redis_index_key(self, interaction_id: str) -> str:
        return f"{self.config.key_prefix}:ix:{interaction_id}"

    def _bump(self, stat: str, amount: int = 1) -> None:
        with self._lock:
            self._stats[stat] += amount

    def _redis_error(self, action: str, exc: Exception) -> None:
        log.error("Redis %s error: %s", action, exc)
        self._bump("redis_errors")

    def _remote_generation(self) -> Optional[int]:
        """Shared generation, or None without Redis or when it cannot be read."""
        if self._redis is None:
            return None
        try:
            return int(self._redis.get(self._redis_generation_key()) or 0)
        except (redis.RedisError, ValueError, TypeError) as exc:
            self._redis_error("generation", exc)
            return None

    # --- reads -----------------------------------------------------------

    def token(self) -> CacheToken:
        """Opaque marker of the invalidation state, passed back to ``store``."""
        remote = self._remote_generation()
        with self._lock:
            return CacheToken(self._mutations, remote)

    def get(self, fingerprint: str, limit: int) -> Optional[List[SearchResult]]:
        key = self._key(fingerprint, limit)
        remote = self._remote_generation()
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None:
                if time.time() - entry.created_at >= self.config.ttl_seconds:
                    self._drop(key)
                elif remote is not None and entry.remote_generation != remote:
                    # Another worker invalidated since this entry was stored.
                    self._drop(key)
                    self._stats["stale_drops"] += 1
                else:
                    self._entries.move_to_end(key)
                    self._stats["hits"] += 1
                    self._stats["memory_hits"] += 1
                    return list(entry.results)

        results = self._redis_get(key, remote)
        with self._lock:
            if results is not None:
                self._stats["hits"] += 1
                self._stats["redis_hits"] += 1
                return results
            self._stats["misses"] += 1
            return None

    def _redis_get(self, key: str, current: Optional[int]) -> Optional[List[SearchResult]]:
        if self._redis is None or current is None:
            return None
        try:
            raw = self._redis.get(key)
            if raw is None:
                return None
            payload = json.loads(raw)
        except (redis.RedisError, ValueError, TypeError) as exc:
            self._redis_error("get", exc)
            return None
        if payload.get("generation") != current:
            return None
        return [SearchResult.from_dict(r) for r in payload.get("results", [])]

    # --- writes ----------------------------------------------------------

    def store(
        self,
        fingerprint: str,
        limit: int,
        results: List[SearchResult],
        token: CacheToken,
        interaction_ids: Optional[Iterable[str]] = None,
    ) -> bool:
        """Cache ``results`` unless an invalidation happened since ``token``."""
        ids = set(interaction_ids or ())
        for r in results:
            ids.add(r.interaction_id)
            ids.update(r.member_ids)

        key = self._key(fingerprint, limit)
        remote_moved = False
        if self._redis is not None and token.remote_generation is not None:
            remote_moved = self._remote_generation() != token.remote_generation

        with self._lock:
            if remote_moved or token.mutations != self._mutations:
                self._stats["skipped_stores"] += 1
                log.debug("Skipped caching %s: corpus changed during search", key)
                return False

            if key in self._entries:
                self._drop(key)
            while len(self._entries) >= max(self.config.max_entries, 1):
                oldest = next(iter(self._entries))
                self._drop(oldest)
                self._stats["evictions"] += 1

            self._entries[key] = CacheEntry(
                results=list(results),
                interaction_ids=ids,
                created_at=time.time(),
                generation=self._generation,
                remote_generation=token.remote_generation,
            )
            for interaction_id in ids:
                self._by_interaction.setdefault(interaction_id, set()).add(key)
            self._stats["stores"] += 1

        if token.remote_generation is not None:
            self._redis_set(key, results, ids, token.remote_generation)
        return True

    def _redis_set(self, key: str, results: List[SearchResult], ids: Set[str], generation: int) -> None:
        # Stamped with the generation seen when the search began; an
        # invalidation racing this write leaves the payload unreadable.
        try:
            payload = json.dumps({"generation": generation, "results": [r.to_dict() for r in results]})
            pipe = self._redis.pipeline()
            pipe.setex(key, self.config.ttl_seconds, payload)
            for interaction_id in ids:
                index_key = self._redis_index_key(interaction_id)
                pipe.sadd(index_key, key)
                pipe.expire(index_key, self.config.ttl_seconds)
            pipe.execute()
        except (redis.RedisError, ValueError, TypeError) as exc:
            self._redis_error("set", exc)

    def _drop(self, key: str) -> None:
        entry = self._entries.pop(key, None)
        if entry is None:
            return
        for interaction_id in entry.interaction_ids:
            keys = self._by_interaction.get(interaction_id)
            if keys is not None:
                keys.discard(key)
                if not keys:
                    del self._by_interaction[interaction_id]

    def _advance_remote_generation(self) -> None:
        if self._redis is None:
            return
        try:
            self._redis.incr(self._redis_generation_key())
        except redis.RedisError as exc:
            self._redis_error("invalidation", exc)

    def invalidate_all(self, reason: str = "") -> int:
        """Drop every entry; returns how many in-process entries were dropped."""
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            self._by_interaction.clear()
            self._generation += 1
            self._mutations += 1
            self._stats["invalidations"] += 1
            self._stats["entries_invalidated"] += count
        self._advance_remote_generation()
        log.info("Invalidated %d cached search result(s)%s", count, f" ({reason})" if reason else "")
        return count

    def invalidate_interaction(self, interaction_id: str) -> int:
        """Drop entries whose results reference ``interaction_id``."""
        with self._lock:
            keys = list(self._by_interaction.get(interaction_id, ()))
            for key in keys:
                self._drop(key)
            self._mutations += 1
            self._stats["invalidations"] += 1
            self._stats["entries_invalidated"] += len(keys)

        if self._redis is not None:
            self._advance_remote_generation()
            try:
                index_key = self._redis_index_key(interaction_id)
                remote = set(self._redis.smembers(index_key) or ())
                remote.update(keys)
                if remote:
                    self._redis.delete(*remote)
                self._redis.delete(index_key)
            except redis.RedisError as exc:
                self._redis_error("invalidation", exc)
        if keys:
            log.debug("Invalidated %d cached search result(s) referencing %s", len(keys), interaction_id)
        return len(keys)

    # --- introspection ---------------------------------------------------

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            stats: Dict[str, Any] = dict(self._stats)
            stats["entries"] = len(self._entries)
            stats["generation"] = self._generation
            lookups = stats["hits"] + stats["misses"]
            stats["hit_rate"] = (stats["hits"] / lookups) if lookups else 0.0
            stats["backend"] = "redis" if self._redis is not None else "memory"
            return stats

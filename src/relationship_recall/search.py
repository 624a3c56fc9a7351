"""Semantic search over interaction notes.

A query goes fingerprint -> result cache -> embed -> nearest neighbors
(over-fetched) -> near-duplicate clustering -> truncation -> cache store ->
analytics. When the embedding model is unavailable the engine falls back to
keyword overlap and marks the response degraded; degraded results are never
cached.
"""

from __future__ import annotations

import re
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from . import db
from .analytics import record_search
from .cache import SearchResultCache, normalize_query, query_fingerprint
from .clustering import cluster_neighbors
from .config import SearchConfig
from .embeddings import EmbeddingCache, Neighbor
from .errors import DependencyUnavailable, ValidationError
from .logger import get_logger, log_extra
from .models import SearchResult
from .utils import parse_iso

log = get_logger(__name__)

_TOKEN = re.compile(r"[a-z0-9]+")


def tokenize(text: str) -> Set[str]:
    return set(_TOKEN.findall((text or "").lower()))


@dataclass
class SearchResponse:
    query: str
    fingerprint: str
    results: List[SearchResult] = field(default_factory=list)
    from_cache: bool = False
    degraded: bool = False
    latency_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "query": self.query,
            "fingerprint": self.fingerprint,
            "results": [r.to_dict() for r in self.results],
            "from_cache": self.from_cache,
            "degraded": self.degraded,
            "latency_ms": self.latency_ms,
        }


class SemanticSearchEngine:
    def __init__(
        self,
        db_path: str,
        embedding_cache: EmbeddingCache,
        result_cache: SearchResultCache,
        embedder,
        config: Optional[SearchConfig] = None,
    ):
        self.db_path = db_path
        self.embedding_cache = embedding_cache
        self.result_cache = result_cache
        self.embedder = embedder
        self.config = config or SearchConfig()

    def _check_inputs(self, query: str, limit: Optional[int]) -> tuple[str, int]:
        if not isinstance(query, str) or not normalize_query(query):
            raise ValidationError("query must be a non-empty string")
        limit = self.config.default_limit if limit is None else limit
        if limit <= 0:
            raise ValidationError("limit must be positive")
        return normalize_query(query), limit

    def search(self, query: str, limit: Optional[int] = None) -> List[SearchResult]:
        return self.search_detailed(query, limit).results

    def search_detailed(self, query: str, limit: Optional[int] = None) -> SearchResponse:
        started = time.perf_counter()
        text, limit = self._check_inputs(query, limit)
        response = SearchResponse(query=text, fingerprint=query_fingerprint(text))

        cached = self.result_cache.get(response.fingerprint, limit)
        if cached is not None:
            response.results = cached
            response.from_cache = True
            return self._finish(response, started)

        # Taken before the corpus is read; see SearchResultCache.store.
        token = self.result_cache.token()
        try:
            query_vector = self.embedder.embed(text)
        except DependencyUnavailable as exc:
            log.warning("Search degraded to keyword matching: %s", exc)
            response.degraded = True
            response.results = self._keyword_results(text, limit)
            return self._finish(response, started)

        pool = self.embedding_cache.nearest_neighbors(query_vector, limit * max(self.config.overfetch_factor, 1))
        pool = [n for n in pool if n.score >= self.config.min_similarity]
        vectors = self.embedding_cache.get_many([n.interaction_id for n in pool]) if pool else {}
        clusters = cluster_neighbors(pool, vectors, self.config.cluster_threshold)

        response.results = [
            SearchResult(
                interaction_id=c.representative.interaction_id,
                score=round(c.representative.score, 6),
                cluster_id=rank,
                member_ids=c.member_ids,
            )
            for rank, c in enumerate(clusters[:limit])
        ]
        self.result_cache.store(
            response.fingerprint,
            limit,
            response.results,
            token,
            interaction_ids=[n.interaction_id for n in pool],
        )
        return self._finish(response, started)

    def _finish(self, response: SearchResponse, started: float) -> SearchResponse:
        response.latency_ms = round((time.perf_counter() - started) * 1000.0, 3)
        record_search(
            self.db_path,
            response.fingerprint,
            len(response.results),
            response.latency_ms,
            cache_hit=response.from_cache,
            degraded=response.degraded,
        )
        log.debug(
            "search fp=%s results=%d cache=%s degraded=%s %.1fms",
            response.fingerprint[:12],
            len(response.results),
            response.from_cache,
            response.degraded,
            response.latency_ms,
            extra=log_extra(
                event="search",
                fingerprint=response.fingerprint,
                result_count=len(response.results),
                cache_hit=response.from_cache,
                degraded=response.degraded,
                latency_ms=response.latency_ms,
            ),
        )
        return response

    # --- keyword scoring ---------------------------------------------------

    def keyword_scores(self, query: str) -> List[Neighbor]:
        """Fraction of query terms present in each interaction, best first."""
        terms = tokenize(query)
        if not terms:
            return []
        scored = []
        for row in db.list_interaction_texts(self.db_path):
            doc = tokenize(" ".join(filter(None, (row["summary"], row["full_text"], row["location"]))))
            hits = len(terms & doc)
            if hits:
                scored.append(Neighbor(row["id"], hits / len(terms), parse_iso(row["date"])))
        scored.sort(key=lambda n: (-n.score, -(n.date.timestamp() if n.date else 0.0), n.interaction_id))
        return scored

    def _keyword_results(self, query: str, limit: int) -> List[SearchResult]:
        return [
            SearchResult(n.interaction_id, round(n.score, 6), rank, [n.interaction_id])
            for rank, n in enumerate(self.keyword_scores(query)[:limit])
        ]

    def hybrid_search(self, query: str, limit: Optional[int] = None) -> SearchResponse:
        """Blend semantic and keyword scores; not cached."""
        started = time.perf_counter()
        text, limit = self._check_inputs(query, limit)
        response = SearchResponse(query=text, fingerprint=query_fingerprint(text))

        semantic: Dict[str, Neighbor] = {}
        try:
            query_vector = self.embedder.embed(text)
        except DependencyUnavailable as exc:
            log.warning("Hybrid search using keywords only: %s", exc)
            response.degraded = True
        else:
            pool = self.embedding_cache.nearest_neighbors(query_vector, limit * max(self.config.overfetch_factor, 1))
            semantic = {n.interaction_id: n for n in pool}
        keyword = {n.interaction_id: n for n in self.keyword_scores(text)}

        combined = []
        for interaction_id in set(semantic) | set(keyword):
            sem = semantic.get(interaction_id)
            kw = keyword.get(interaction_id)
            score = self.config.semantic_weight * (sem.score if sem else 0.0) + self.config.keyword_weight * (
                kw.score if kw else 0.0
            )
            date = (sem or kw).date  # type: ignore[union-attr]
            combined.append(Neighbor(interaction_id, score, date))
        combined.sort(key=lambda n: (-n.score, -(n.date.timestamp() if n.date else 0.0), n.interaction_id))

        response.results = [
            SearchResult(n.interaction_id, round(n.score, 6), rank, [n.interaction_id])
            for rank, n in enumerate(combined[:limit])
        ]
        return self._finish(response, started)

    def find_similar_interactions(self, interaction_id: str, limit: int = 5) -> List[Neighbor]:
        """Interactions whose embeddings are closest to ``interaction_id``'s own."""
        if limit <= 0:
            raise ValidationError("limit must be positive")
        vector = self.embedding_cache.get(interaction_id)
        neighbors = self.embedding_cache.nearest_neighbors(vector, limit + 1)
        return [
            n
            for n in neighbors
            if n.interaction_id != interaction_id and n.score >= self.config.similar_min_similarity
        ][:limit]

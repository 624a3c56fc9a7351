"""Natural-language recall across people and interaction notes.

Each query is analyzed first (see ``query_analysis``). Person, employer,
organization and title queries are answered from the relational tables;
everything else, and the trailing clause of a hybrid query, goes through
semantic search. Both lists are min-max normalized and fused with
configurable weights. Interactions belonging to a structurally matched
person are promoted as hybrid hits. Recent activity gets a bounded boost.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from . import db
from .config import SearchConfig
from .errors import ValidationError
from .identity_resolution import IdentityMatcher, Mention
from .logger import get_logger, log_extra
from .models import Person
from .query_analysis import QueryAnalysis, QueryIntent, SearchStrategy, analyze_query
from .search import SemanticSearchEngine
from .utils import utc_now

log = get_logger(__name__)

RECENCY_MAX_BOOST = 0.2
RECENCY_WINDOW_DAYS = 365.0
CURRENT_ROLE_BOOST = 1.1
HYBRID_BOOST = 1.1


@dataclass
class UnifiedResult:
    kind: str  # "person" or "interaction"
    id: str
    score: float
    source: str  # "structured", "semantic" or "hybrid"
    person_id: Optional[str] = None
    member_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "id": self.id,
            "score": self.score,
            "source": self.source,
            "person_id": self.person_id,
            "member_ids": list(self.member_ids),
        }


@dataclass
class UnifiedResponse:
    analysis: QueryAnalysis
    results: List[UnifiedResult] = field(default_factory=list)
    structured_count: int = 0
    semantic_count: int = 0
    degraded: bool = False
    latency_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "query": self.analysis.original,
            "rewritten": self.analysis.rewritten,
            "intent": self.analysis.intent.value,
            "strategy": self.analysis.strategy.value,
            "confidence": self.analysis.confidence,
            "entity": self.analysis.entity,
            "results": [r.to_dict() for r in self.results],
            "structured_count": self.structured_count,
            "semantic_count": self.semantic_count,
            "degraded": self.degraded,
            "latency_ms": self.latency_ms,
        }


@dataclass
class _Hit:
    kind: str
    id: str
    raw: float
    person_id: Optional[str] = None
    date: Optional[datetime] = None
    member_ids: List[str] = field(default_factory=list)
    current_role: bool = False


def _normalize(hits: List[_Hit]) -> Dict[Tuple[str, str], float]:
    """Min-max scale raw scores into [0, 1]; a flat list scales to 1.0."""
    if not hits:
        return {}
    lo = min(h.raw for h in hits)
    hi = max(h.raw for h in hits)
    span = hi - lo
    return {(h.kind, h.id): (1.0 if span <= 0 else (h.raw - lo) / span) for h in hits}


def recency_boost(latest: Optional[datetime], now: Optional[datetime] = None) -> float:
    if latest is None:
        return 1.0
    now = now or utc_now()
    age_days = max((now - latest).total_seconds() / 86400.0, 0.0)
    return 1.0 + RECENCY_MAX_BOOST * max(0.0, 1.0 - age_days / RECENCY_WINDOW_DAYS)


class UnifiedSearchEngine:
    def __init__(
        self,
        db_path: str,
        matcher: IdentityMatcher,
        search_engine: SemanticSearchEngine,
        config: Optional[SearchConfig] = None,
    ):
        self.db_path = db_path
        self.matcher = matcher
        self.search_engine = search_engine
        self.config = config or SearchConfig()

    def search(self, query: str, limit: Optional[int] = None) -> UnifiedResponse:
        started = time.perf_counter()
        limit = self.config.default_limit if limit is None else limit
        if limit <= 0:
            raise ValidationError("limit must be positive")
        analysis = analyze_query(query)
        response = UnifiedResponse(analysis=analysis)

        structured: List[_Hit] = []
        if analysis.strategy in (SearchStrategy.STRUCTURED, SearchStrategy.HYBRID):
            structured = self._structured_hits(analysis)

        semantic: List[_Hit] = []
        run_semantic = analysis.strategy is not SearchStrategy.STRUCTURED or not structured
        if run_semantic:
            if analysis.strategy is SearchStrategy.STRUCTURED:
                log.info("No structured match for %r; falling back to semantic search", analysis.entity)
            semantic_limit = limit * 2 if analysis.strategy is SearchStrategy.HYBRID else limit
            semantic, response.degraded = self._semantic_hits(analysis.semantic_query, semantic_limit)

        response.structured_count = len(structured)
        response.semantic_count = len(semantic)
        response.results = self._fuse(structured, semantic)[:limit]
        response.latency_ms = round((time.perf_counter() - started) * 1000.0, 3)
        log.debug(
            "unified search intent=%s strategy=%s structured=%d semantic=%d",
            analysis.intent.value,
            analysis.strategy.value,
            response.structured_count,
            response.semantic_count,
            extra=log_extra(
                event="unified_search",
                intent=analysis.intent.value,
                strategy=analysis.strategy.value,
                result_count=len(response.results),
                degraded=response.degraded,
                latency_ms=response.latency_ms,
            ),
        )
        return response

    # --- structured lookups ----------------------------------------------

    def _structured_hits(self, analysis: QueryAnalysis) -> List[_Hit]:
        entity = analysis.entity or ""
        if analysis.intent is QueryIntent.ORGANIZATION:
            persons = db.find_persons_by_current_role(self.db_path, organization=entity)
            return self._person_hits([(p, 1.0) for p in persons])
        if analysis.intent is QueryIntent.TITLE:
            persons = db.find_persons_by_current_role(self.db_path, title=entity)
            return self._person_hits([(p, 1.0) for p in persons])
        if analysis.intent in (QueryIntent.PERSON, QueryIntent.EMPLOYER):
            return self._person_hits(self._match_name(entity))
        return []

    def _match_name(self, name: str) -> List[Tuple[Person, float]]:
        mention = Mention.from_raw(name)
        floor = self.matcher.config.low_threshold
        matched = []
        for person in db.list_persons(self.db_path):
            candidate = self.matcher.score(mention, person)
            if candidate.score > 0 and candidate.score >= floor:
                matched.append((person, candidate.score))
        return matched

    def _person_hits(self, scored: List[Tuple[Person, float]]) -> List[_Hit]:
        latest = db.latest_interaction_dates(self.db_path, [p.id for p, _ in scored])
        return [
            _Hit(
                kind="person",
                id=person.id,
                raw=score,
                person_id=person.id,
                date=latest.get(person.id),
                current_role=bool(person.current_roles),
            )
            for person, score in scored
        ]

    # --- semantic --------------------------------------------------------

    def _semantic_hits(self, text: str, limit: int) -> Tuple[List[_Hit], bool]:
        detailed = self.search_engine.search_detailed(text, limit)
        hits = []
        for result in detailed.results:
            interaction = db.get_interaction(self.db_path, result.interaction_id)
            if interaction is None:
                continue
            hits.append(
                _Hit(
                    kind="interaction",
                    id=interaction.id,
                    raw=result.score,
                    person_id=interaction.person_id,
                    date=interaction.date,
                    member_ids=list(result.member_ids),
                )
            )
        return hits, detailed.degraded

    # --- fusion ----------------------------------------------------------

    def _fuse(self, structured: List[_Hit], semantic: List[_Hit]) -> List[UnifiedResult]:
        w_structured = self.config.fusion_structured_weight
        w_semantic = self.config.fusion_semantic_weight
        now = utc_now()
        matched_people = {h.person_id for h in structured}
        fused: Dict[Tuple[str, str], UnifiedResult] = {}

        def keep(result: UnifiedResult) -> None:
            key = (result.kind, result.id)
            if key not in fused or fused[key].score < result.score:
                fused[key] = result

        norm = _normalize(structured)
        for hit in structured:
            score = norm[(hit.kind, hit.id)] * w_structured
            if hit.current_role:
                score *= CURRENT_ROLE_BOOST
            score *= recency_boost(hit.date, now)
            keep(UnifiedResult(hit.kind, hit.id, round(score, 6), "structured", hit.person_id))

        norm = _normalize(semantic)
        for hit in semantic:
            if hit.person_id in matched_people:
                score = norm[(hit.kind, hit.id)] * (w_structured + w_semantic) / 2.0 * HYBRID_BOOST
                source = "hybrid"
            else:
                score = norm[(hit.kind, hit.id)] * w_semantic
                source = "semantic"
            score *= recency_boost(hit.date, now)
            keep(UnifiedResult(hit.kind, hit.id, round(score, 6), source, hit.person_id, hit.member_ids))

        return sorted(fused.values(), key=lambda r: (-r.score, r.kind, r.id))

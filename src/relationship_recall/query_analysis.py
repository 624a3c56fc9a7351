"""Rule-based analysis of natural-language recall queries.

A query is rewritten to a canonical form by the first matching rule, which
also fixes its intent and the one entity it names (a person, an organization
or a title). Intents with an entity are answered by structured lookups; a
trailing clause joined with "and" (or a second question) is searched
semantically as well. Queries no rule recognizes are purely semantic.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Pattern, Tuple

from .errors import ValidationError
from .utils import collapse_whitespace


class QueryIntent(str, Enum):
    ORGANIZATION = "organization"
    PERSON = "person"
    EMPLOYER = "employer"
    TITLE = "title"
    GENERAL = "general"


class SearchStrategy(str, Enum):
    STRUCTURED = "structured"
    SEMANTIC = "semantic"
    HYBRID = "hybrid"


@dataclass(frozen=True)
class RewriteRule:
    pattern: Pattern[str]
    intent: QueryIntent
    template: str
    confidence: float


# Entity runs up to punctuation, a joining "and", or the end.
_ENTITY = r"([^?.,!]+?)"
_STOP = r"(?=\s+and\s|\s*[?.,!]|$)"
_TITLES = r"(ceo|cto|cfo|coo|founder|co-founder|chief\s+\w+|vp|director|engineer|manager|investor)"


def _rule(pattern: str, intent: QueryIntent, template: str, confidence: float) -> RewriteRule:
    return RewriteRule(re.compile(pattern, re.IGNORECASE), intent, template, confidence)


REWRITE_RULES: Tuple[RewriteRule, ...] = (
    _rule(r"who\s+(?:do\s+i\s+)?know\s+(?:at|in|from)\s+" + _ENTITY + _STOP,
          QueryIntent.ORGANIZATION, "Who works at {0}?", 0.95),
    _rule(r"who\s+(?:in\s+my\s+network\s+)?works?\s+(?:at|for)\s+" + _ENTITY + _STOP,
          QueryIntent.ORGANIZATION, "Who works at {0}?", 0.95),
    _rule(r"(?:show|find)\s+me\s+(?:people|connections?)\s+(?:at|from|in)\s+" + _ENTITY + _STOP,
          QueryIntent.ORGANIZATION, "Who works at {0}?", 0.85),
    _rule(r"people\s+(?:i\s+know|in\s+my\s+network)\s+(?:at|from|in)\s+" + _ENTITY + _STOP,
          QueryIntent.ORGANIZATION, "Who works at {0}?", 0.80),
    _rule(r"who\s+does\s+" + _ENTITY + r"\s+work\s+(?:for|at)\b",
          QueryIntent.EMPLOYER, "Where does {0} work?", 0.95),
    _rule(r"where\s+does\s+" + _ENTITY + r"\s+work\b",
          QueryIntent.EMPLOYER, "Where does {0} work?", 0.90),
    _rule(r"what\s+(?:company|organization)\s+does\s+" + _ENTITY + r"\s+work\b",
          QueryIntent.EMPLOYER, "Where does {0} work?", 0.90),
    _rule(r"tell\s+me\s+about\s+" + _ENTITY + _STOP,
          QueryIntent.PERSON, "Tell me about {0}", 0.90),
    _rule(r"who\s+is\s+" + _ENTITY + _STOP,
          QueryIntent.PERSON, "Tell me about {0}", 0.85),
    _rule(r"(?:information|details?)\s+about\s+" + _ENTITY + _STOP,
          QueryIntent.PERSON, "Tell me about {0}", 0.80),
    _rule(r"(?:show\s+me|find|list)\s+(?:all\s+)?(?:the\s+)?(?:my\s+)?" + _TITLES + r"s?\b",
          QueryIntent.TITLE, "Find all {0}", 0.85),
)

_JOINER = re.compile(r"^\s*(?:[?.,!]\s*)?(?:and\s+)?", re.IGNORECASE)


@dataclass
class QueryAnalysis:
    original: str
    rewritten: str
    intent: QueryIntent
    strategy: SearchStrategy
    confidence: float
    entity: Optional[str] = None
    semantic_query: str = ""

    @property
    def was_rewritten(self) -> bool:
        return self.rewritten != collapse_whitespace(self.original)


def _clean_entity(raw: str) -> str:
    entity = raw.strip().strip("'\"")
    entity = re.sub(r"['’]s$", "", entity)
    return collapse_whitespace(entity)


def _trailing_clause(rest: str) -> str:
    """Text after the structured part, minus its joining word."""
    tail = _JOINER.sub("", rest, count=1).strip().rstrip("?.!").strip()
    return tail if len(tail.split()) >= 2 else ""


def analyze_query(query: str) -> QueryAnalysis:
    text = collapse_whitespace(query or "")
    if not text:
        raise ValidationError("query must be a non-empty string")

    for rule in REWRITE_RULES:
        match = rule.pattern.search(text)
        if match is None:
            continue
        entity = _clean_entity(match.group(1))
        if not entity:
            continue
        tail = _trailing_clause(text[match.end():])
        return QueryAnalysis(
            original=query,
            rewritten=rule.template.format(entity),
            intent=rule.intent,
            strategy=SearchStrategy.HYBRID if tail else SearchStrategy.STRUCTURED,
            confidence=rule.confidence,
            entity=entity,
            semantic_query=tail or text,
        )

    return QueryAnalysis(
        original=query,
        rewritten=text,
        intent=QueryIntent.GENERAL,
        strategy=SearchStrategy.SEMANTIC,
        confidence=0.7,
        semantic_query=text,
    )

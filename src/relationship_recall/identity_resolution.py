"""Score a person mention against existing Person records and decide.

The matcher is a pure function of a mention and a snapshot of persons: it
never touches storage. Callers serialize the snapshot/decide/create sequence
(see ``RecallService.resolve_mention``).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

from .config import IdentityResolutionConfig
from .db import normalize_handle
from .logger import get_logger
from .models import Person
from .name_parser import ParsedName, canonical_name, normalize_full_name, parse_name

log = get_logger(__name__)


class MatchOutcome(str, Enum):
    MATCHED = "matched"
    NO_MATCH = "no_match"
    AMBIGUOUS = "ambiguous"


@dataclass
class Mention:
    """A person reference pulled from free text, not yet resolved."""

    raw_name: str
    parsed: ParsedName
    organization: Optional[str] = None
    social: Optional[Tuple[str, str]] = None
    context: Optional[str] = None

    @classmethod
    def from_raw(
        cls,
        raw_name: str,
        organization: Optional[str] = None,
        social: Optional[Tuple[str, str]] = None,
        context: Optional[str] = None,
    ) -> "Mention":
        return cls(
            raw_name=raw_name,
            parsed=parse_name(raw_name),
            organization=organization,
            social=social,
            context=context,
        )


@dataclass
class CandidateScore:
    person_id: str
    score: float
    signals: Dict[str, float] = field(default_factory=dict)


@dataclass
class MatchDecision:
    outcome: MatchOutcome
    person_id: Optional[str] = None
    candidate_ids: List[str] = field(default_factory=list)
    candidates: List[CandidateScore] = field(default_factory=list)
    created: bool = False

    @property
    def best_score(self) -> float:
        return self.candidates[0].score if self.candidates else 0.0


def _lower_set(values: Iterable[str]) -> set[str]:
    return {v.lower() for v in values if v}


def _person_parts(person: Person) -> ParsedName:
    return ParsedName(
        first_name=person.first_name,
        last_name=person.last_name,
        middle_names=list(person.middle_names),
        nicknames=set(person.nicknames),
    )


class IdentityMatcher:
    """Weighted-evidence matcher with configurable thresholds."""

    def __init__(self, config: Optional[IdentityResolutionConfig] = None):
        self.config = config or IdentityResolutionConfig()

    def score(self, mention: Mention, person: Person) -> CandidateScore:
        w = self.config.weights
        m = mention.parsed
        signals: Dict[str, float] = {}

        m_first, m_last = m.first_name.lower(), m.last_name.lower()
        p_first, p_last = person.first_name.lower(), person.last_name.lower()

        m_names = {normalize_full_name(canonical_name(m)), normalize_full_name(mention.raw_name)}
        p_names = {normalize_full_name(canonical_name(_person_parts(person))), normalize_full_name(person.name)}
        m_names.discard("")
        if m_names & p_names:
            signals["exact_name"] = w.exact_name

        if m_first and m_last and m_first == p_first and m_last == p_last:
            signals["full_name"] = w.full_name
        elif m_first and m_first == p_first and (bool(m_last) != bool(p_last)):
            signals["partial_name"] = w.partial_name

        m_nicks = _lower_set(m.nicknames)
        p_nicks = _lower_set(person.nicknames)
        if (m_nicks & p_nicks) or (p_first and p_first in m_nicks) or (m_first and m_first in p_nicks):
            signals["nickname"] = w.nickname

        if mention.organization and mention.organization.strip().lower() in person.current_organizations:
            signals["organization"] = w.organization

        if mention.social:
            platform, handle = normalize_handle(*mention.social)
            if (platform, handle.lower()) in {h.key for h in person.handles}:
                signals["social_handle"] = w.social_handle

        if mention.context:
            context = mention.context.lower()
            needles = {n for n in p_names if n} | person.current_organizations
            if any(needle in context for needle in needles):
                signals["context"] = w.context

        # Rounded so weight sums like 0.5 + 0.3 compare exactly against thresholds.
        return CandidateScore(person_id=person.id, score=round(sum(signals.values()), 6), signals=signals)

    def decide(self, mention: Mention, persons: Iterable[Person]) -> MatchDecision:
        cfg = self.config
        scored = [self.score(mention, p) for p in persons]
        eligible = sorted(
            (c for c in scored if c.score >= cfg.low_threshold and c.score > 0),
            key=lambda c: (-c.score, c.person_id),
        )
        if not eligible:
            return MatchDecision(outcome=MatchOutcome.NO_MATCH)

        best = eligible[0]
        close = [c for c in eligible[1:] if best.score - c.score <= cfg.ambiguity_margin]
        if best.score >= cfg.high_threshold and not close:
            log.debug("Mention %r matched %s (score=%.3f)", mention.raw_name, best.person_id, best.score)
            return MatchDecision(
                outcome=MatchOutcome.MATCHED,
                person_id=best.person_id,
                candidate_ids=[best.person_id],
                candidates=eligible,
            )

        log.info(
            "Mention %r is ambiguous across %d candidate(s), best score %.3f",
            mention.raw_name,
            len(eligible),
            best.score,
        )
        return MatchDecision(
            outcome=MatchOutcome.AMBIGUOUS,
            candidate_ids=[c.person_id for c in eligible],
            candidates=eligible,
        )

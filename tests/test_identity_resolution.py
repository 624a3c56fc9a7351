"""Tests for the identity matcher (pure decisions over a person snapshot)."""

from datetime import datetime
from typing import Optional

import pytest

from relationship_recall.config import IdentityResolutionConfig
from relationship_recall.identity_resolution import IdentityMatcher, MatchOutcome, Mention
from relationship_recall.models import Person, Role, SocialMediaHandle


def make_person(
    person_id: str,
    first: str,
    last: str = "",
    nicknames: Optional[set] = None,
    org: Optional[str] = None,
    handle: Optional[tuple] = None,
) -> Person:
    person = Person(
        id=person_id,
        name=" ".join(p for p in (first, last) if p),
        first_name=first,
        last_name=last,
        nicknames=set(nicknames or ()),
    )
    if org:
        person.roles.append(Role(f"r-{person_id}", person_id, f"o-{org}", org, "Engineer"))
    if handle:
        person.handles.append(SocialMediaHandle(f"h-{person_id}", person_id, handle[0], handle[1]))
    return person


@pytest.fixture
def matcher() -> IdentityMatcher:
    return IdentityMatcher(IdentityResolutionConfig())


class TestScoring:
    """Individual evidence signals."""

    def test_exact_and_full_name(self, matcher: IdentityMatcher) -> None:
        score = matcher.score(Mention.from_raw("jane  DOE"), make_person("p1", "Jane", "Doe"))
        assert set(score.signals) == {"exact_name", "full_name"}
        assert score.score == pytest.approx(1.9)

    def test_partial_name_when_one_last_name_missing(self, matcher: IdentityMatcher) -> None:
        score = matcher.score(Mention.from_raw("Felix"), make_person("p1", "Felix", "Chen"))
        assert score.signals == {"partial_name": 0.5}

    def test_different_last_names_score_nothing(self, matcher: IdentityMatcher) -> None:
        score = matcher.score(Mention.from_raw("Felix Wu"), make_person("p1", "Felix", "Chen"))
        assert score.score == 0.0

    def test_nickname_against_first_name(self, matcher: IdentityMatcher) -> None:
        person = make_person("p1", "Mikey")
        score = matcher.score(Mention.from_raw("Michael 'Mikey' Anderson"), person)
        assert "nickname" in score.signals

    def test_organization_is_only_corroborating(self, matcher: IdentityMatcher) -> None:
        person = make_person("p1", "Sam", "Lee", org="Acme")
        score = matcher.score(Mention.from_raw("Alex Kim", organization="acme"), person)
        assert score.signals == {"organization": 0.3}

    def test_previous_roles_do_not_count(self, matcher: IdentityMatcher) -> None:
        person = make_person("p1", "Sam", "Lee", org="Acme")
        person.roles[0].end_date = datetime(2024, 1, 1)
        score = matcher.score(Mention.from_raw("Sam", organization="Acme"), person)
        assert "organization" not in score.signals

    def test_social_handle_normalized(self, matcher: IdentityMatcher) -> None:
        person = make_person("p1", "Sam", "Lee", handle=("twitter", "SamLee"))
        score = matcher.score(Mention.from_raw("S. Lee", social=("Twitter", "@samlee")), person)
        assert "social_handle" in score.signals

    def test_context_mentions_person(self, matcher: IdentityMatcher) -> None:
        person = make_person("p1", "Sam", "Lee", org="Acme")
        score = matcher.score(Mention.from_raw("Sammy", context="lunch with the Acme team"), person)
        assert score.signals == {"context": 0.1}


class TestDecisions:
    """Threshold and ambiguity rules."""

    def test_no_persons_is_no_match(self, matcher: IdentityMatcher) -> None:
        decision = matcher.decide(Mention.from_raw("Jane Doe"), [])
        assert decision.outcome is MatchOutcome.NO_MATCH
        assert decision.person_id is None

    def test_exact_match(self, matcher: IdentityMatcher) -> None:
        people = [make_person("p1", "Jane", "Doe"), make_person("p2", "John", "Smith")]
        decision = matcher.decide(Mention.from_raw("Jane Doe"), people)
        assert decision.outcome is MatchOutcome.MATCHED
        assert decision.person_id == "p1"

    def test_first_name_plus_organization_crosses_high_threshold(self, matcher: IdentityMatcher) -> None:
        mikey = make_person("p1", "Mikey", org="Acme")
        decision = matcher.decide(Mention.from_raw("Mikey Anderson", organization="Acme"), [mikey])
        assert decision.outcome is MatchOutcome.MATCHED
        assert decision.person_id == "p1"
        assert decision.best_score == pytest.approx(0.8)

    def test_first_name_alone_needs_confirmation(self, matcher: IdentityMatcher) -> None:
        decision = matcher.decide(Mention.from_raw("Felix"), [make_person("p1", "Felix", "Chen")])
        assert decision.outcome is MatchOutcome.AMBIGUOUS
        assert decision.candidate_ids == ["p1"]

    def test_below_low_threshold_is_no_match(self, matcher: IdentityMatcher) -> None:
        person = make_person("p1", "Sam", "Lee", org="Acme")
        decision = matcher.decide(Mention.from_raw("Alex Kim", organization="Acme"), [person])
        assert decision.outcome is MatchOutcome.NO_MATCH

    def test_close_candidates_are_ambiguous(self, matcher: IdentityMatcher) -> None:
        people = [make_person("p1", "Mikey", "Anderson"), make_person("p2", "Mikey", "Anderson")]
        decision = matcher.decide(Mention.from_raw("Mikey Anderson"), people)
        assert decision.outcome is MatchOutcome.AMBIGUOUS
        assert sorted(decision.candidate_ids) == ["p1", "p2"]

    def test_shared_handle_is_evidence_not_proof(self, matcher: IdentityMatcher) -> None:
        people = [
            make_person("p1", "Sam", "Lee", handle=("twitter", "acmeteam")),
            make_person("p2", "Ana", "Ruiz", handle=("twitter", "acmeteam")),
        ]
        decision = matcher.decide(Mention.from_raw("Chris", social=("twitter", "acmeteam")), people)
        assert decision.outcome is MatchOutcome.AMBIGUOUS

    def test_clear_winner_beats_weak_candidate(self, matcher: IdentityMatcher) -> None:
        people = [make_person("p1", "Felix", "Chen"), make_person("p2", "Felix")]
        decision = matcher.decide(Mention.from_raw("Felix Chen"), people)
        assert decision.outcome is MatchOutcome.MATCHED
        assert decision.person_id == "p1"
        assert decision.candidate_ids == ["p1"]

    def test_thresholds_come_from_config(self) -> None:
        strict = IdentityMatcher(IdentityResolutionConfig(high_threshold=2.5, low_threshold=0.4))
        decision = strict.decide(Mention.from_raw("Jane Doe"), [make_person("p1", "Jane", "Doe")])
        assert decision.outcome is MatchOutcome.AMBIGUOUS

    def test_matcher_does_not_mutate_snapshot(self, matcher: IdentityMatcher) -> None:
        person = make_person("p1", "Mikey", org="Acme")
        matcher.decide(Mention.from_raw("Mikey Anderson", organization="Acme"), [person])
        assert person.last_name == ""
        assert len(person.roles) == 1

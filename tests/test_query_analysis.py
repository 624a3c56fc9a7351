"""Tests for rule-based query rewriting and routing."""

import pytest

from relationship_recall.errors import ValidationError
from relationship_recall.query_analysis import QueryIntent, SearchStrategy, analyze_query


class TestRewriteRules:
    """Each rule family fixes intent, entity and canonical phrasing."""

    def test_who_do_i_know_at_organization(self) -> None:
        analysis = analyze_query("Who do I know at Acme?")

        assert analysis.intent is QueryIntent.ORGANIZATION
        assert analysis.entity == "Acme"
        assert analysis.rewritten == "Who works at Acme?"
        assert analysis.strategy is SearchStrategy.STRUCTURED
        assert analysis.confidence == pytest.approx(0.95)
        assert analysis.was_rewritten

    def test_works_for_is_case_insensitive(self) -> None:
        analysis = analyze_query("WHO works FOR Globex Corp")
        assert analysis.intent is QueryIntent.ORGANIZATION
        assert analysis.entity == "Globex Corp"

    def test_people_in_my_network(self) -> None:
        analysis = analyze_query("people in my network at Initech")
        assert analysis.intent is QueryIntent.ORGANIZATION
        assert analysis.entity == "Initech"
        assert analysis.confidence == pytest.approx(0.8)

    def test_where_does_person_work(self) -> None:
        analysis = analyze_query("Where does Jane Doe work?")
        assert analysis.intent is QueryIntent.EMPLOYER
        assert analysis.entity == "Jane Doe"
        assert analysis.rewritten == "Where does Jane Doe work?"

    def test_who_does_person_work_for(self) -> None:
        analysis = analyze_query("who does Bob work for")
        assert analysis.intent is QueryIntent.EMPLOYER
        assert analysis.entity == "Bob"
        assert analysis.rewritten == "Where does Bob work?"

    def test_tell_me_about_person(self) -> None:
        analysis = analyze_query("tell me about  Jane   Doe")
        assert analysis.intent is QueryIntent.PERSON
        assert analysis.entity == "Jane Doe"
        assert analysis.rewritten == "Tell me about Jane Doe"

    def test_who_is_strips_possessive(self) -> None:
        analysis = analyze_query("who is Jane's?")
        assert analysis.intent is QueryIntent.PERSON
        assert analysis.entity == "Jane"
        assert analysis.confidence == pytest.approx(0.85)

    def test_title_listing(self) -> None:
        analysis = analyze_query("show me all the CTOs")
        assert analysis.intent is QueryIntent.TITLE
        assert analysis.entity == "CTO"
        assert analysis.rewritten == "Find all CTO"


class TestRouting:
    """Strategy selection and the semantic remainder."""

    def test_trailing_clause_makes_query_hybrid(self) -> None:
        analysis = analyze_query("Who do I know at Acme and talked about pricing?")

        assert analysis.strategy is SearchStrategy.HYBRID
        assert analysis.entity == "Acme"
        assert analysis.semantic_query == "talked about pricing"

    def test_single_word_tail_stays_structured(self) -> None:
        analysis = analyze_query("who works at Acme. thanks")
        assert analysis.strategy is SearchStrategy.STRUCTURED
        assert analysis.entity == "Acme"

    def test_unrecognized_query_is_semantic(self) -> None:
        analysis = analyze_query("coffee chats about hiking")

        assert analysis.intent is QueryIntent.GENERAL
        assert analysis.strategy is SearchStrategy.SEMANTIC
        assert analysis.entity is None
        assert analysis.confidence == pytest.approx(0.7)
        assert analysis.semantic_query == "coffee chats about hiking"
        assert not analysis.was_rewritten

    @pytest.mark.parametrize("query", ["", "   ", None])
    def test_blank_query_rejected(self, query) -> None:
        with pytest.raises(ValidationError):
            analyze_query(query)

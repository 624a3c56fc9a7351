"""Tests for display-name parsing."""

import pytest

from relationship_recall.errors import ValidationError
from relationship_recall.name_parser import (
    ParsedName,
    canonical_name,
    name_keys,
    normalize_full_name,
    parse_name,
    require_name,
)


class TestParseName:
    """Tokenization rules."""

    @pytest.mark.parametrize("raw", ["Felix", "Mikey", "  Dr.  ", "O'Brien", "李"])
    def test_single_token_has_no_last_or_middle(self, raw: str) -> None:
        parsed = parse_name(raw)
        assert parsed.last_name == ""
        assert parsed.middle_names == []
        assert parsed.first_name == raw.strip()

    def test_titles_and_suffixes_are_ordinary_tokens(self) -> None:
        parsed = parse_name("Dr. John Michael 'Johnny' Smith Jr")
        assert parsed.first_name == "Dr."
        assert parsed.last_name == "Jr"
        assert parsed.middle_names == ["John", "Michael", "Smith"]
        assert parsed.nicknames == {"Johnny"}

    def test_two_tokens(self) -> None:
        parsed = parse_name("Mikey Anderson")
        assert (parsed.first_name, parsed.last_name, parsed.middle_names) == ("Mikey", "Anderson", [])

    def test_whitespace_is_collapsed(self) -> None:
        parsed = parse_name("  Ada \t  Byron\n King ")
        assert parsed.first_name == "Ada"
        assert parsed.middle_names == ["Byron"]
        assert parsed.last_name == "King"

    def test_all_nickname_segments_are_extracted(self) -> None:
        parsed = parse_name('Robert "Bob" (Bobby) \'Rob\' Smith')
        assert parsed.nicknames == {"Bob", "Bobby", "Rob"}
        assert parsed.first_name == "Robert"
        assert parsed.last_name == "Smith"
        assert parsed.middle_names == []

    def test_nickname_removal_can_leave_single_token(self) -> None:
        parsed = parse_name("Felix (Fe)")
        assert parsed.first_name == "Felix"
        assert parsed.last_name == ""
        assert parsed.nicknames == {"Fe"}

    def test_nickname_only(self) -> None:
        parsed = parse_name("'Ace'")
        assert parsed.first_name == ""
        assert parsed.nicknames == {"Ace"}
        assert not parsed.is_empty

    def test_unmatched_quote_is_kept_in_name(self) -> None:
        parsed = parse_name("Dan O'Brien")
        assert parsed.last_name == "O'Brien"
        assert parsed.nicknames == set()

    def test_empty_nickname_segments_are_ignored(self) -> None:
        parsed = parse_name("Sam () Lee")
        assert parsed.nicknames == set()
        assert (parsed.first_name, parsed.last_name) == ("Sam", "Lee")


class TestHelpers:
    """Validation, canonical names and lock keys."""

    @pytest.mark.parametrize("raw", ["", "   ", "()", "''"])
    def test_require_name_rejects_unusable_input(self, raw: str) -> None:
        with pytest.raises(ValidationError):
            require_name(raw)

    def test_canonical_name_drops_nicknames(self) -> None:
        assert canonical_name(parse_name("John 'Johnny' Smith")) == "John Smith"

    def test_canonical_name_falls_back_to_nickname(self) -> None:
        assert canonical_name(ParsedName(nicknames={"Ace"})) == "Ace"

    def test_normalize_full_name(self) -> None:
        assert normalize_full_name("  Jane   DOE ") == "jane doe"

    def test_name_keys_cover_first_name_and_nicknames(self) -> None:
        assert name_keys(parse_name("Michael 'Mikey' Anderson")) == {"michael", "mikey"}
        assert name_keys(parse_name("Mikey Anderson")) & name_keys(parse_name("Michael 'Mikey' Anderson"))

"""Split raw display names into first/middle/last parts and nicknames.

Titles ("Dr.") and suffixes ("Jr") are not recognized: they stay ordinary
tokens, because matching compares literal positions.

    >>> parse_name("Dr. John Michael 'Johnny' Smith Jr")
    ParsedName(first_name='Dr.', last_name='Jr', middle_names=['John', 'Michael', 'Smith'], nicknames={'Johnny'})
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import List, Set

from .errors import ValidationError
from .utils import collapse_whitespace

# Quoted with matching quote chars, or parenthesized.
_NICKNAME_PATTERN = re.compile(r"""(['"])(.*?)\1|\(([^)]*)\)""")


@dataclass
class ParsedName:
    first_name: str = ""
    last_name: str = ""
    middle_names: List[str] = field(default_factory=list)
    nicknames: Set[str] = field(default_factory=set)

    @property
    def is_empty(self) -> bool:
        return not (self.first_name or self.last_name or self.nicknames)


def parse_name(raw: str) -> ParsedName:
    """Parse ``raw`` into name parts; see module docstring for the rules."""
    working = collapse_whitespace(raw)

    nicknames: Set[str] = set()
    for match in _NICKNAME_PATTERN.finditer(working):
        value = match.group(2) if match.group(1) else match.group(3)
        value = collapse_whitespace(value or "")
        if value:
            nicknames.add(value)
    working = collapse_whitespace(_NICKNAME_PATTERN.sub(" ", working))

    if not working:
        return ParsedName(nicknames=nicknames)

    if " " not in working:
        return ParsedName(first_name=working, nicknames=nicknames)

    tokens = working.split(" ")
    return ParsedName(
        first_name=tokens[0],
        last_name=tokens[-1],
        middle_names=tokens[1:-1],
        nicknames=nicknames,
    )


def require_name(raw: str) -> ParsedName:
    """Parse and reject names that yield nothing to match on."""
    if not isinstance(raw, str) or not raw.strip():
        raise ValidationError("name must be a non-empty string")
    parsed = parse_name(raw)
    if parsed.is_empty:
        raise ValidationError(f"name has no usable parts: {raw!r}")
    return parsed


def canonical_name(parsed: ParsedName) -> str:
    """Rebuild a display name from parts, without nicknames."""
    parts = [parsed.first_name, *parsed.middle_names, parsed.last_name]
    name = " ".join(p for p in parts if p)
    if not name and parsed.nicknames:
        name = sorted(parsed.nicknames)[0]
    return name


def normalize_full_name(name: str) -> str:
    return collapse_whitespace(name).lower()


def name_keys(parsed: ParsedName) -> Set[str]:
    """Lock keys shared by mentions that could resolve to the same person.

    First name plus nicknames, so "Mikey", "Mikey Anderson" and
    "Michael 'Mikey' Anderson" all serialize against each other.
    """
    keys = {n.lower() for n in (parsed.first_name, *parsed.nicknames) if n}
    if not keys and parsed.last_name:
        keys.add(parsed.last_name.lower())
    return keys

"""Records exchanged between storage and the resolution/recall components."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Set

from pydantic import BaseModel, field_validator


@dataclass
class Organization:
    id: str
    name: str
    industry: Optional[str] = None
    website: Optional[str] = None


@dataclass
class Role:
    id: str
    person_id: str
    organization_id: str
    organization_name: str
    title: str
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

    @property
    def is_current(self) -> bool:
        return self.end_date is None


@dataclass
class SocialMediaHandle:
    id: str
    person_id: str
    platform: str
    handle: str

    @property
    def key(self) -> tuple[str, str]:
        return (self.platform, self.handle.lower())


@dataclass
class Person:
    id: str
    name: str
    first_name: str = ""
    last_name: str = ""
    middle_names: List[str] = field(default_factory=list)
    nicknames: Set[str] = field(default_factory=set)
    bio: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    roles: List[Role] = field(default_factory=list)
    handles: List[SocialMediaHandle] = field(default_factory=list)

    @property
    def current_roles(self) -> List[Role]:
        return [r for r in self.roles if r.is_current]

    @property
    def previous_roles(self) -> List[Role]:
        return [r for r in self.roles if not r.is_current]

    @property
    def current_organizations(self) -> Set[str]:
        """Lowercased names of organizations with an open role."""
        return {r.organization_name.lower() for r in self.current_roles}


@dataclass
class Interaction:
    id: str
    person_id: str
    date: datetime
    summary: str
    full_text: Optional[str] = None
    location: Optional[str] = None
    snippet: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def text(self) -> str:
        """Text the embedding is computed from."""
        return self.full_text or self.summary


@dataclass
class SearchResult:
    """One ranked hit; ``member_ids`` lists the near-duplicates it stands for."""

    interaction_id: str
    score: float
    cluster_id: int
    member_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "interaction_id": self.interaction_id,
            "score": self.score,
            "cluster_id": self.cluster_id,
            "member_ids": list(self.member_ids),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SearchResult":
        return cls(
            interaction_id=data["interaction_id"],
            score=float(data["score"]),
            cluster_id=int(data["cluster_id"]),
            member_ids=list(data.get("member_ids") or []),
        )


class InteractionUpdate(BaseModel):
    """Partial update of an interaction.

    Only fields explicitly passed are applied (``model_fields_set``), so an
    empty string for ``location`` clears it instead of being skipped.
    """

    summary: Optional[str] = None
    date: Optional[datetime] = None
    location: Optional[str] = None
    full_text: Optional[str] = None
    snippet: Optional[str] = None

    @field_validator("summary")
    @classmethod
    def _summary_not_blank(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not value.strip():
            raise ValueError("summary must not be blank")
        return value

    def present_fields(self) -> Set[str]:
        return set(self.model_fields_set)

    @property
    def changes_text(self) -> bool:
        return bool({"summary", "full_text"} & self.model_fields_set)

"""Canonical Entity model for sanctioned parties.

Entities are the core objects in sanctionsync - people, organizations,
vessels and aircraft named on a sanctions list. Every entity carries at
least one SanctionRecord; the (list_source, entry_id) pair of a record
is its natural key and identifies the entity across ingestion runs.
"""

from collections.abc import Iterable
from datetime import date, datetime
from enum import Enum
from typing import Annotated
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, field_validator, model_validator

from sanctionsync.utils.datetime import utc_now

RISK_BASE_SCORE = 50
RISK_MIN_SCORE = 0
RISK_MAX_SCORE = 100

# Keyword -> increment, matched as a substring of each upper-cased program tag
RISK_PROGRAM_KEYWORDS: dict[str, int] = {
    "WEAPONS": 20,
    "TERROR": 20,
    "CYBER": 15,
    "NARCO": 15,
}
RISK_COUNTRY_KEYWORDS: tuple[str, ...] = ("IRAN", "DPRK", "SYRIA")
RISK_COUNTRY_INCREMENT = 10


def _unique(values: Iterable[str]) -> list[str]:
    seen: list[str] = []
    for value in values:
        if value and value not in seen:
            seen.append(value)
    return seen


def compute_risk_score(programs: Iterable[str]) -> int:
    """Score an entity from its sanction program tags.

    Starts at RISK_BASE_SCORE and adds the increment of every keyword
    found in each program; a program naming a high-risk country adds
    RISK_COUNTRY_INCREMENT once. The sum is clamped to [0, 100].
    """
    score = RISK_BASE_SCORE
    for program in programs:
        tag = program.upper()
        for keyword, increment in RISK_PROGRAM_KEYWORDS.items():
            if keyword in tag:
                score += increment
        if any(country in tag for country in RISK_COUNTRY_KEYWORDS):
            score += RISK_COUNTRY_INCREMENT
    return max(RISK_MIN_SCORE, min(score, RISK_MAX_SCORE))


class EntityType(str, Enum):
    """Canonical entity classification."""

    INDIVIDUAL = "Individual"
    ORGANIZATION = "Organization"
    VESSEL = "Vessel"
    AIRCRAFT = "Aircraft"
    OTHER = "Other"


class SanctionStatus(str, Enum):
    """Listing status of a sanction record."""

    ACTIVE = "Active"
    REMOVED = "Removed"
    MODIFIED = "Modified"


class Identifier(BaseModel):
    """An identity document or registration number."""

    kind: str
    value: str
    country: str | None = None
    issue_date: date | None = None
    expiry_date: date | None = None


class Address(BaseModel):
    """A postal address."""

    street: str | None = None
    city: str | None = None
    state: str | None = None
    postal_code: str | None = None
    country: str | None = None


class Biographic(BaseModel):
    """Biographic details, only kept for individuals.

    Dates of birth are kept as published ("1970", "circa 1965",
    "12 Jan 1958") because the feed does not guarantee full dates.
    """

    date_of_birth: str | None = None
    place_of_birth: str | None = None
    nationality: list[str] = Field(default_factory=list)
    citizenship: list[str] = Field(default_factory=list)

    @field_validator("nationality", "citizenship")
    @classmethod
    def _dedupe(cls, values: list[str]) -> list[str]:
        return _unique(values)


class SanctionRecord(BaseModel):
    """One listing of an entity on a sanctions list."""

    list_source: Annotated[str, Field(min_length=1, description="Publishing authority, e.g. OFAC")]
    list_name: Annotated[str, Field(description="List within the source, e.g. SDN")]
    entry_id: Annotated[str, Field(min_length=1, description="Entry id within the source")]
    entry_url: str | None = None
    date_added: Annotated[datetime, Field(default_factory=utc_now)]
    date_removed: datetime | None = None
    status: SanctionStatus = SanctionStatus.ACTIVE
    reason: str | None = None
    programs: Annotated[list[str], Field(default_factory=list)]

    @field_validator("programs")
    @classmethod
    def _dedupe_programs(cls, values: list[str]) -> list[str]:
        return _unique(v.strip() for v in values)

    @property
    def natural_key(self) -> tuple[str, str]:
        """Return the (list_source, entry_id) deduplication key."""
        return (self.list_source, self.entry_id)


class Relationship(BaseModel):
    """A weak reference to another entity.

    related_entity_id may point at an entity that does not exist yet.
    """

    related_entity_id: str
    relation_type: str
    description: str | None = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.related_entity_id, self.relation_type)


class Entity(BaseModel):
    """A sanctioned party in canonical form."""

    id: Annotated[UUID, Field(default_factory=uuid4, description="Stable entity identifier")]
    name: Annotated[str, Field(min_length=1, description="Primary display name")]
    type: EntityType = EntityType.OTHER
    alternate_names: Annotated[list[str], Field(default_factory=list)]
    identifiers: Annotated[list[Identifier], Field(default_factory=list)]
    addresses: Annotated[list[Address], Field(default_factory=list)]
    biographic: Biographic | None = None
    sanctions: Annotated[list[SanctionRecord], Field(min_length=1)]
    relationships: Annotated[list[Relationship], Field(default_factory=list)]
    risk_score: Annotated[int, Field(default=RISK_BASE_SCORE, ge=RISK_MIN_SCORE, le=RISK_MAX_SCORE)]
    created_at: Annotated[datetime, Field(default_factory=utc_now)]
    last_updated: Annotated[datetime, Field(default_factory=utc_now)]

    @model_validator(mode="after")
    def _biographic_only_for_individuals(self) -> "Entity":
        if self.type is not EntityType.INDIVIDUAL:
            self.biographic = None
        return self

    @property
    def natural_key(self) -> tuple[str, str]:
        """Natural key of the primary (first) sanction record."""
        return self.sanctions[0].natural_key

    @property
    def programs(self) -> list[str]:
        """All program tags across every sanction record."""
        return _unique(p for record in self.sanctions for p in record.programs)

    def recompute_risk_score(self) -> int:
        """Recompute risk_score from current sanction programs."""
        self.risk_score = compute_risk_score(self.programs)
        return self.risk_score


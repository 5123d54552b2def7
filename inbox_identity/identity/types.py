"""
Identity Resolution Type Definitions

Types for duplicate discovery and contact merge.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    """Base for models exchanged with collaborators (camelCase on the wire)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ContactStatus(str, Enum):
    """Lifecycle status of a contact."""

    LEAD = "LEAD"
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    BLOCKED = "BLOCKED"
    UNSUBSCRIBED = "UNSUBSCRIBED"


# Scalar identity fields a merge strategy may override.
SCALAR_FIELDS: tuple[str, ...] = (
    "first_name",
    "last_name",
    "email",
    "phone",
    "whatsapp",
    "company",
    "job_title",
)


class IdentityTuple(WireModel):
    """The subset of contact fields used for similarity scoring."""

    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    phone: str | None = None
    company: str | None = None

    @property
    def full_name(self) -> str:
        parts = [p.strip() for p in (self.first_name, self.last_name) if p and p.strip()]
        return " ".join(parts)

    @property
    def is_empty(self) -> bool:
        return not any(
            value and value.strip()
            for value in (self.first_name, self.last_name, self.email, self.phone, self.company)
        )


class CustomFields(BaseModel):
    """
    Per-contact custom fields.

    Values are arbitrary JSON and are stored verbatim under the keys the
    writer used. Only `mergedFrom` (ids absorbed by earlier merges) is typed.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    merged_from: list[str] = Field(default_factory=list)

    @field_validator("merged_from", mode="before")
    @classmethod
    def _merged_from_list(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        if isinstance(value, (list, tuple)):
            return [str(item) for item in value if item not in (None, "")]
        return []

    @classmethod
    def from_storage(cls, raw: dict[str, Any] | None) -> "CustomFields":
        return cls.model_validate(raw or {})

    def to_storage(self) -> dict[str, Any]:
        """Serialize with the stored key names; an empty `mergedFrom` is omitted."""
        data = self.model_dump(by_alias=True)
        if not data.get("mergedFrom"):
            data.pop("mergedFrom", None)
        return data


class ContactRecord(WireModel):
    """A stored contact."""

    id: str
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    phone: str | None = None
    whatsapp: str | None = None
    company: str | None = None
    job_title: str | None = None
    status: ContactStatus = ContactStatus.ACTIVE
    tags: list[str] = Field(default_factory=list)
    custom_fields: CustomFields = Field(default_factory=CustomFields)
    last_contacted_at: datetime | None = None
    created_at: datetime
    updated_at: datetime | None = None

    def identity(self) -> IdentityTuple:
        return IdentityTuple(
            first_name=self.first_name,
            last_name=self.last_name,
            email=self.email,
            phone=self.phone,
            company=self.company,
        )


class RelationCounts(WireModel):
    """Number of records owned by a contact, per relation."""

    messages: int = 0
    notes: int = 0
    scheduled_messages: int = 0
    analytics_events: int = 0

    @computed_field
    @property
    def total(self) -> int:
        return self.messages + self.notes + self.scheduled_messages + self.analytics_events

    def __add__(self, other: "RelationCounts") -> "RelationCounts":
        return RelationCounts(
            messages=self.messages + other.messages,
            notes=self.notes + other.notes,
            scheduled_messages=self.scheduled_messages + other.scheduled_messages,
            analytics_events=self.analytics_events + other.analytics_events,
        )


class DuplicateCandidate(WireModel):
    """A scored, non-persisted suggestion that a contact duplicates an identity."""

    contact_id: str
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    phone: str | None = None
    company: str | None = None
    similarity: float
    match_reason: list[str] = Field(default_factory=list)

    # Ordering keys only
    last_contacted_at: datetime | None = Field(default=None, exclude=True)
    created_at: datetime | None = Field(default=None, exclude=True)


class MergeStrategy(WireModel):
    """How field values are chosen for the surviving contact."""

    prefer_primary: bool = True
    fields: dict[str, Literal["primary", "secondary"]] = Field(default_factory=dict)

    @field_validator("fields", mode="before")
    @classmethod
    def _normalize_field_names(cls, value: Any) -> Any:
        if not isinstance(value, dict):
            return value
        normalized = {}
        for name, side in value.items():
            key = _snake_case(str(name))
            if key not in SCALAR_FIELDS:
                raise ValueError(f"unknown merge field override: {name!r}")
            normalized[key] = side
        return normalized


def _snake_case(name: str) -> str:
    out = []
    for char in name:
        if char.isupper():
            out.append("_")
            out.append(char.lower())
        else:
            out.append(char)
    return "".join(out)


class ResolvedFields(BaseModel):
    """Final field values for the surviving contact."""

    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    phone: str | None = None
    whatsapp: str | None = None
    company: str | None = None
    job_title: str | None = None
    status: ContactStatus = ContactStatus.ACTIVE
    tags: list[str] = Field(default_factory=list)
    custom_fields: CustomFields = Field(default_factory=CustomFields)
    last_contacted_at: datetime | None = None


class MergedContact(ContactRecord):
    """The surviving contact after a merge, with relation counts."""

    counts: RelationCounts = Field(default_factory=RelationCounts)
    migrated: RelationCounts = Field(default_factory=RelationCounts)


class BatchMergeFailure(WireModel):
    contact_id: str
    code: str
    message: str


class BatchMergeResult(WireModel):
    """Outcome of folding several duplicates into one primary."""

    merged: int
    merged_ids: list[str] = Field(default_factory=list)
    failure: BatchMergeFailure | None = None
    contact: MergedContact

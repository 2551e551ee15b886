"""
Contact Linking Engine: Data Model
==================================
Fixed-shape records for the identity graph.

A ContactRecord is either the PRIMARY of its component or a SECONDARY whose
linked_id names that primary directly. Components are never stored; they are
derived from the arena of records by following linked_id one hop.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import List, Optional


class LinkPrecedence(str, Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"


class Strategy(str, Enum):
    """Closed set of outcomes the classifier can choose from."""
    CREATE_NEW_IDENTITY = "CREATE_NEW_IDENTITY"
    NO_OP = "NO_OP"
    MERGE_IDENTITIES = "MERGE_IDENTITIES"
    EXTEND_IDENTITY = "EXTEND_IDENTITY"


@dataclass(frozen=True)
class ContactRecord:
    """One stored observation of an email and/or phone number."""
    id: int
    email: Optional[str]
    phone_number: Optional[str]
    link_precedence: LinkPrecedence
    created_at: datetime
    updated_at: datetime
    linked_id: Optional[int] = None
    deleted_at: Optional[datetime] = None

    @property
    def is_primary(self) -> bool:
        return self.link_precedence == LinkPrecedence.PRIMARY

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def primary_id(self) -> Optional[int]:
        """Id of the component primary this record belongs to."""
        return self.id if self.is_primary else self.linked_id

    def seniority(self) -> tuple:
        """Sort key: earliest created_at wins, lowest id breaks ties."""
        return (self.created_at, self.id)

    def with_changes(self, **changes) -> "ContactRecord":
        return replace(self, **changes)


@dataclass(frozen=True)
class Observation:
    """The (email, phone) pair submitted in one identify request."""
    email: Optional[str] = None
    phone_number: Optional[str] = None

    def __post_init__(self):
        # Empty strings are treated as absent values
        if not self.email:
            object.__setattr__(self, 'email', None)
        if not self.phone_number:
            object.__setattr__(self, 'phone_number', None)

    @property
    def is_empty(self) -> bool:
        return self.email is None and self.phone_number is None


@dataclass
class Component:
    """One resolved identity: a primary plus its direct secondaries."""
    primary: ContactRecord
    secondaries: List[ContactRecord] = field(default_factory=list)

    @classmethod
    def from_records(cls, records: List[ContactRecord]) -> "Component":
        """
        Build a component from the flat list a store returns.

        The caller guarantees the list holds exactly one primary; validation
        of that guarantee lives in the serializer.
        """
        primaries = [r for r in records if r.is_primary]
        primary = min(primaries, key=ContactRecord.seniority) if primaries else records[0]
        secondaries = sorted(
            (r for r in records if r.id != primary.id),
            key=lambda r: r.id
        )
        return cls(primary=primary, secondaries=secondaries)

    @property
    def records(self) -> List[ContactRecord]:
        return [self.primary] + list(self.secondaries)


@dataclass(frozen=True)
class IdentityView:
    """Externally visible consolidated identity."""
    primary_contact_id: int
    emails: List[str]
    phone_numbers: List[str]
    secondary_contact_ids: List[int]

    def to_dict(self) -> dict:
        return {
            'primaryContactId': self.primary_contact_id,
            'emails': list(self.emails),
            'phoneNumbers': list(self.phone_numbers),
            'secondaryContactIds': list(self.secondary_contact_ids),
        }

"""
Domain: Lead entity.

Contract excerpts implemented here:
- A Lead represents a single sales prospect, uniquely identified by id (UUID).
- user_id is the owning principal; it is set at creation from the authenticated
  caller and never changes. A Lead is visible and mutable only by its owner.
- created_at is server-assigned once; updated_at is server-assigned on every
  mutation. Both are UTC.
- status moves through: new, contacted, qualified, pending, lost, won.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Any, List, Mapping, Optional
from uuid import UUID

from .time import require_utc_timestamp, to_iso_utc

# Columns a caller may write. Everything else is server-assigned.
MUTABLE_FIELDS: tuple[str, ...] = ("name", "email", "phone", "company", "status", "notes")

MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 50


class LeadStatus(str, Enum):
    NEW = "new"
    CONTACTED = "contacted"
    QUALIFIED = "qualified"
    PENDING = "pending"
    LOST = "lost"
    WON = "won"


@dataclass(frozen=True, slots=True)
class Lead:
    """
    Pure domain entity for a Lead.

    Immutability:
    - Frozen; updates produce a new instance via `with_changes`.
    """

    id: UUID
    user_id: str
    name: str
    status: LeadStatus
    created_at: datetime
    updated_at: datetime
    email: Optional[str] = None
    phone: Optional[str] = None
    company: Optional[str] = None
    notes: Optional[str] = None

    def __post_init__(self) -> None:
        require_utc_timestamp("created_at", self.created_at)
        require_utc_timestamp("updated_at", self.updated_at)

    def with_changes(self, changes: Mapping[str, Any], updated_at: datetime) -> "Lead":
        """Apply a partial update; keys absent from `changes` are left untouched."""

        values = {k: v for k, v in changes.items() if k in MUTABLE_FIELDS}
        if "status" in values:
            values["status"] = LeadStatus(values["status"])
        return replace(self, updated_at=updated_at, **values)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "user_id": self.user_id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "company": self.company,
            "status": self.status.value,
            "notes": self.notes,
            "created_at": to_iso_utc(self.created_at),
            "updated_at": to_iso_utc(self.updated_at),
        }


@dataclass(frozen=True, slots=True)
class LeadQueryFilters:
    """
    Conjunctive filter over a principal's leads.

    - statuses: status-set membership
    - company: case-insensitive substring of company
    - created_from / created_to: inclusive created_at range
    - created_before: exclusive upper bound (used for date-only `dateTo`, so the
      whole end day is included)
    - query: case-insensitive substring across name, email, company, notes
    """

    statuses: Optional[List[LeadStatus]] = None
    company: Optional[str] = None
    created_from: Optional[datetime] = None
    created_to: Optional[datetime] = None
    created_before: Optional[datetime] = None
    query: Optional[str] = None
    limit: int = DEFAULT_PAGE_SIZE
    offset: int = 0


@dataclass(frozen=True, slots=True)
class LeadPage:
    leads: List[Lead]
    total: int
    limit: int
    offset: int
    query: Optional[str] = None


def _contains(haystack: Optional[str], needle: str) -> bool:
    return haystack is not None and needle.lower() in haystack.lower()


def lead_matches(lead: Lead, filters: LeadQueryFilters) -> bool:
    """Reference semantics of the filter; the Supabase query mirrors this."""

    if filters.statuses and lead.status not in filters.statuses:
        return False
    if filters.company and not _contains(lead.company, filters.company):
        return False
    if filters.created_from and lead.created_at < filters.created_from:
        return False
    if filters.created_to and lead.created_at > filters.created_to:
        return False
    if filters.created_before and lead.created_at >= filters.created_before:
        return False
    if filters.query:
        fields = (lead.name, lead.email, lead.company, lead.notes)
        if not any(_contains(value, filters.query) for value in fields):
            return False
    return True

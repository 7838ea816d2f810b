"""
Lead repository (persistence).

This module provides *only* persistence operations for the Lead domain entity.
No business rules (validation, sanitization, rate limiting) belong here.

Every query is scoped by (id, user_id). A row owned by another principal is
indistinguishable from a missing row: both come back as None.

Deleting a lead removes its interactions in the same transaction through the
`delete_lead` function:

    create function delete_lead(p_lead_id uuid, p_user_id uuid)
    returns boolean language plpgsql as $$
    begin
        delete from interactions where lead_id = p_lead_id and user_id = p_user_id;
        delete from leads where id = p_lead_id and user_id = p_user_id;
        return found;
    end;
    $$;
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, List, Mapping, Optional, Sequence
from uuid import UUID

from domain.lead import Lead, LeadPage, LeadQueryFilters, LeadStatus
from domain.time import parse_utc_datetime, to_iso_utc
from repositories.client import execute

# Supabase table and function names.
# Keep these aligned with your database schema.
_LEADS_TABLE: str = "leads"
_DELETE_FUNCTION: str = "delete_lead"

_SEARCH_COLUMNS: tuple[str, ...] = ("name", "email", "company", "notes")


def _lead_to_row(lead: Lead) -> dict[str, Any]:
    """Convert a domain Lead to a Supabase row payload."""

    return {
        "id": str(lead.id),
        "user_id": lead.user_id,
        "name": lead.name,
        "email": lead.email,
        "phone": lead.phone,
        "company": lead.company,
        "status": lead.status.value,
        "notes": lead.notes,
        "created_at": to_iso_utc(lead.created_at),
        "updated_at": to_iso_utc(lead.updated_at),
    }


def _changes_to_row(changes: Mapping[str, Any], updated_at: datetime) -> dict[str, Any]:
    row = dict(changes)
    if isinstance(row.get("status"), LeadStatus):
        row["status"] = row["status"].value
    row["updated_at"] = to_iso_utc(updated_at)
    return row


def _row_to_lead(row: Mapping[str, Any]) -> Lead:
    """Convert a Supabase row into a domain Lead."""

    # Empty strings are stored as NULL; normalize anything legacy on the way out.
    def get_optional(key: str) -> Optional[str]:
        value = row.get(key)
        return value if value else None

    created_at = parse_utc_datetime(row["created_at"])
    return Lead(
        id=UUID(str(row["id"])),
        user_id=str(row["user_id"]),
        name=str(row["name"]),
        status=LeadStatus(str(row["status"])),
        created_at=created_at,
        updated_at=parse_utc_datetime(row.get("updated_at") or created_at),
        email=get_optional("email"),
        phone=get_optional("phone"),
        company=get_optional("company"),
        notes=get_optional("notes"),
    )


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _quoted_pattern(value: str) -> str:
    # Inside an or=() tree, reserved characters (, . : ( )) require a quoted value.
    # PostgREST unescapes backslashes within quotes, so the LIKE escapes are doubled.
    escaped = _escape_like(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"*{escaped}*"'


class SupabaseLeadRepository:
    """Lead persistence backed by the Supabase `leads` table."""

    def __init__(self, client: Any) -> None:
        self._client = client

    def _table(self, name: str = _LEADS_TABLE) -> Any:
        return self._client.table(name)

    def insert(self, lead: Lead) -> Lead:
        response = execute(self._table().insert(_lead_to_row(lead)), "insert lead")
        rows = getattr(response, "data", None) or []
        return _row_to_lead(rows[0]) if rows else lead

    def insert_many(self, leads: Sequence[Lead]) -> int:
        """
        Bulk insert in a single request.

        All rows go in one statement: if any row is rejected, none are stored.
        Empty input is a no-op.
        """
        if not leads:
            return 0
        payloads = [_lead_to_row(lead) for lead in leads]
        response = execute(self._table().insert(payloads), f"bulk insert {len(leads)} leads")
        rows = getattr(response, "data", None)
        return len(rows) if rows is not None else len(leads)

    def get(self, lead_id: UUID, owner_id: str) -> Optional[Lead]:
        response = execute(
            self._table()
            .select("*")
            .eq("id", str(lead_id))
            .eq("user_id", owner_id)
            .limit(1),
            "fetch lead",
        )
        rows = getattr(response, "data", None) or []
        return _row_to_lead(rows[0]) if rows else None

    def update(
        self,
        lead_id: UUID,
        owner_id: str,
        changes: Mapping[str, Any],
        updated_at: datetime,
    ) -> Optional[Lead]:
        """
        Conditional single-statement write: only a row matching both id and
        owner is touched. Returns None when nothing matched.
        """
        response = execute(
            self._table()
            .update(_changes_to_row(changes, updated_at))
            .eq("id", str(lead_id))
            .eq("user_id", owner_id),
            "update lead",
        )
        rows = getattr(response, "data", None) or []
        return _row_to_lead(rows[0]) if rows else None

    def delete(self, lead_id: UUID, owner_id: str) -> bool:
        """Delete a lead and its interactions atomically. Returns False when nothing matched."""
        response = execute(
            self._client.rpc(_DELETE_FUNCTION, {"p_lead_id": str(lead_id), "p_user_id": owner_id}),
            "delete lead",
        )
        data = getattr(response, "data", None)
        if isinstance(data, list):
            data = data[0] if data else False
        return bool(data)

    def query(self, owner_id: str, filters: LeadQueryFilters) -> LeadPage:
        """Filtered, newest-first page of the owner's leads with an exact total."""

        query = self._table().select("*", count="exact").eq("user_id", owner_id)

        if filters.query:
            pattern = _quoted_pattern(filters.query)
            query = query.or_(",".join(f"{column}.ilike.{pattern}" for column in _SEARCH_COLUMNS))

        if filters.statuses:
            query = query.in_("status", [s.value for s in filters.statuses])

        if filters.company:
            query = query.ilike("company", f"%{_escape_like(filters.company)}%")

        if filters.created_from is not None:
            query = query.gte("created_at", to_iso_utc(filters.created_from))

        if filters.created_to is not None:
            query = query.lte("created_at", to_iso_utc(filters.created_to))

        if filters.created_before is not None:
            query = query.lt("created_at", to_iso_utc(filters.created_before))

        query = query.order("created_at", desc=True).range(
            filters.offset, filters.offset + filters.limit - 1
        )

        response = execute(query, "fetch leads")
        rows = getattr(response, "data", None) or []
        count = getattr(response, "count", None)
        return LeadPage(
            leads=[_row_to_lead(row) for row in rows],
            total=count if count is not None else len(rows),
            limit=filters.limit,
            offset=filters.offset,
            query=filters.query,
        )

    def list_all(self, owner_id: str) -> List[Lead]:
        """Every lead the owner has, newest first (export)."""
        response = execute(
            self._table()
            .select("*")
            .eq("user_id", owner_id)
            .order("created_at", desc=True),
            "fetch leads",
        )
        rows = getattr(response, "data", None) or []
        return [_row_to_lead(row) for row in rows]


__all__ = ["SupabaseLeadRepository"]

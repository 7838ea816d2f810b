"""
Interaction repository (persistence).

Interactions are append-only. Deletion happens only through the parent lead
(see `SupabaseLeadRepository.delete`).
"""

from __future__ import annotations

from typing import Any, List, Mapping
from uuid import UUID

from domain.interaction import Interaction, InteractionType
from domain.time import parse_utc_datetime, to_iso_utc
from repositories.client import execute

_INTERACTIONS_TABLE: str = "interactions"


def _interaction_to_row(interaction: Interaction) -> dict[str, Any]:
    return {
        "id": str(interaction.id),
        "lead_id": str(interaction.lead_id),
        "user_id": interaction.user_id,
        "type": interaction.type.value,
        "description": interaction.description,
        "created_at": to_iso_utc(interaction.created_at),
    }


def _row_to_interaction(row: Mapping[str, Any]) -> Interaction:
    return Interaction(
        id=UUID(str(row["id"])),
        lead_id=UUID(str(row["lead_id"])),
        user_id=str(row["user_id"]),
        type=InteractionType(str(row["type"])),
        description=str(row["description"]),
        created_at=parse_utc_datetime(row["created_at"]),
    )


class SupabaseInteractionRepository:
    def __init__(self, client: Any) -> None:
        self._client = client

    def insert(self, interaction: Interaction) -> Interaction:
        response = execute(
            self._client.table(_INTERACTIONS_TABLE).insert(_interaction_to_row(interaction)),
            "create interaction",
        )
        rows = getattr(response, "data", None) or []
        return _row_to_interaction(rows[0]) if rows else interaction

    def list_for_lead(self, lead_id: UUID, owner_id: str) -> List[Interaction]:
        """Newest first."""
        response = execute(
            self._client.table(_INTERACTIONS_TABLE)
            .select("*")
            .eq("lead_id", str(lead_id))
            .eq("user_id", owner_id)
            .order("created_at", desc=True),
            "fetch interactions",
        )
        rows = getattr(response, "data", None) or []
        return [_row_to_interaction(row) for row in rows]


__all__ = ["SupabaseInteractionRepository"]

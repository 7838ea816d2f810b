"""
Domain: Interaction log entries.

An Interaction is a timestamped note against exactly one Lead. It is created
only against an existing Lead owned by the acting principal, is never updated
in place, and is deleted together with its parent Lead.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from .time import require_utc_timestamp, to_iso_utc


class InteractionType(str, Enum):
    CALL = "call"
    EMAIL = "email"
    MEETING = "meeting"
    NOTE = "note"
    OTHER = "other"


@dataclass(frozen=True, slots=True)
class Interaction:
    id: UUID
    lead_id: UUID
    user_id: str
    type: InteractionType
    description: str
    created_at: datetime

    def __post_init__(self) -> None:
        require_utc_timestamp("created_at", self.created_at)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "lead_id": str(self.lead_id),
            "user_id": self.user_id,
            "type": self.type.value,
            "description": self.description,
            "created_at": to_iso_utc(self.created_at),
        }

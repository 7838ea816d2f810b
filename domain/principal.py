"""
Domain: Principal (the authenticated caller).

The authentication provider hands back an opaque, verified identity with a
stable id. Every Lead and Interaction is owned by the principal that created it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True, slots=True)
class Principal:
    """Verified identity making a request."""

    user_id: str
    email: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.user_id:
            raise ValueError("user_id must be a non-empty string")

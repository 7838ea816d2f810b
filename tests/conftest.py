"""
Pytest configuration and shared fixtures.

This file adds the project root to the Python path so that tests can import
the domain, repositories, services, api and crm_client packages, and provides
in-memory stand-ins for the Supabase-backed stores and authenticator.
"""

from __future__ import annotations

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence
from uuid import UUID

import pytest

# Add the project root to the Python path
# so tests can import domain, repositories, etc.
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from domain.errors import AppError  # noqa: E402
from domain.interaction import Interaction  # noqa: E402
from domain.lead import Lead, LeadPage, LeadQueryFilters, LeadStatus, lead_matches  # noqa: E402
from domain.principal import Principal  # noqa: E402
from services.lead_service import LeadService  # noqa: E402
from services.rate_limiter import InMemoryRateLimiter  # noqa: E402

ALICE = Principal(user_id="11111111-1111-4111-8111-111111111111", email="alice@example.com")
BOB = Principal(user_id="22222222-2222-4222-8222-222222222222", email="bob@example.com")

TOKENS = {"alice-token": ALICE, "bob-token": BOB}


class TickingClock:
    """UTC clock that advances by `step` on every call."""

    def __init__(self, start: Optional[datetime] = None, step: timedelta = timedelta(seconds=1)) -> None:
        self.now = start or datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
        self.step = step

    def __call__(self) -> datetime:
        self.now = self.now + self.step
        return self.now


class InMemoryInteractionStore:
    def __init__(self) -> None:
        self.interactions: List[Interaction] = []
        self.calls = 0

    def insert(self, interaction: Interaction) -> Interaction:
        self.calls += 1
        self.interactions.append(interaction)
        return interaction

    def list_for_lead(self, lead_id: UUID, owner_id: str) -> List[Interaction]:
        self.calls += 1
        found = [i for i in self.interactions if i.lead_id == lead_id and i.user_id == owner_id]
        return sorted(found, key=lambda i: i.created_at, reverse=True)

    def delete_for_lead(self, lead_id: UUID) -> None:
        self.interactions = [i for i in self.interactions if i.lead_id != lead_id]


class InMemoryLeadStore:
    """LeadStore double with the same owner scoping as the Supabase repository."""

    def __init__(self, interactions: Optional[InMemoryInteractionStore] = None) -> None:
        self.leads: Dict[UUID, Lead] = {}
        self.interactions = interactions
        self.calls = 0
        self.failure: Optional[Exception] = None

    def _touch(self) -> None:
        self.calls += 1
        if self.failure is not None:
            raise self.failure

    def insert(self, lead: Lead) -> Lead:
        self._touch()
        self.leads[lead.id] = lead
        return lead

    def insert_many(self, leads: Sequence[Lead]) -> int:
        self._touch()
        for lead in leads:
            self.leads[lead.id] = lead
        return len(leads)

    def get(self, lead_id: UUID, owner_id: str) -> Optional[Lead]:
        self._touch()
        lead = self.leads.get(lead_id)
        return lead if lead is not None and lead.user_id == owner_id else None

    def update(
        self, lead_id: UUID, owner_id: str, changes: Mapping[str, Any], updated_at: datetime
    ) -> Optional[Lead]:
        self._touch()
        lead = self.leads.get(lead_id)
        if lead is None or lead.user_id != owner_id:
            return None
        updated = lead.with_changes(changes, updated_at)
        self.leads[lead_id] = updated
        return updated

    def delete(self, lead_id: UUID, owner_id: str) -> bool:
        self._touch()
        lead = self.leads.get(lead_id)
        if lead is None or lead.user_id != owner_id:
            return False
        if self.interactions is not None:
            self.interactions.delete_for_lead(lead_id)
        del self.leads[lead_id]
        return True

    def _owned(self, owner_id: str) -> List[Lead]:
        owned = [lead for lead in self.leads.values() if lead.user_id == owner_id]
        return sorted(owned, key=lambda lead: lead.created_at, reverse=True)

    def query(self, owner_id: str, filters: LeadQueryFilters) -> LeadPage:
        self._touch()
        matched = [lead for lead in self._owned(owner_id) if lead_matches(lead, filters)]
        return LeadPage(
            leads=matched[filters.offset:filters.offset + filters.limit],
            total=len(matched),
            limit=filters.limit,
            offset=filters.offset,
            query=filters.query,
        )

    def list_all(self, owner_id: str) -> List[Lead]:
        self._touch()
        return self._owned(owner_id)


class FakeAuthenticator:
    def __init__(self, tokens: Optional[Mapping[str, Principal]] = None) -> None:
        self.tokens = dict(TOKENS if tokens is None else tokens)
        self.calls = 0

    def authenticate(self, token: Optional[str]) -> Principal:
        self.calls += 1
        principal = self.tokens.get(token or "")
        if principal is None:
            raise AppError.authentication()
        return principal


def auth(token: str = "alice-token") -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def clock() -> TickingClock:
    return TickingClock()


@pytest.fixture
def interaction_store() -> InMemoryInteractionStore:
    return InMemoryInteractionStore()


@pytest.fixture
def lead_store(interaction_store: InMemoryInteractionStore) -> InMemoryLeadStore:
    return InMemoryLeadStore(interaction_store)


@pytest.fixture
def service(
    lead_store: InMemoryLeadStore,
    interaction_store: InMemoryInteractionStore,
    clock: TickingClock,
) -> LeadService:
    return LeadService(lead_store, interaction_store, clock=clock)


@pytest.fixture
def authenticator() -> FakeAuthenticator:
    return FakeAuthenticator()


@pytest.fixture
def rate_limiter() -> InMemoryRateLimiter:
    return InMemoryRateLimiter()


@pytest.fixture
def app(service: LeadService, authenticator: FakeAuthenticator, rate_limiter: InMemoryRateLimiter):
    from api.config import Settings
    from api.dependencies import get_authenticator, get_lead_service, get_rate_limiter
    from api.main import create_app

    application = create_app(Settings())
    application.dependency_overrides[get_lead_service] = lambda: service
    application.dependency_overrides[get_authenticator] = lambda: authenticator
    application.dependency_overrides[get_rate_limiter] = lambda: rate_limiter
    return application


@pytest.fixture
def client(app):
    from fastapi.testclient import TestClient

    return TestClient(app, raise_server_exceptions=False)


@pytest.fixture
def make_lead(lead_store: InMemoryLeadStore, clock: TickingClock) -> Callable[..., Lead]:
    """Insert a lead straight into the store."""

    counter = {"n": 0}

    def _make(owner: Principal = ALICE, **fields: Any) -> Lead:
        counter["n"] += 1
        now = clock()
        values: Dict[str, Any] = {"name": f"Lead {counter['n']}", "status": "new"}
        values.update(fields)
        lead = Lead(
            id=UUID(int=counter["n"]),
            user_id=owner.user_id,
            name=values.pop("name"),
            status=LeadStatus(values.pop("status")),
            created_at=values.pop("created_at", now),
            updated_at=now,
            **values,
        )
        lead_store.leads[lead.id] = lead
        return lead

    return _make


__all__ = ["ALICE", "BOB", "TickingClock", "auth"]

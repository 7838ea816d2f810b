"""
FastAPI dependencies.

Collaborators are resolved here so tests can swap any of them through
`app.dependency_overrides` without touching Supabase.
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi import Depends, Request

from domain.errors import AppError
from repositories.client import get_supabase
from repositories.interaction_repository import SupabaseInteractionRepository
from repositories.lead_repository import SupabaseLeadRepository
from services.auth_service import Authenticator, SupabaseAuthenticator, bearer_token
from services.lead_service import LeadService
from services.mutation_pipeline import MutationPipeline, RequestEnvelope
from services.rate_limiter import RateLimiter, ip_from_headers


def get_lead_service() -> LeadService:
    client = get_supabase()
    return LeadService(SupabaseLeadRepository(client), SupabaseInteractionRepository(client))


def get_authenticator() -> Authenticator:
    return SupabaseAuthenticator(get_supabase())


def get_rate_limiter(request: Request) -> RateLimiter:
    limiter = getattr(request.app.state, "rate_limiter", None)
    if limiter is None:
        # Lifespan did not run (e.g. app mounted without startup events).
        raise AppError.internal()
    return limiter


def get_pipeline(
    authenticator: Authenticator = Depends(get_authenticator),
    rate_limiter: RateLimiter = Depends(get_rate_limiter),
) -> MutationPipeline:
    return MutationPipeline(authenticator, rate_limiter)


def request_envelope(request: Request, body: Any = None) -> RequestEnvelope:
    """Build the transport-neutral envelope; the body stays raw (unparsed)."""

    ip_address: Optional[str] = ip_from_headers(request.headers)
    if ip_address is None and request.client is not None:
        ip_address = request.client.host
    return RequestEnvelope(
        token=bearer_token(request.headers.get("authorization")),
        ip_address=ip_address,
        body=body,
    )


async def read_envelope(request: Request) -> RequestEnvelope:
    return request_envelope(request, await request.body())


__all__ = [
    "get_lead_service",
    "get_authenticator",
    "get_rate_limiter",
    "get_pipeline",
    "request_envelope",
    "read_envelope",
]

"""
Interactions API Endpoints.

Log calls, emails, meetings and notes against a lead, and read a lead's
interaction history.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from starlette.concurrency import run_in_threadpool

from api.dependencies import get_lead_service, get_pipeline, read_envelope, request_envelope
from api.models import InteractionListResponse, InteractionResponse
from api.routers.leads import ERROR_RESPONSES
from services.lead_service import LeadService
from services.mutation_pipeline import MutationPipeline, no_body
from services.rate_limiter import RateLimitPresets

router = APIRouter()


@router.post(
    "/interactions",
    status_code=201,
    response_model=InteractionResponse,
    responses=ERROR_RESPONSES,
    summary="Create Interaction",
)
async def create_interaction(
    request: Request,
    pipeline: MutationPipeline = Depends(get_pipeline),
    service: LeadService = Depends(get_lead_service),
):
    """
    Record an interaction with one of the caller's leads.

    **Example request:**
    ```json
    {
      "lead_id": "123e4567-e89b-12d3-a456-426614174000",
      "type": "call",
      "description": "Discussed pricing"
    }
    ```

    Returns 404 `Lead not found` if the lead does not exist or belongs to
    someone else; nothing is recorded in that case.
    """
    envelope = await read_envelope(request)
    interaction = await run_in_threadpool(
        pipeline.run, envelope, RateLimitPresets.STANDARD, service.create_interaction
    )
    return interaction.to_dict()


@router.get(
    "/interactions",
    response_model=InteractionListResponse,
    responses=ERROR_RESPONSES,
    summary="List Interactions",
)
async def list_interactions(
    request: Request,
    lead_id: Optional[str] = Query(None, description="Lead whose history to return (required)"),
    pipeline: MutationPipeline = Depends(get_pipeline),
    service: LeadService = Depends(get_lead_service),
):
    """Interaction history of one lead, newest first."""
    history = await run_in_threadpool(
        pipeline.run,
        request_envelope(request),
        RateLimitPresets.STANDARD,
        lambda principal, _: service.list_interactions(principal, lead_id),
        no_body,
    )
    return {
        "interactions": [interaction.to_dict() for interaction in history.interactions],
        "total": history.total,
    }

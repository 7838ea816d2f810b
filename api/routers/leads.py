"""
Leads API Endpoints.

Endpoints for creating, browsing, updating and deleting leads, plus bulk
import/export.

Every endpoint goes through `MutationPipeline`:

    Authenticate -> RateLimit -> ParseBody -> Validate -> Sanitize -> ownership -> Persist

Bodies are read raw and only parsed once the caller is authenticated and
under its rate limit.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Request, Response
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import UploadFile

from api.dependencies import get_lead_service, get_pipeline, read_envelope, request_envelope
from api.models import DeleteResponse, ErrorResponse, ImportResponse, LeadListResponse, LeadResponse, LeadSearchResponse
from domain.lead import LeadPage
from services.lead_import_service import UploadedFile
from services.lead_service import LeadService
from services.mutation_pipeline import MutationPipeline, no_body
from services.rate_limiter import RateLimitPresets

router = APIRouter()

ERROR_RESPONSES: Dict[int, Dict[str, Any]] = {
    400: {"model": ErrorResponse},
    401: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    429: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}


def _query_params(**params: Optional[str]) -> Dict[str, str]:
    return {key: value for key, value in params.items() if value is not None}


def _page_body(page: LeadPage, echo_query: bool = False) -> Dict[str, Any]:
    body: Dict[str, Any] = {
        "leads": [lead.to_dict() for lead in page.leads],
        "total": page.total,
        "limit": page.limit,
        "offset": page.offset,
    }
    if echo_query:
        body["query"] = page.query
    return body


@router.post(
    "/leads",
    status_code=201,
    response_model=LeadResponse,
    responses=ERROR_RESPONSES,
    summary="Create Lead",
    description="Create a lead owned by the authenticated user.",
)
async def create_lead(
    request: Request,
    pipeline: MutationPipeline = Depends(get_pipeline),
    service: LeadService = Depends(get_lead_service),
):
    """
    Create a new lead.

    **Example request:**
    ```json
    {"name": "Jane Doe", "email": "jane@example.com", "status": "new"}
    ```

    `id`, `user_id` and timestamps are assigned by the server; if sent they
    are ignored.
    """
    envelope = await read_envelope(request)
    lead = await run_in_threadpool(pipeline.run, envelope, RateLimitPresets.STANDARD, service.create_lead)
    return lead.to_dict()


@router.get(
    "/leads",
    response_model=LeadListResponse,
    responses=ERROR_RESPONSES,
    summary="List Leads",
    description="List the caller's leads, newest first, with optional filters.",
)
async def list_leads(
    request: Request,
    status: Optional[str] = Query(None, description="Comma-separated statuses (e.g. 'new,contacted')"),
    company: Optional[str] = Query(None, description="Case-insensitive substring of the company name"),
    dateFrom: Optional[str] = Query(None, description="Created at or after (ISO date or datetime)"),
    dateTo: Optional[str] = Query(None, description="Created at or before (ISO date or datetime)"),
    limit: Optional[str] = Query(None, description="Page size, clamped to 1..100 (default 50)"),
    offset: Optional[str] = Query(None, description="Rows to skip (default 0)"),
    pipeline: MutationPipeline = Depends(get_pipeline),
    service: LeadService = Depends(get_lead_service),
):
    """
    **Example usage:**
    - All leads: `GET /api/leads`
    - Open pipeline: `GET /api/leads?status=new,contacted,qualified`
    - One month: `GET /api/leads?dateFrom=2025-01-01&dateTo=2025-01-31`
    """
    params = _query_params(
        status=status, company=company, dateFrom=dateFrom, dateTo=dateTo, limit=limit, offset=offset
    )
    page = await run_in_threadpool(
        pipeline.run,
        request_envelope(request),
        RateLimitPresets.STANDARD,
        lambda principal, _: service.list_leads(principal, params),
        no_body,
    )
    return _page_body(page)


@router.get(
    "/leads/search",
    response_model=LeadSearchResponse,
    responses=ERROR_RESPONSES,
    summary="Search Leads",
    description="Free-text search over name, email, company and notes, combined with the list filters.",
)
async def search_leads(
    request: Request,
    query: Optional[str] = Query(None, description="Text to look for"),
    status: Optional[str] = Query(None, description="Comma-separated statuses"),
    company: Optional[str] = Query(None, description="Case-insensitive substring of the company name"),
    dateFrom: Optional[str] = Query(None, description="Created at or after (ISO date or datetime)"),
    dateTo: Optional[str] = Query(None, description="Created at or before (ISO date or datetime)"),
    limit: Optional[str] = Query(None, description="Page size, silently clamped to 1..100"),
    offset: Optional[str] = Query(None, description="Rows to skip"),
    pipeline: MutationPipeline = Depends(get_pipeline),
    service: LeadService = Depends(get_lead_service),
):
    """
    Same response shape as `GET /leads`, plus the echoed `query`.

    **Example usage:**
    `GET /api/leads/search?query=acme&status=qualified&limit=20`
    """
    params = _query_params(
        query=query, status=status, company=company, dateFrom=dateFrom, dateTo=dateTo,
        limit=limit, offset=offset,
    )
    page = await run_in_threadpool(
        pipeline.run,
        request_envelope(request),
        RateLimitPresets.SEARCH,
        lambda principal, _: service.search_leads(principal, params),
        no_body,
    )
    return _page_body(page, echo_query=True)


@router.post(
    "/leads/import",
    response_model=ImportResponse,
    responses=ERROR_RESPONSES,
    summary="Import Leads",
    description="Bulk import leads from a CSV or XLSX file (multipart field 'file', at most 1000 rows).",
)
async def import_leads(
    request: Request,
    pipeline: MutationPipeline = Depends(get_pipeline),
    service: LeadService = Depends(get_lead_service),
):
    """
    Import leads from a spreadsheet.

    **Columns** (header names are case-insensitive):
    name, email, phone, company, status (defaults to "new"), notes

    Each row is validated on its own; a bad row is reported and skipped.
    Row numbers count the header as row 1.

    **Response:**
    ```json
    {"success": 2, "failed": 1, "errors": [{"row": 3, "errors": ["email: Invalid email"]}]}
    ```
    """
    principal = await run_in_threadpool(pipeline.admit, request_envelope(request), RateLimitPresets.BULK)

    upload = None
    form = await request.form()
    try:
        item = form.get("file")
        if isinstance(item, UploadFile):
            upload = UploadedFile(filename=item.filename or "", content=await item.read())
    finally:
        await form.close()

    result = await run_in_threadpool(service.import_leads, principal, upload)
    return result.to_dict()


@router.get(
    "/leads/export",
    response_class=Response,
    responses=ERROR_RESPONSES,
    summary="Export Leads",
    description="Download all of the caller's leads as CSV or XLSX.",
)
async def export_leads(
    request: Request,
    format: Optional[str] = Query("csv", description="'csv' (default) or 'xlsx'"),
    pipeline: MutationPipeline = Depends(get_pipeline),
    service: LeadService = Depends(get_lead_service),
):
    """
    **Security:**
    - Only the caller's own leads are exported
    - CSV injection prevention (leading formula characters stripped from text fields)

    **Response:**
    File download named `leads-export-YYYY-MM-DD.csv` (or `.xlsx`).
    """
    params = _query_params(format=format)
    export = await run_in_threadpool(
        pipeline.run,
        request_envelope(request),
        RateLimitPresets.BULK,
        lambda principal, _: service.export_leads(principal, params),
        no_body,
    )
    return Response(
        content=export.content,
        media_type=export.media_type,
        headers={"Content-Disposition": f'attachment; filename="{export.filename}"'},
    )


@router.get(
    "/leads/{lead_id}",
    response_model=LeadResponse,
    responses=ERROR_RESPONSES,
    summary="Get Lead",
)
async def get_lead(
    lead_id: str,
    request: Request,
    pipeline: MutationPipeline = Depends(get_pipeline),
    service: LeadService = Depends(get_lead_service),
):
    """Fetch one lead. Leads owned by someone else are reported as not found."""
    lead = await run_in_threadpool(
        pipeline.run,
        request_envelope(request),
        RateLimitPresets.STANDARD,
        lambda principal, _: service.get_lead(principal, lead_id),
        no_body,
    )
    return lead.to_dict()


@router.patch(
    "/leads/{lead_id}",
    response_model=LeadResponse,
    responses=ERROR_RESPONSES,
    summary="Update Lead",
    description="Partial update: only the fields present in the body change.",
)
async def update_lead(
    lead_id: str,
    request: Request,
    pipeline: MutationPipeline = Depends(get_pipeline),
    service: LeadService = Depends(get_lead_service),
):
    """
    Update a lead.

    Absent fields are left untouched; `null` or `""` clears an optional
    field. An empty object `{}` changes nothing and returns the lead as stored.

    **Example request:**
    ```json
    {"status": "won"}
    ```
    """
    envelope = await read_envelope(request)
    lead = await run_in_threadpool(
        pipeline.run,
        envelope,
        RateLimitPresets.STANDARD,
        lambda principal, payload: service.update_lead(principal, lead_id, payload),
    )
    return lead.to_dict()


@router.delete(
    "/leads/{lead_id}",
    response_model=DeleteResponse,
    responses=ERROR_RESPONSES,
    summary="Delete Lead",
    description="Delete a lead and its interactions.",
)
async def delete_lead(
    lead_id: str,
    request: Request,
    pipeline: MutationPipeline = Depends(get_pipeline),
    service: LeadService = Depends(get_lead_service),
):
    await run_in_threadpool(
        pipeline.run,
        request_envelope(request),
        RateLimitPresets.STANDARD,
        lambda principal, _: service.delete_lead(principal, lead_id),
        no_body,
    )
    return {"success": True}

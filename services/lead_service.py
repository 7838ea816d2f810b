"""
Lead and interaction operations.

Each mutating method runs the tail of the request pipeline:

    Validate -> Sanitize -> ownership check -> Persist

Authentication, rate limiting and body parsing have already happened in
`MutationPipeline` by the time these methods are called.

Ownership: rows are always looked up by (id, owner). A lead that belongs to
another principal, a lead that does not exist and an id that is not even a
UUID all produce the same NOT_FOUND("Lead").

Partial updates: only keys present in the payload change. An explicit null or
"" clears an optional field; an absent key leaves it untouched. An empty
payload is a no-op that returns the stored lead without bumping updated_at.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Callable, List, Mapping, Optional, Protocol, Sequence, TypeVar
from uuid import UUID, uuid4

from domain.errors import AppError
from domain.interaction import Interaction, InteractionType
from domain.lead import (
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    Lead,
    LeadPage,
    LeadQueryFilters,
    LeadStatus,
)
from domain.principal import Principal
from domain.sanitize import sanitize_interaction_input, sanitize_lead_input, sanitize_string
from domain.time import utc_now
from domain.validation import is_uuid, validate_interaction, validate_lead
from repositories.client import RepositoryError
from services import lead_export_service, lead_import_service
from services.lead_import_service import ImportResult, UploadedFile

logger = logging.getLogger(__name__)

T = TypeVar("T")


class LeadStore(Protocol):
    def insert(self, lead: Lead) -> Lead: ...

    def insert_many(self, leads: Sequence[Lead]) -> int: ...

    def get(self, lead_id: UUID, owner_id: str) -> Optional[Lead]: ...

    def update(
        self, lead_id: UUID, owner_id: str, changes: Mapping[str, Any], updated_at: datetime
    ) -> Optional[Lead]: ...

    def delete(self, lead_id: UUID, owner_id: str) -> bool: ...

    def query(self, owner_id: str, filters: LeadQueryFilters) -> LeadPage: ...

    def list_all(self, owner_id: str) -> List[Lead]: ...


class InteractionStore(Protocol):
    def insert(self, interaction: Interaction) -> Interaction: ...

    def list_for_lead(self, lead_id: UUID, owner_id: str) -> List[Interaction]: ...


@dataclass(frozen=True, slots=True)
class InteractionList:
    interactions: List[Interaction]
    total: int


def _parse_id(value: Any) -> Optional[UUID]:
    return UUID(value) if is_uuid(value) else None


def _require_after_sanitize(clean: Mapping[str, Any], messages: Mapping[str, str]) -> None:
    # A required field made only of whitespace/control characters passes the
    # length check but sanitizes to None.
    errors = {name: [message] for name, message in messages.items() if name in clean and clean[name] is None}
    if errors:
        raise AppError.validation(errors)


def _parse_int(params: Mapping[str, str], name: str, default: int, errors: dict[str, list[str]]) -> int:
    raw = params.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        errors[name] = [f"{name} must be an integer"]
        return default


def _parse_moment(raw: str) -> tuple[datetime, bool]:
    """Parse an ISO date or datetime; the flag is True for a bare date."""

    text = raw.strip()
    if len(text) == 10:
        day = date.fromisoformat(text)
        return datetime.combine(day, time.min, tzinfo=timezone.utc), True
    moment = datetime.fromisoformat(text.replace("Z", "+00:00"))
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc), False


def build_filters(params: Mapping[str, str], search: bool = False) -> LeadQueryFilters:
    """
    Translate query-string parameters into a LeadQueryFilters.

    limit is clamped to [1, MAX_PAGE_SIZE] whatever the client asks for, and a
    date-only dateTo includes that whole day.
    """

    errors: dict[str, list[str]] = {}

    statuses: Optional[List[LeadStatus]] = None
    raw_status = params.get("status")
    if raw_status:
        statuses = []
        for value in (s.strip() for s in raw_status.split(",")):
            if not value:
                continue
            try:
                statuses.append(LeadStatus(value))
            except ValueError:
                errors.setdefault("status", []).append(f"Unknown status: {value}")
        statuses = statuses or None

    created_from = created_to = created_before = None
    if params.get("dateFrom"):
        try:
            created_from, _ = _parse_moment(params["dateFrom"])
        except ValueError:
            errors["dateFrom"] = ["dateFrom must be an ISO date"]
    if params.get("dateTo"):
        try:
            moment, date_only = _parse_moment(params["dateTo"])
            if date_only:
                created_before = moment + timedelta(days=1)
            else:
                created_to = moment
        except ValueError:
            errors["dateTo"] = ["dateTo must be an ISO date"]

    limit = _parse_int(params, "limit", DEFAULT_PAGE_SIZE, errors)
    offset = _parse_int(params, "offset", 0, errors)

    if errors:
        raise AppError.validation(errors, "Invalid query parameters")

    return LeadQueryFilters(
        statuses=statuses,
        company=sanitize_string(params.get("company")),
        created_from=created_from,
        created_to=created_to,
        created_before=created_before,
        query=sanitize_string(params.get("query")) if search else None,
        limit=min(max(limit, 1), MAX_PAGE_SIZE),
        offset=max(offset, 0),
    )


class LeadService:
    def __init__(
        self,
        leads: LeadStore,
        interactions: InteractionStore,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._leads = leads
        self._interactions = interactions
        self._clock = clock

    def _persist(self, operation: Callable[[], T], message: str) -> T:
        try:
            return operation()
        except RepositoryError as exc:
            logger.error("Datastore failure: %s", exc, exc_info=True)
            raise AppError.database(message) from exc

    def _owned_lead(self, principal: Principal, lead_id: Any) -> Lead:
        parsed = _parse_id(lead_id)
        lead = None
        if parsed is not None:
            lead = self._persist(
                lambda: self._leads.get(parsed, principal.user_id),
                "Failed to fetch lead. Please try again.",
            )
        if lead is None:
            raise AppError.not_found("Lead")
        return lead

    # Leads

    def create_lead(self, principal: Principal, payload: Any) -> Lead:
        result = validate_lead(payload)
        if not result.is_valid:
            raise AppError.validation(result.errors)

        clean = sanitize_lead_input(result.data)
        _require_after_sanitize(clean, {"name": "Name is required"})

        now = self._clock()
        lead = Lead(
            id=uuid4(),
            user_id=principal.user_id,
            name=clean["name"],
            status=LeadStatus(clean["status"]),
            created_at=now,
            updated_at=now,
            email=clean.get("email"),
            phone=clean.get("phone"),
            company=clean.get("company"),
            notes=clean.get("notes"),
        )
        created = self._persist(
            lambda: self._leads.insert(lead), "Failed to create lead. Please try again."
        )
        logger.info("Lead created", extra={"lead_id": str(created.id), "user_id": principal.user_id})
        return created

    def get_lead(self, principal: Principal, lead_id: Any, payload: Any = None) -> Lead:
        return self._owned_lead(principal, lead_id)

    def update_lead(self, principal: Principal, lead_id: Any, payload: Any) -> Lead:
        result = validate_lead(payload, partial=True)
        if not result.is_valid:
            raise AppError.validation(result.errors)

        clean = sanitize_lead_input(result.data)
        _require_after_sanitize(clean, {"name": "Name is required"})

        if not clean:
            return self._owned_lead(principal, lead_id)

        parsed = _parse_id(lead_id)
        if parsed is None:
            raise AppError.not_found("Lead")

        now = self._clock()
        updated = self._persist(
            lambda: self._leads.update(parsed, principal.user_id, clean, now),
            "Failed to update lead. Please try again.",
        )
        if updated is None:
            raise AppError.not_found("Lead")

        logger.info(
            "Lead updated",
            extra={"lead_id": str(parsed), "user_id": principal.user_id, "fields": sorted(clean)},
        )
        return updated

    def delete_lead(self, principal: Principal, lead_id: Any, payload: Any = None) -> None:
        parsed = _parse_id(lead_id)
        if parsed is None:
            raise AppError.not_found("Lead")

        deleted = self._persist(
            lambda: self._leads.delete(parsed, principal.user_id),
            "Failed to delete lead. Please try again.",
        )
        if not deleted:
            raise AppError.not_found("Lead")
        logger.info("Lead deleted", extra={"lead_id": str(parsed), "user_id": principal.user_id})

    def list_leads(self, principal: Principal, params: Mapping[str, str]) -> LeadPage:
        filters = build_filters(params)
        return self._persist(
            lambda: self._leads.query(principal.user_id, filters),
            "Failed to fetch leads. Please try again.",
        )

    def search_leads(self, principal: Principal, params: Mapping[str, str]) -> LeadPage:
        filters = build_filters(params, search=True)
        return self._persist(
            lambda: self._leads.query(principal.user_id, filters),
            "Failed to search leads. Please try again.",
        )

    # Interactions

    def create_interaction(self, principal: Principal, payload: Any) -> Interaction:
        result = validate_interaction(payload)
        if not result.is_valid:
            raise AppError.validation(result.errors)

        clean = sanitize_interaction_input(result.data)
        _require_after_sanitize(clean, {"description": "Description is required"})

        lead = self._owned_lead(principal, clean["lead_id"])

        interaction = Interaction(
            id=uuid4(),
            lead_id=lead.id,
            user_id=principal.user_id,
            type=InteractionType(clean["type"]),
            description=clean["description"],
            created_at=self._clock(),
        )
        created = self._persist(
            lambda: self._interactions.insert(interaction),
            "Failed to create interaction. Please try again.",
        )
        logger.info(
            "Interaction created",
            extra={"interaction_id": str(created.id), "lead_id": str(lead.id)},
        )
        return created

    def list_interactions(self, principal: Principal, lead_id: Optional[str]) -> InteractionList:
        if not lead_id:
            raise AppError.validation(
                {"lead_id": ["lead_id parameter is required"]}, "lead_id parameter is required"
            )

        lead = self._owned_lead(principal, lead_id)
        interactions = self._persist(
            lambda: self._interactions.list_for_lead(lead.id, principal.user_id),
            "Failed to fetch interactions. Please try again.",
        )
        return InteractionList(interactions=interactions, total=len(interactions))

    # Bulk

    def import_leads(self, principal: Principal, upload: Optional[UploadedFile]) -> ImportResult:
        """
        Import a CSV/XLSX file. Rows are validated and sanitized one by one; a
        bad row is reported and skipped, the good rows are inserted together.
        """
        rows = lead_import_service.read_upload(upload)
        now = self._clock()
        prepared = lead_import_service.prepare_rows(rows, principal.user_id, now)

        inserted = 0
        if prepared.leads:
            inserted = self._persist(
                lambda: self._leads.insert_many(prepared.leads),
                "Failed to insert leads. Please try again.",
            )

        logger.info(
            "Lead import finished",
            extra={"user_id": principal.user_id, "success": inserted, "failed": len(prepared.errors)},
        )
        return ImportResult(success=inserted, failed=len(prepared.errors), errors=prepared.errors)

    def export_leads(self, principal: Principal, params: Mapping[str, str]) -> lead_export_service.ExportFile:
        export_format = (params.get("format") or "csv").lower()
        if export_format not in lead_export_service.FORMATS:
            raise AppError.validation({"format": ["Format must be csv or xlsx"]}, "Format must be csv or xlsx")

        leads = self._persist(
            lambda: self._leads.list_all(principal.user_id),
            "Failed to fetch leads. Please try again.",
        )
        return lead_export_service.render(leads, export_format, self._clock())


__all__ = [
    "LeadService",
    "LeadStore",
    "InteractionStore",
    "InteractionList",
    "build_filters",
]

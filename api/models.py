"""
API Response Models.

Pydantic models for serializing responses. Request bodies are deliberately
not modelled here: they are read raw and go through the mutation pipeline
(authenticate, rate limit, parse, validate, sanitize) so that a rejected
request is answered before its body is ever interpreted.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel


# ============================================================================
# Lead Models
# ============================================================================

class LeadResponse(BaseModel):
    """Single lead in API response."""
    id: UUID
    user_id: str
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    company: Optional[str] = None
    status: str  # "new", "contacted", "qualified", "pending", "lost", "won"
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        json_schema_extra = {
            "example": {
                "id": "123e4567-e89b-12d3-a456-426614174000",
                "user_id": "0b6f7a52-5d8e-4a43-9a55-3c4e2f1d9b10",
                "name": "Jane Doe",
                "email": "jane@example.com",
                "phone": "+1 (555) 010-2000",
                "company": "Acme Corp",
                "status": "new",
                "notes": "Met at the spring expo",
                "created_at": "2025-01-01T12:00:00Z",
                "updated_at": "2025-01-01T12:00:00Z"
            }
        }


class LeadListResponse(BaseModel):
    """Response for lead listing."""
    leads: List[LeadResponse]
    total: int
    limit: int
    offset: int

    class Config:
        json_schema_extra = {
            "example": {
                "leads": [],
                "total": 150,
                "limit": 50,
                "offset": 0
            }
        }


class LeadSearchResponse(LeadListResponse):
    """Lead listing plus the search text it was filtered by."""
    query: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "leads": [],
                "total": 3,
                "limit": 50,
                "offset": 0,
                "query": "acme"
            }
        }


class DeleteResponse(BaseModel):
    """Response after deleting a lead."""
    success: bool = True


# ============================================================================
# Interaction Models
# ============================================================================

class InteractionResponse(BaseModel):
    """Single interaction in API response."""
    id: UUID
    lead_id: UUID
    user_id: str
    type: str  # "call", "email", "meeting", "note", "other"
    description: str
    created_at: datetime

    class Config:
        json_schema_extra = {
            "example": {
                "id": "123e4567-e89b-12d3-a456-426614174005",
                "lead_id": "123e4567-e89b-12d3-a456-426614174000",
                "user_id": "0b6f7a52-5d8e-4a43-9a55-3c4e2f1d9b10",
                "type": "call",
                "description": "Discussed pricing, follow up next week",
                "created_at": "2025-01-02T09:30:00Z"
            }
        }


class InteractionListResponse(BaseModel):
    """Response for a lead's interaction history (newest first)."""
    interactions: List[InteractionResponse]
    total: int


# ============================================================================
# Import Models
# ============================================================================

class ImportRowErrorResponse(BaseModel):
    """Validation failures for one file row (row 1 is the header)."""
    row: int
    errors: List[str]


class ImportResponse(BaseModel):
    """Outcome of a bulk import."""
    success: int
    failed: int
    errors: List[ImportRowErrorResponse]

    class Config:
        json_schema_extra = {
            "example": {
                "success": 2,
                "failed": 1,
                "errors": [{"row": 3, "errors": ["email: Invalid email"]}]
            }
        }


# ============================================================================
# Error Models
# ============================================================================

class ErrorBody(BaseModel):
    code: str
    message: str
    details: Optional[Dict[str, Any]] = None


class ErrorResponse(BaseModel):
    """Standard error response."""
    error: ErrorBody

    class Config:
        json_schema_extra = {
            "example": {
                "error": {
                    "code": "VALIDATION_ERROR",
                    "message": "Validation failed",
                    "details": {"email": ["Invalid email"]}
                }
            }
        }

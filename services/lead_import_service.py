"""
Lead import from CSV / XLSX uploads.

Handles:
- File type detection by extension (.csv, .xlsx)
- Parsing (csv.DictReader for CSV, openpyxl for the first XLSX sheet)
- Case-insensitive header mapping onto lead fields (status defaults to "new")
- Per-row validation and sanitization; a failing row is reported, not fatal

Row numbers in the report are 1-based file lines: the first data row is row 2
because row 1 is the header.
"""

from __future__ import annotations

import csv
import io
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import uuid4

from openpyxl import load_workbook

from domain.errors import AppError
from domain.lead import Lead, LeadStatus
from domain.sanitize import sanitize_lead_input
from domain.validation import validate_lead

logger = logging.getLogger(__name__)

MAX_IMPORT_ROWS = 1000

_LEAD_COLUMNS = ("name", "email", "phone", "company", "status", "notes")


@dataclass(frozen=True, slots=True)
class UploadedFile:
    filename: str
    content: bytes


@dataclass(frozen=True, slots=True)
class ImportRowError:
    row: int
    errors: List[str]

    def to_dict(self) -> dict[str, Any]:
        return {"row": self.row, "errors": list(self.errors)}


@dataclass(frozen=True, slots=True)
class ImportResult:
    success: int
    failed: int
    errors: List[ImportRowError]

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "failed": self.failed,
            "errors": [e.to_dict() for e in self.errors],
        }


@dataclass
class PreparedImport:
    leads: List[Lead] = field(default_factory=list)
    errors: List[ImportRowError] = field(default_factory=list)


def _file_error(message: str, detail: str) -> AppError:
    return AppError.validation({"file": [detail]}, message)


def parse_csv(content: bytes) -> List[Dict[str, Any]]:
    # utf-8-sig drops the BOM spreadsheet tools like to prepend.
    text = content.decode("utf-8-sig")
    reader = csv.DictReader(io.StringIO(text))
    return [dict(row) for row in reader]


def parse_xlsx(content: bytes) -> List[Dict[str, Any]]:
    workbook = load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    try:
        if not workbook.sheetnames:
            raise ValueError("No sheets found in XLSX file")
        sheet = workbook[workbook.sheetnames[0]]
        rows = sheet.iter_rows(values_only=True)
        header = next(rows, None)
        if header is None:
            return []
        keys = [str(cell) if cell is not None else "" for cell in header]
        records = []
        for values in rows:
            if values is None or all(v is None or v == "" for v in values):
                continue
            records.append({key: value for key, value in zip(keys, values) if key})
        return records
    finally:
        workbook.close()


def read_upload(upload: Optional[UploadedFile]) -> List[Dict[str, Any]]:
    """Parse the uploaded file into header-keyed rows, enforcing the size limits."""

    if upload is None or not upload.filename:
        raise _file_error("No file provided", "File is required")

    filename = upload.filename.lower()
    if filename.endswith(".csv"):
        parser = parse_csv
    elif filename.endswith(".xlsx"):
        parser = parse_xlsx
    else:
        raise _file_error("Invalid file type", "Only CSV and XLSX files are supported")

    try:
        rows = parser(upload.content)
    except Exception as exc:
        logger.warning("File parsing error", extra={"upload_name": upload.filename, "error": str(exc)})
        raise _file_error("Failed to parse file", "File format is invalid or corrupted") from exc

    if len(rows) > MAX_IMPORT_ROWS:
        raise _file_error("Too many rows", f"Maximum {MAX_IMPORT_ROWS} rows allowed per import")
    if not rows:
        raise _file_error("Empty file", "File contains no data rows")

    return rows


def _cell(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, float) and value.is_integer():
        # Spreadsheets hand back phone numbers as floats.
        value = int(value)
    return str(value)


def row_to_payload(row: Dict[str, Any]) -> Dict[str, Any]:
    """Map a file row onto a lead payload (header names are case-insensitive)."""

    normalized = {str(key).strip().lower(): value for key, value in row.items() if key is not None}
    payload = {column: _cell(normalized.get(column)) for column in _LEAD_COLUMNS}
    payload["name"] = payload["name"] or ""
    payload["status"] = (payload["status"] or LeadStatus.NEW.value).strip().lower()
    return payload


def prepare_rows(rows: List[Dict[str, Any]], owner_id: str, now: datetime) -> PreparedImport:
    """Validate and sanitize every row independently."""

    prepared = PreparedImport()

    for index, row in enumerate(rows):
        row_number = index + 2  # header is row 1
        result = validate_lead(row_to_payload(row))
        if not result.is_valid:
            messages = [f"{name}: {message}" for name, msgs in result.errors.items() for message in msgs]
            prepared.errors.append(ImportRowError(row=row_number, errors=messages))
            continue

        clean = sanitize_lead_input(result.data)
        if clean.get("name") is None:
            prepared.errors.append(ImportRowError(row=row_number, errors=["name: Name is required"]))
            continue

        prepared.leads.append(
            Lead(
                id=uuid4(),
                user_id=owner_id,
                name=clean["name"],
                status=LeadStatus(clean["status"]),
                created_at=now,
                updated_at=now,
                email=clean.get("email"),
                phone=clean.get("phone"),
                company=clean.get("company"),
                notes=clean.get("notes"),
            )
        )

    return prepared


__all__ = [
    "MAX_IMPORT_ROWS",
    "UploadedFile",
    "ImportResult",
    "ImportRowError",
    "read_upload",
    "prepare_rows",
    "row_to_payload",
]

"""
Lead export to CSV / XLSX.

Generates a downloadable file containing every lead of the requesting
principal, newest first.

Security:
- Authorization: the caller only ever passes leads already scoped to its owner
- CSV Injection Prevention: free-text fields are neutralised so spreadsheet
  tools do not execute them as formulas
- Security Logging: a warning is logged whenever dangerous characters are stripped
"""

from __future__ import annotations

import csv
import io
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from openpyxl import Workbook

from domain.lead import Lead
from domain.time import to_iso_utc

logger = logging.getLogger(__name__)

FORMATS = ("csv", "xlsx")

CSV_MEDIA_TYPE = "text/csv"
XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

CSV_COLUMNS = ["name", "email", "phone", "company", "status", "notes", "created_at"]

# (header, column width) in sheet order.
XLSX_COLUMNS = [
    ("Name", 20),
    ("Email", 25),
    ("Phone", 15),
    ("Company", 20),
    ("Status", 12),
    ("Notes", 30),
    ("Created At", 20),
]

_DANGEROUS_LEADING_CHARS = {"=", "+", "-", "@", "\t", "\r"}


@dataclass(frozen=True, slots=True)
class ExportFile:
    filename: str
    media_type: str
    content: bytes


def sanitize_csv_field(value: Optional[str], field_name: str = "unknown") -> str:
    """
    Sanitize field to prevent CSV injection attacks with security logging.

    Strips leading characters that can trigger formula execution in Excel/Sheets:
    =, +, -, @, tab, carriage return

    Example:
        sanitize_csv_field("=1+1", "notes")
        # Returns "1+1" and logs a warning about the stripped "=" character

        sanitize_csv_field("Acme Corp", "company")
        # Returns "Acme Corp" (unchanged, no logging)
    """
    if value is None or value == "":
        return ""

    text = str(value).strip()
    original_text = text

    stripped_chars = []
    while text and text[0] in _DANGEROUS_LEADING_CHARS:
        stripped_chars.append(text[0])
        text = text[1:]

    if stripped_chars:
        logger.warning(
            f"CSV injection character(s) stripped from field '{field_name}'",
            extra={
                "field_name": field_name,
                "stripped_characters": "".join(stripped_chars),
                "original_value": original_text[:100],
                "sanitized_value": text[:100],
                "modification_type": "csv_injection_prevention",
            },
        )

    return text


def _export_row(lead: Lead) -> List[str]:
    # Phone is already restricted to digits, spaces and +-() by validation; a
    # leading "+" is meaningful there and is kept.
    return [
        sanitize_csv_field(lead.name, "name"),
        sanitize_csv_field(lead.email, "email"),
        lead.phone or "",
        sanitize_csv_field(lead.company, "company"),
        lead.status.value,
        sanitize_csv_field(lead.notes, "notes"),
        to_iso_utc(lead.created_at),
    ]


def leads_to_csv(leads: List[Lead]) -> str:
    output = io.StringIO()
    writer = csv.writer(output, lineterminator="\n")
    writer.writerow(CSV_COLUMNS)
    for lead in leads:
        writer.writerow(_export_row(lead))
    return output.getvalue()


def leads_to_xlsx(leads: List[Lead]) -> bytes:
    workbook = Workbook()
    sheet = workbook.active
    sheet.title = "Leads"

    sheet.append([header for header, _ in XLSX_COLUMNS])
    for lead in leads:
        sheet.append(_export_row(lead))

    for index, (_, width) in enumerate(XLSX_COLUMNS):
        sheet.column_dimensions[chr(ord("A") + index)].width = width

    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def render(leads: List[Lead], export_format: str, now: datetime) -> ExportFile:
    """Build the export file; `export_format` must be one of FORMATS."""

    stamp = now.date().isoformat()
    if export_format == "xlsx":
        return ExportFile(
            filename=f"leads-export-{stamp}.xlsx",
            media_type=XLSX_MEDIA_TYPE,
            content=leads_to_xlsx(leads),
        )
    if export_format == "csv":
        return ExportFile(
            filename=f"leads-export-{stamp}.csv",
            media_type=CSV_MEDIA_TYPE,
            content=leads_to_csv(leads).encode("utf-8"),
        )
    raise ValueError(f"Unsupported export format: {export_format}")


__all__ = [
    "ExportFile",
    "FORMATS",
    "sanitize_csv_field",
    "leads_to_csv",
    "leads_to_xlsx",
    "render",
]

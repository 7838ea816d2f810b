#!/usr/bin/env python3
"""
Lead Import Script

Imports leads from a CSV or XLSX file into the Supabase database on behalf of
one user, applying the same validation and sanitization as the
`POST /api/leads/import` endpoint:
- Case-insensitive headers: name, email, phone, company, status, notes
- Per-row validation; bad rows are reported and skipped
- Batch inserts with one-by-one fallback for error isolation
- Summary statistics and error logging

Usage:
    python import_leads.py path/to/leads.csv --user-id <uuid>
    python import_leads.py path/to/leads.xlsx --user-id <uuid> --batch-size 100 --dry-run
"""

from __future__ import annotations

import argparse
import json
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

# Add parent directory to path to import modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from domain.errors import AppError
from domain.lead import Lead
from domain.time import utc_now
from repositories.client import RepositoryError, get_supabase
from repositories.lead_repository import SupabaseLeadRepository
from services.lead_import_service import UploadedFile, prepare_rows, read_upload


@dataclass
class ImportSummary:
    """Results from a file import."""
    total_rows: int = 0
    successful: int = 0
    failed: int = 0
    skipped: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)


def process_batch(
    repository: SupabaseLeadRepository,
    batch: list[Lead],
    dry_run: bool = False,
) -> tuple[int, list[dict[str, Any]]]:
    """
    Insert a batch of leads.

    Strategy:
    1. Try bulk insert first (fast)
    2. On error, fall back to one-by-one inserts (error isolation)
    """
    if not batch:
        return 0, []

    if dry_run:
        return len(batch), []

    try:
        return repository.insert_many(batch), []
    except RepositoryError as bulk_error:
        print(f"  Bulk insert failed: {bulk_error}")
        print("  Falling back to individual inserts for error isolation...")

    success_count = 0
    errors = []
    for lead in batch:
        try:
            repository.insert(lead)
            success_count += 1
        except RepositoryError as e:
            errors.append({"lead_id": str(lead.id), "name": lead.name, "error": str(e)})
    return success_count, errors


def import_file(
    path: str,
    user_id: str,
    repository: SupabaseLeadRepository | None = None,
    batch_size: int = 250,
    dry_run: bool = False,
) -> ImportSummary:
    """
    Import leads from a CSV/XLSX file for `user_id`.

    Raises:
        FileNotFoundError: If the file doesn't exist
        AppError: If the file is empty, too large or unreadable
    """
    file_path = Path(path)
    if not file_path.exists():
        raise FileNotFoundError(f"File not found: {path}")

    print(f"Reading file: {path}")
    print(f"Owner: {user_id}")
    print(f"Batch size: {batch_size}")
    print(f"Dry run: {dry_run}")
    print()

    rows = read_upload(UploadedFile(filename=file_path.name, content=file_path.read_bytes()))
    prepared = prepare_rows(rows, user_id, utc_now())

    summary = ImportSummary(total_rows=len(rows), skipped=len(prepared.errors))
    summary.errors.extend(error.to_dict() for error in prepared.errors)

    if repository is None and not dry_run:
        repository = SupabaseLeadRepository(get_supabase())

    for start in range(0, len(prepared.leads), batch_size):
        batch = prepared.leads[start:start + batch_size]
        success_count, batch_errors = process_batch(repository, batch, dry_run)
        summary.successful += success_count
        summary.failed += len(batch_errors)
        summary.errors.extend(batch_errors)
        print(f"Processed {start + len(batch)} valid rows "
              f"({summary.successful} successful, {summary.failed} failed)")

    return summary


def print_summary(summary: ImportSummary) -> None:
    """Print import summary statistics."""
    print()
    print("=" * 60)
    print("IMPORT SUMMARY")
    print("=" * 60)
    print(f"Total Rows:       {summary.total_rows}")
    print(f"Successful:       {summary.successful}")
    print(f"Failed:           {summary.failed}")
    print(f"Skipped:          {summary.skipped}")
    print()

    if summary.errors:
        print(f"Errors:           {len(summary.errors)}")
        print()
        print("First 5 errors:")
        for error in summary.errors[:5]:
            detail = "; ".join(error["errors"]) if "errors" in error else error.get("error")
            print(f"  - Row {error.get('row', 'N/A')}: {detail}")
        if len(summary.errors) > 5:
            print(f"  ... and {len(summary.errors) - 5} more")
    else:
        print("No errors!")

    print("=" * 60)


def save_error_log(errors: list[dict[str, Any]], output_path: str) -> None:
    """Save error details to JSON file."""
    if not errors:
        return

    with open(output_path, "w", encoding="utf-8") as f:
        json.dump(errors, f, indent=2, default=str)

    print(f"\nError log saved to: {output_path}")


def main() -> int:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        description="Import leads from CSV/XLSX into Supabase database",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Basic import
  python import_leads.py leads.csv --user-id 0b6f7a52-5d8e-4a43-9a55-3c4e2f1d9b10

  # Dry run (validate only, don't insert)
  python import_leads.py leads.xlsx --user-id <uuid> --dry-run

  # Save error log to custom path
  python import_leads.py leads.csv --user-id <uuid> --error-log errors.json
        """
    )

    parser.add_argument("path", help="Path to the CSV or XLSX file to import")
    parser.add_argument("--user-id", required=True, help="Owner of the imported leads")
    parser.add_argument(
        "--batch-size",
        type=int,
        default=250,
        help="Number of leads per insert (default: 250)"
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Parse and validate without inserting to database"
    )
    parser.add_argument(
        "--error-log",
        default="import_errors.json",
        help="Path to save error log (default: import_errors.json)"
    )

    args = parser.parse_args()

    try:
        print("Starting lead import...")
        print()

        summary = import_file(
            path=args.path,
            user_id=args.user_id,
            batch_size=args.batch_size,
            dry_run=args.dry_run,
        )

        print_summary(summary)

        if summary.errors:
            save_error_log(summary.errors, args.error_log)

        # Exit code based on results
        if summary.failed > 0 or summary.skipped > 0:
            return 1  # Partial success
        return 0

    except KeyboardInterrupt:
        print("\n\nImport interrupted by user")
        return 130

    except AppError as e:
        print(f"\nERROR: {e.message} {e.details or ''}", file=sys.stderr)
        return 1

    except Exception as e:
        print(f"\nFATAL ERROR: {e}", file=sys.stderr)
        import traceback
        traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())

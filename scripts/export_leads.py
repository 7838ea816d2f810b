#!/usr/bin/env python3
"""
Lead Export Script

Exports one user's leads from the Supabase database to CSV or XLSX, in the
same format as `GET /api/leads/export` (CSV injection prevention included).

Usage:
    python export_leads.py --user-id <uuid>
    python export_leads.py --user-id <uuid> --format xlsx --output leads.xlsx
    python export_leads.py --user-id <uuid> --status qualified,won
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import List, Optional

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from domain.lead import Lead, LeadStatus
from domain.time import utc_now
from repositories.client import get_supabase
from repositories.lead_repository import SupabaseLeadRepository
from services.lead_export_service import FORMATS, render


def filter_by_status(leads: List[Lead], statuses: Optional[str]) -> List[Lead]:
    if not statuses:
        return leads
    wanted = {LeadStatus(s.strip()) for s in statuses.split(",") if s.strip()}
    return [lead for lead in leads if lead.status in wanted]


def export_leads(leads: List[Lead], export_format: str, output_path: Optional[str]) -> str:
    """
    Write leads to disk and return the path written.

    Raises:
        ValueError: If leads list is empty
    """
    if not leads:
        raise ValueError("No leads to export")

    export = render(leads, export_format, utc_now())
    path = output_path or export.filename

    print(f"Exporting {len(leads)} leads to {path}")
    Path(path).write_bytes(export.content)
    print(f"✓ Successfully exported {len(leads)} leads")
    return path


def main() -> int:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        description="Export a user's leads from Supabase database to CSV/XLSX",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Export all leads as CSV (leads-export-YYYY-MM-DD.csv)
  python export_leads.py --user-id <uuid>

  # Export as a spreadsheet
  python export_leads.py --user-id <uuid> --format xlsx --output leads.xlsx

  # Export only closed deals
  python export_leads.py --user-id <uuid> --status won
        """
    )

    parser.add_argument("--user-id", required=True, help="Owner whose leads are exported")
    parser.add_argument(
        "--format",
        "-f",
        choices=list(FORMATS),
        default="csv",
        help="Output format (default: csv)"
    )
    parser.add_argument(
        "--output",
        "-o",
        help="Path to output file (default: leads-export-YYYY-MM-DD.<format>)"
    )
    parser.add_argument(
        "--status",
        "-s",
        help="Comma-separated statuses to include (e.g. qualified,won)"
    )

    args = parser.parse_args()

    try:
        print("Fetching leads from database...")
        print(f"  Owner: {args.user_id}")
        print(f"  Status filter: {args.status or 'None (all)'}")
        print()

        repository = SupabaseLeadRepository(get_supabase())
        leads = filter_by_status(repository.list_all(args.user_id), args.status)

        if not leads:
            print("No leads found matching the specified filters")
            return 1

        path = export_leads(leads, args.format, args.output)

        print()
        print("=" * 60)
        print("EXPORT SUMMARY")
        print("=" * 60)
        print(f"Total leads exported: {len(leads)}")
        for status in LeadStatus:
            count = sum(1 for lead in leads if lead.status is status)
            if count:
                print(f"  {status.value:<10} {count}")
        print()
        print(f"Output file: {path}")
        print("=" * 60)

        return 0

    except KeyboardInterrupt:
        print("\n\nExport interrupted by user")
        return 130

    except Exception as e:
        print(f"\nERROR: {e}", file=sys.stderr)
        import traceback
        traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())

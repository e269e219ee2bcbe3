#!/usr/bin/env python3
"""
Command-line maintenance for the staging database: integrity check,
orphaned overlay blob collection and expired confirmation token purge.
"""

import argparse
import json
import sys
from pathlib import Path

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from shadowstage.core.maintenance import (
    MaintenanceError,
    MaintenanceReport,
    check_database_integrity,
    collect_orphaned_blobs,
    perform_full_maintenance,
    purge_expired_tokens,
)
from shadowstage.core.workspace import get_workspace


def format_report(report: MaintenanceReport) -> str:
    """Format a maintenance report for display."""
    lines = [f"Routine: {report.routine}"]
    if report.finished_at:
        lines.append(f"Duration: {(report.finished_at - report.started_at).total_seconds():.2f} seconds")

    if report.errors:
        lines.append(f"Status: FAILED ({len(report.errors)} errors)")
    elif report.unresolved:
        lines.append(f"Status: ISSUES FOUND ({report.unresolved} unresolved of {report.found})")
    else:
        lines.append("Status: SUCCESS")

    if report.resolved:
        lines.append(f"Resolved: {report.resolved}")

    if report.details:
        lines.append("Details:")
        for key, value in report.details.items():
            lines.append(f"  {key}: {value}")

    for title, items in (("Errors", report.errors), ("Recommendations", report.recommendations)):
        if items:
            lines.append(f"{title}:")
            lines.extend(f"  - {item}" for item in items)

    if report.actions and len(report.actions) <= 5:
        lines.append("Actions:")
        lines.extend(f"  - {action}" for action in report.actions)

    return "\n".join(lines)


def main():
    parser = argparse.ArgumentParser(
        description="Staging database maintenance utilities",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s --check-integrity          # Check database integrity
  %(prog)s --collect-orphans --dry-run
  %(prog)s --purge-tokens             # Delete expired confirmation tokens
  %(prog)s --full-maintenance --json

Environment variables:
- DB_PATH=./data/shadowstage.db (database location)
- SHADOW_BACKEND=sqlite (overlay backend)
        """
    )
    parser.add_argument("--check-integrity", "-i", action="store_true",
                        help="Run PRAGMA integrity_check and verify required tables")
    parser.add_argument("--collect-orphans", "-c", action="store_true",
                        help="Delete overlay blobs that have no index entry")
    parser.add_argument("--purge-tokens", "-t", action="store_true",
                        help="Delete expired confirmation token rows")
    parser.add_argument("--full-maintenance", "-f", action="store_true",
                        help="Perform all maintenance operations in sequence")
    parser.add_argument("--dry-run", action="store_true",
                        help="Report what would be deleted without deleting")
    parser.add_argument("--json", "-j", action="store_true",
                        help="Output results as JSON instead of human-readable text")
    parser.add_argument("--quiet", "-q", action="store_true", help="Suppress non-error output")

    args = parser.parse_args()

    individual = [args.check_integrity, args.collect_orphans, args.purge_tokens]
    if not (any(individual) or args.full_maintenance):
        parser.error("Must specify at least one maintenance operation")
    if args.full_maintenance and any(individual):
        parser.error("--full-maintenance cannot be combined with individual operations")

    try:
        workspace = get_workspace()
        if args.full_maintenance:
            reports = list(perform_full_maintenance(workspace, dry_run=args.dry_run).values())
        else:
            reports = []
            if args.check_integrity:
                reports.append(check_database_integrity(workspace.db_path))
            if args.collect_orphans:
                reports.append(collect_orphaned_blobs(workspace.overlay, dry_run=args.dry_run))
            if args.purge_tokens:
                reports.append(purge_expired_tokens(workspace.tokens))

        if args.json:
            print(json.dumps({
                "maintenance_run": {
                    "routines": len(reports),
                    "found": sum(r.found for r in reports),
                    "resolved": sum(r.resolved for r in reports),
                    "errors": sum(len(r.errors) for r in reports)
                },
                "reports": [report.to_dict() for report in reports]
            }, indent=2, default=str))
        else:
            for report in reports:
                if not args.quiet or not report.ok:
                    print(format_report(report))
                    print("-" * 40)

        if not all(r.ok for r in reports):
            return 1
        if any(r.unresolved for r in reports):
            return 2
        return 0

    except MaintenanceError as e:
        print(f"ERROR: Maintenance operation failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())

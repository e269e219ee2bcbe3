"""
Maintenance routines for the two recoverable leftovers the staging design allows:
overlay blobs orphaned by an interrupted write or clear, and expired confirmation tokens.
Plus a database integrity check.
"""

import sqlite3
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from . import config
from .db import REQUIRED_TABLES
from .errors import ShadowStageError
from .overlay import OverlayStore, blob_key
from .tokens import ConfirmTokenAuthority
from ..util.logging import audit_event, logger


@dataclass
class MaintenanceReport:
    """Outcome of one maintenance routine."""
    routine: str
    started_at: datetime = field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None
    found: int = 0
    resolved: int = 0
    actions: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors

    @property
    def unresolved(self) -> int:
        return max(self.found - self.resolved, 0)

    def resolve(self, action: str) -> None:
        self.resolved += 1
        self.actions.append(action)

    def fail(self, error: str) -> 'MaintenanceReport':
        self.errors.append(error)
        return self.finish()

    def finish(self) -> 'MaintenanceReport':
        self.finished_at = datetime.now()
        return self

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "routine": self.routine,
            "startedAt": self.started_at.isoformat(),
            "found": self.found,
            "resolved": self.resolved,
            "actions": list(self.actions),
            "recommendations": list(self.recommendations),
            "errors": list(self.errors),
            "details": dict(self.details),
        }
        if self.finished_at:
            data["finishedAt"] = self.finished_at.isoformat()
            data["durationSec"] = round((self.finished_at - self.started_at).total_seconds(), 3)
        return data


class MaintenanceError(Exception):
    """Raised when a maintenance routine cannot run at all."""
    pass


def collect_orphaned_blobs(overlay: OverlayStore, dry_run: bool = False) -> MaintenanceReport:
    """Delete overlay blobs that have no index entry."""
    report = MaintenanceReport(routine="collect_orphaned_blobs")
    try:
        orphans = overlay.orphaned_blob_paths()
    except ShadowStageError as e:
        return report.fail(f"Could not list overlay blobs: {e.message}")

    report.found = len(orphans)
    report.details["orphanedPaths"] = orphans
    for path in orphans:
        if dry_run:
            report.actions.append(f"would delete blob for {path}")
            continue
        try:
            overlay.kv.delete(blob_key(path))
        except ShadowStageError as e:
            report.errors.append(f"Failed to delete blob for {path}: {e.message}")
            continue
        report.resolve(f"deleted blob for {path}")

    if dry_run and orphans:
        report.recommendations.append("Run again without --dry-run to delete orphaned blobs")

    audit_event("maintenance.orphaned_blobs", {"found": report.found, "resolved": report.resolved})
    return report.finish()


def purge_expired_tokens(tokens: ConfirmTokenAuthority, now_ms: int = None) -> MaintenanceReport:
    """Delete confirmation-token rows past their expiry."""
    report = MaintenanceReport(routine="purge_expired_tokens")
    try:
        removed = tokens.purge_expired(now_ms)
    except ShadowStageError as e:
        return report.fail(f"Token purge failed: {e.message}")

    report.found = report.resolved = removed
    if removed:
        report.actions.append(f"deleted {removed} expired token rows")
    audit_event("maintenance.expired_tokens", {"removed": removed})
    return report.finish()


def check_database_integrity(db_path: str = None) -> MaintenanceReport:
    """
    Check SQLite database integrity and the presence of required tables.

    Returns:
        MaintenanceReport: row counts per table in details, problems in errors
    """
    path = db_path or config.DB_PATH
    report = MaintenanceReport(routine="database_integrity_check")

    db_file = Path(path)
    if not db_file.exists():
        return report.fail(f"Database file not found: {path}")
    report.details["fileSize"] = db_file.stat().st_size

    try:
        conn = sqlite3.connect(path)
    except sqlite3.Error as e:
        raise MaintenanceError(f"Cannot open database {path}: {e}")

    try:
        cursor = conn.cursor()
        cursor.execute("PRAGMA integrity_check")
        integrity_result = cursor.fetchone()
        if integrity_result and integrity_result[0] == "ok":
            report.details["integrity"] = "passed"
        else:
            report.found += 1
            report.errors.append(f"Integrity check failed: {integrity_result}")
            report.recommendations.append("Restore the database from a known good copy")

        cursor.execute("SELECT name FROM sqlite_master WHERE type='table'")
        tables = {row[0] for row in cursor.fetchall()}
        missing = [t for t in REQUIRED_TABLES if t not in tables]
        if missing:
            report.found += len(missing)
            report.errors.append(f"Missing tables: {', '.join(missing)}")
            report.recommendations.append("Start the service once to create the schema")
        else:
            report.details["rows"] = {}
            for table in REQUIRED_TABLES:
                cursor.execute(f"SELECT COUNT(*) FROM {table}")
                report.details["rows"][table] = cursor.fetchone()[0]
            cursor.execute("SELECT COUNT(*) FROM confirm_tokens WHERE used_at IS NULL")
            report.details["unusedTokens"] = cursor.fetchone()[0]
    except sqlite3.Error as e:
        report.errors.append(f"Integrity check error: {e}")
    finally:
        conn.close()

    return report.finish()


def perform_full_maintenance(workspace, dry_run: bool = False) -> Dict[str, MaintenanceReport]:
    """Run every maintenance routine against a workspace."""
    logger.info(f"Starting full maintenance (dry_run={dry_run})")
    reports = {
        "integrity": check_database_integrity(workspace.db_path),
        "orphaned_blobs": collect_orphaned_blobs(workspace.overlay, dry_run=dry_run),
    }
    if dry_run:
        skipped = MaintenanceReport(routine="purge_expired_tokens", actions=["skipped (dry run)"])
        reports["expired_tokens"] = skipped.finish()
    else:
        reports["expired_tokens"] = purge_expired_tokens(workspace.tokens)

    failed = [name for name, report in reports.items() if not report.ok]
    if failed:
        logger.warning(f"Maintenance finished with errors in: {', '.join(failed)}")
    else:
        logger.info("Maintenance finished without errors")
    return reports

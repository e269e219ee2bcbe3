"""
Tests for maintenance operations: orphaned blob collection, expired token
purge and database integrity.
"""

import sqlite3
from datetime import datetime

import pytest

from shadowstage.core.maintenance import (
    MaintenanceReport,
    check_database_integrity,
    collect_orphaned_blobs,
    perform_full_maintenance,
    purge_expired_tokens,
)
from shadowstage.core.overlay import blob_key

NOW = 1_700_000_000_000


@pytest.fixture
def orphaned(overlay):
    overlay.write("kept.html", "x")
    overlay.kv.put(blob_key("stray.html"), '{"path": "stray.html", "content": "", "deleted": false}')
    return overlay


class TestMaintenanceReport:

    def test_report_defaults_and_dict(self):
        report = MaintenanceReport(routine="test_op", started_at=datetime(2024, 1, 1))
        assert report.ok
        assert report.actions == []
        data = report.to_dict()
        assert data["routine"] == "test_op"
        assert data["startedAt"] == "2024-01-01T00:00:00"
        assert "finishedAt" not in data

    def test_lists_are_not_shared_between_reports(self):
        first = MaintenanceReport(routine="a")
        second = MaintenanceReport(routine="b")
        first.resolve("fixed one")
        first.details["k"] = 1
        assert second.actions == []
        assert second.details == {}
        assert first.resolved == 1

    def test_fail_finishes_report(self):
        report = MaintenanceReport(routine="test_op", started_at=datetime(2024, 1, 1))
        assert report.fail("broken") is report
        assert not report.ok
        data = report.to_dict()
        assert data["errors"] == ["broken"]
        assert data["finishedAt"]
        assert data["durationSec"] >= 0


class TestOrphanedBlobs:

    def test_dry_run_reports_without_deleting(self, orphaned):
        report = collect_orphaned_blobs(orphaned, dry_run=True)
        assert report.found == 1
        assert report.resolved == 0
        assert report.details["orphanedPaths"] == ["stray.html"]
        assert report.recommendations
        assert orphaned.kv.get(blob_key("stray.html")) is not None

    def test_deletes_only_unindexed_blobs(self, orphaned):
        report = collect_orphaned_blobs(orphaned)
        assert report.ok
        assert report.resolved == 1
        assert orphaned.kv.get(blob_key("stray.html")) is None
        assert orphaned.read("kept.html").content == "x"
        assert collect_orphaned_blobs(orphaned).found == 0


class TestExpiredTokens:

    def test_purge(self, workspace):
        workspace.tokens.mint("execute", "old", now_ms=NOW)
        workspace.tokens.mint("execute", "fresh", now_ms=NOW + 3_600_000)
        report = purge_expired_tokens(workspace.tokens, now_ms=NOW + 700_000)
        assert report.resolved == 1
        assert report.actions == ["deleted 1 expired token rows"]


class TestDatabaseIntegrity:

    def test_healthy_database(self, workspace):
        workspace.stage_write("a.html", "x")
        workspace.tokens.mint("execute", "k1")
        report = check_database_integrity(workspace.db_path)
        assert report.ok
        assert report.details["integrity"] == "passed"
        assert report.details["rows"]["confirm_tokens"] == 1
        assert report.details["unusedTokens"] == 1

    def test_missing_file(self, tmp_path):
        report = check_database_integrity(str(tmp_path / "absent.db"))
        assert not report.ok
        assert "not found" in report.errors[0]

    def test_missing_tables(self, tmp_path):
        path = str(tmp_path / "bare.db")
        conn = sqlite3.connect(path)
        conn.execute("CREATE TABLE kv (key TEXT PRIMARY KEY, value TEXT)")
        conn.commit()
        conn.close()

        report = check_database_integrity(path)
        assert not report.ok
        assert report.found == 3
        assert "confirm_tokens" in report.errors[0]


class TestFullMaintenance:

    def test_dry_run_skips_token_purge(self, workspace):
        workspace.overlay.kv.put(blob_key("stray.html"), "{}")
        reports = perform_full_maintenance(workspace, dry_run=True)
        assert set(reports) == {"integrity", "orphaned_blobs", "expired_tokens"}
        assert reports["orphaned_blobs"].found == 1
        assert reports["expired_tokens"].actions == ["skipped (dry run)"]
        assert workspace.overlay.kv.get(blob_key("stray.html")) is not None

    def test_full_run(self, workspace):
        workspace.overlay.kv.put(blob_key("stray.html"), "{}")
        reports = perform_full_maintenance(workspace)
        assert all(report.ok for report in reports.values())
        assert workspace.overlay.kv.get(blob_key("stray.html")) is None

# tests/unit/queue/test_service.py — v1
"""Tests for queue/service.py — export, import and retry of AI scans."""

from __future__ import annotations

import json

import pytest

from aiscan.core.models import ImportRow
from aiscan.queue.collaborators import AiStatus, ScanRecord
from aiscan.queue.service import (
    NOTIFICATION_TYPE,
    QueueServiceError,
    export_pending_scans,
    import_results,
    parse_import_csv,
    retry_failed_scan,
)
from aiscan.storage.csv_writer import write_csv
from tests.fakes import InMemoryScanRepository, RecordingDeductor, RecordingNotifier, read_csv


def _scan(scan_id: str, status: AiStatus, **extra) -> ScanRecord:
    return ScanRecord(scan_id=scan_id, url=f"https://example.com/{scan_id}",
                      ai_status=status, email=f"{scan_id}@example.com", **extra)


def _row(scan_id: str, tokens: int = 2000, issues_json: str = "[]") -> ImportRow:
    return ImportRow(scan_id=scan_id, ai_summary="s", ai_remediation_plan="p",
                     ai_issues_json=issues_json, tokens_used=tokens, ai_model="m",
                     processing_time=10)


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------

class TestExport:
    @pytest.mark.asyncio
    async def test_exports_and_marks_downloaded(self, tmp_path):
        repo = InMemoryScanRepository([
            _scan("a", AiStatus.PENDING, issues=[{"id": "i1"}]),
            _scan("b", AiStatus.COMPLETED),
            _scan("c", AiStatus.PENDING, ai_enabled=False),
        ])
        result = await export_pending_scans(repo, tmp_path / "pending.csv")

        assert result.scan_ids == ["a"]
        rows = read_csv(tmp_path / "pending.csv")
        assert rows[0]["scan_id"] == "a"
        assert json.loads(rows[0]["issues_json"]) == [{"id": "i1"}]
        assert repo.scans["a"].ai_status == AiStatus.DOWNLOADED

    @pytest.mark.asyncio
    async def test_nothing_pending(self, tmp_path):
        with pytest.raises(QueueServiceError) as exc_info:
            await export_pending_scans(InMemoryScanRepository(), tmp_path / "p.csv")
        assert exc_info.value.code == "NO_PENDING_SCANS"

    @pytest.mark.asyncio
    async def test_write_failure_leaves_status(self, tmp_path):
        repo = InMemoryScanRepository([_scan("a", AiStatus.PENDING)])
        blocker = tmp_path / "blocker"
        blocker.write_text("file, not a directory")
        with pytest.raises(QueueServiceError) as exc_info:
            await export_pending_scans(repo, blocker / "p.csv")
        assert exc_info.value.code == "EXPORT_FAILED"
        assert repo.scans["a"].ai_status == AiStatus.PENDING


# ---------------------------------------------------------------------------
# Import CSV parsing
# ---------------------------------------------------------------------------

class TestParseImportCsv:
    def test_round_trip_with_writer(self, tmp_path):
        path = tmp_path / "results.csv"
        write_csv(path, [_row("a"), _row("b", tokens=50)])
        rows = parse_import_csv(path)
        assert [r.scan_id for r in rows] == ["a", "b"]
        assert rows[1].tokens_used == 50

    def test_missing_file(self, tmp_path):
        with pytest.raises(QueueServiceError) as exc_info:
            parse_import_csv(tmp_path / "missing.csv")
        assert exc_info.value.code == "PARSE_FAILED"

    def test_header_only(self, tmp_path):
        path = tmp_path / "results.csv"
        write_csv(path, [])
        with pytest.raises(QueueServiceError) as exc_info:
            parse_import_csv(path)
        assert exc_info.value.code == "EMPTY_CSV"

    def test_invalid_row(self, tmp_path):
        path = tmp_path / "results.csv"
        write_csv(path, [_row("a")])
        text = path.read_text().replace('"2000"', '"-3"')
        path.write_text(text)
        with pytest.raises(QueueServiceError) as exc_info:
            parse_import_csv(path)
        assert exc_info.value.code == "VALIDATION_FAILED"
        assert "Row 2" in str(exc_info.value)


# ---------------------------------------------------------------------------
# Import
# ---------------------------------------------------------------------------

class TestImportResults:
    @pytest.mark.asyncio
    async def test_stores_deducts_once_and_notifies(self):
        repo = InMemoryScanRepository([_scan("a", AiStatus.DOWNLOADED), _scan("b", AiStatus.DOWNLOADED)])
        deductor, notifier = RecordingDeductor(), RecordingNotifier()
        issues = json.dumps([{"issueId": "i1", "aiPriority": 8}])

        result = await import_results([_row("a", 100, issues), _row("b", 200)], repo, deductor, notifier)

        assert result.success is True
        assert result.processed == 2
        assert result.tokens_deducted == 300
        assert deductor.calls == [("a", 300)]
        assert notifier.calls == [
            ("a", "a@example.com", NOTIFICATION_TYPE),
            ("b", "b@example.com", NOTIFICATION_TYPE),
        ]
        assert repo.stored["a"][1] == [{"issueId": "i1", "aiPriority": 8}]
        assert repo.scans["a"].ai_status == AiStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_ineligible_rows_skipped(self):
        repo = InMemoryScanRepository([
            _scan("pending", AiStatus.PENDING),
            _scan("off", AiStatus.DOWNLOADED, ai_enabled=False),
            _scan("ok", AiStatus.DOWNLOADED),
        ])
        deductor = RecordingDeductor()
        rows = [_row("missing"), _row("pending"), _row("off"), _row("ok", 70)]

        result = await import_results(rows, repo, deductor, RecordingNotifier())

        assert result.success is False
        assert result.processed == 1
        assert result.failed == 3
        assert [e.scan_id for e in result.errors] == ["missing", "pending", "off"]
        assert "expected: DOWNLOADED" in result.errors[1].error
        assert deductor.calls == [("ok", 70)]

    @pytest.mark.asyncio
    async def test_store_failure_is_per_row(self):
        repo = InMemoryScanRepository([_scan("a", AiStatus.DOWNLOADED), _scan("b", AiStatus.DOWNLOADED)])
        repo.fail_store_for = {"a"}
        deductor = RecordingDeductor()
        result = await import_results([_row("a"), _row("b", 5)], repo, deductor, RecordingNotifier())
        assert result.processed == 1
        assert result.errors[0].error == "database unavailable"
        assert deductor.calls == [("b", 5)]

    @pytest.mark.asyncio
    async def test_deduction_failure_does_not_undo_import(self):
        repo = InMemoryScanRepository([_scan("a", AiStatus.DOWNLOADED)])
        result = await import_results([_row("a")], repo, RecordingDeductor(fail=True), RecordingNotifier())
        assert result.processed == 1
        assert result.tokens_deducted == 0
        assert "a" in repo.stored

    @pytest.mark.asyncio
    async def test_notification_failure_logged_only(self):
        repo = InMemoryScanRepository([_scan("a", AiStatus.DOWNLOADED)])
        result = await import_results([_row("a")], repo, RecordingDeductor(), RecordingNotifier(fail=True))
        assert result.success is True

    @pytest.mark.asyncio
    async def test_nothing_stored_nothing_deducted(self):
        deductor = RecordingDeductor()
        await import_results([_row("ghost")], InMemoryScanRepository(), deductor, RecordingNotifier())
        assert deductor.calls == []


# ---------------------------------------------------------------------------
# Retry
# ---------------------------------------------------------------------------

class TestRetryFailedScan:
    @pytest.mark.asyncio
    async def test_failed_scan_reset(self):
        repo = InMemoryScanRepository([_scan("a", AiStatus.FAILED)])
        result = await retry_failed_scan(repo, "a")
        assert result.success is True
        assert result.ai_status == "PENDING"
        assert repo.scans["a"].ai_status == AiStatus.PENDING

    @pytest.mark.asyncio
    async def test_not_failed(self):
        repo = InMemoryScanRepository([_scan("a", AiStatus.COMPLETED)])
        result = await retry_failed_scan(repo, "a")
        assert result.success is False
        assert "COMPLETED" in result.message

    @pytest.mark.asyncio
    async def test_ai_disabled(self):
        repo = InMemoryScanRepository([_scan("a", AiStatus.FAILED, ai_enabled=False)])
        assert (await retry_failed_scan(repo, "a")).success is False

    @pytest.mark.asyncio
    @pytest.mark.parametrize("scan_id,code", [("", "INVALID_INPUT"), ("nope", "SCAN_NOT_FOUND")])
    async def test_errors(self, scan_id, code):
        with pytest.raises(QueueServiceError) as exc_info:
            await retry_failed_scan(InMemoryScanRepository(), scan_id)
        assert exc_info.value.code == code

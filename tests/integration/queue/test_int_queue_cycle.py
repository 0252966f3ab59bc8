# tests/integration/queue/test_int_queue_cycle.py — v1
"""Integration test for the full AI queue cycle.

export_pending_scans → ai-scan CLI (scripted worker) → parse_import_csv →
import_results, with in-memory collaborators.
"""

from __future__ import annotations

import asyncio
from unittest.mock import patch

import pytest

from aiscan.core.models import ExitCode
from aiscan.main import main
from aiscan.queue.collaborators import AiStatus, ScanRecord
from aiscan.queue.service import (
    NOTIFICATION_TYPE,
    export_pending_scans,
    import_results,
    parse_import_csv,
    retry_failed_scan,
)
from tests.fakes import (
    FakeInvoker,
    InMemoryScanRepository,
    RecordingDeductor,
    RecordingNotifier,
    scan_ids_in,
    worker_output,
)


def _record(scan_id: str, **overrides) -> ScanRecord:
    data = {
        "scan_id": scan_id,
        "url": f"https://shop.example.com/{scan_id}",
        "email": f"{scan_id}@example.com",
        "ai_status": AiStatus.PENDING,
        "page_title": f"Page {scan_id}",
        "issues": [{"id": f"{scan_id}-i1", "ruleId": "color-contrast", "impact": "SERIOUS"}],
    }
    data.update(overrides)
    return ScanRecord(**data)


@pytest.fixture
def repository() -> InMemoryScanRepository:
    return InMemoryScanRepository([
        _record("s1"),
        _record("s2", wcag_level="AAA"),
        _record("s3", email=None),
        _record("s4", ai_enabled=False),
        _record("s5", ai_status=AiStatus.COMPLETED),
    ])


# =====================================================================
#  FULL CYCLE
# =====================================================================

class TestQueueCycle:

    def test_export_process_import(self, tmp_path, repository):
        pending = tmp_path / "pending.csv"
        results = tmp_path / "results.csv"

        exported = asyncio.run(export_pending_scans(repository, pending))
        assert exported.scan_ids == ["s1", "s2", "s3"]
        assert repository.scans["s1"].ai_status == AiStatus.DOWNLOADED

        def responder(prompt, call):
            return worker_output(scan_ids_in(prompt), tokensUsed=1500)

        with patch("aiscan.main.ClaudeCodeInvoker", return_value=FakeInvoker(responder)):
            code = main(["-i", str(pending), "-o", str(results), "--delay", "0", "-q"])
        assert code == ExitCode.SUCCESS

        rows = parse_import_csv(results)
        assert [r.scan_id for r in rows] == ["s1", "s2", "s3"]
        assert all(r.tokens_used == 1500 for r in rows)

        deductor, notifier = RecordingDeductor(), RecordingNotifier()
        imported = asyncio.run(import_results(rows, repository, deductor, notifier))

        assert imported.success is True
        assert imported.processed == 3
        assert imported.tokens_deducted == 4500
        assert deductor.calls == [("s1", 4500)]
        assert notifier.calls == [
            ("s1", "s1@example.com", NOTIFICATION_TYPE),
            ("s2", "s2@example.com", NOTIFICATION_TYPE),
        ]
        assert {s: repository.scans[s].ai_status for s in ("s1", "s2", "s3")} == {
            "s1": AiStatus.COMPLETED, "s2": AiStatus.COMPLETED, "s3": AiStatus.COMPLETED,
        }
        assert repository.scans["s4"].ai_status == AiStatus.PENDING

    def test_reimport_is_rejected(self, tmp_path, repository):
        pending = tmp_path / "pending.csv"
        results = tmp_path / "results.csv"
        asyncio.run(export_pending_scans(repository, pending))
        with patch("aiscan.main.ClaudeCodeInvoker", return_value=FakeInvoker()):
            main(["-i", str(pending), "-o", str(results), "--delay", "0", "-q"])
        rows = parse_import_csv(results)
        asyncio.run(import_results(rows, repository, RecordingDeductor(), RecordingNotifier()))

        deductor = RecordingDeductor()
        again = asyncio.run(import_results(rows, repository, deductor, RecordingNotifier()))

        assert again.success is False
        assert again.failed == 3
        assert deductor.calls == []

    def test_failed_scan_reexported_after_retry(self, tmp_path):
        repository = InMemoryScanRepository([_record("s9", ai_status=AiStatus.FAILED)])

        result = asyncio.run(retry_failed_scan(repository, "s9"))
        exported = asyncio.run(export_pending_scans(repository, tmp_path / "pending.csv"))

        assert result.success is True
        assert exported.scan_ids == ["s9"]

# src/batch/summary.py — v1
"""Run summary: status classification, JSON rendering, exit codes."""

from __future__ import annotations

import json
import sys
from typing import IO

from aiscan.batch.models import ProcessingSummary, SummaryStats, SummaryStatus
from aiscan.core.models import ExitCode


def classify_status(successful: int, failed: int, total: int, has_errors: bool) -> SummaryStatus:
    """completed iff nothing failed; partial when some succeeded."""
    if failed == 0:
        if total == 0 and has_errors:
            return "complete_failure"
        return "completed"
    if successful > 0:
        return "partial_failure"
    return "complete_failure"


def generate_summary(stats: SummaryStats) -> ProcessingSummary:
    """Build the final summary from accumulated counters."""
    return ProcessingSummary(
        status=classify_status(
            stats.successful, stats.failed, stats.total, bool(stats.errors)
        ),
        files_processed=stats.files_processed,
        total=stats.total,
        successful=stats.successful,
        failed=stats.failed,
        skipped=stats.skipped,
        duration_seconds=round(stats.duration_seconds, 2),
        output_files=list(stats.output_files),
        failed_files=list(stats.failed_files),
        errors=list(stats.errors),
    )


def summary_to_json(summary: ProcessingSummary) -> str:
    return json.dumps(summary.model_dump(mode="json"), indent=2)


def print_json_summary(summary: ProcessingSummary, stream: IO[str] | None = None) -> None:
    """Print the summary JSON on stdout (or stream)."""
    out = stream or sys.stdout
    out.write(summary_to_json(summary) + "\n")
    out.flush()


_STATUS_EXIT_CODES: dict[str, ExitCode] = {
    "completed": ExitCode.SUCCESS,
    "partial_failure": ExitCode.PARTIAL_FAILURE,
    "complete_failure": ExitCode.COMPLETE_FAILURE,
}


def exit_code_for(summary: ProcessingSummary) -> ExitCode:
    return _STATUS_EXIT_CODES[summary.status]

# src/queue/service.py — v1
"""AI queue cycle: export pending scans, import AI results, retry failures.

    export_pending_scans   PENDING scans -> input CSV, marked DOWNLOADED
    parse_import_csv       output CSV -> validated ImportRow list
    import_results         store results, charge tokens once, notify
    retry_failed_scan      FAILED -> PENDING
"""

from __future__ import annotations

import csv
import json
import logging
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from aiscan.core.models import ImportRow
from aiscan.llm.token_budget import TokenLedger
from aiscan.queue.collaborators import (
    AiStatus,
    NotificationQueue,
    ScanRepository,
    TokenDeductor,
)
from aiscan.storage.csv_writer import write_pending_csv

logger = logging.getLogger(__name__)

NOTIFICATION_TYPE = "ai_scan_complete"


class QueueServiceError(Exception):
    """Queue operation failed. `code` is a stable machine-readable reason."""

    def __init__(self, message: str, code: str) -> None:
        self.code = code
        super().__init__(message)


class ExportResult(BaseModel):
    path: str
    count: int
    scan_ids: list[str]


class RowError(BaseModel):
    scan_id: str
    error: str


class ImportResult(BaseModel):
    success: bool = True
    processed: int = 0
    failed: int = 0
    errors: list[RowError] = Field(default_factory=list)
    tokens_deducted: int = 0


class RetryResult(BaseModel):
    success: bool
    ai_status: str
    message: str


# === EXPORT ===


async def export_pending_scans(repository: ScanRepository, path: Path) -> ExportResult:
    """Write all pending scans to an input CSV and mark them DOWNLOADED.

    Raises:
        QueueServiceError: NO_PENDING_SCANS when there is nothing to export,
            EXPORT_FAILED when the file cannot be written.
    """
    scans = await repository.list_pending_scans()
    if not scans:
        raise QueueServiceError("No pending AI scans available for export", "NO_PENDING_SCANS")

    rows = [
        {
            "scan_id": scan.scan_id,
            "url": scan.url,
            "email": scan.email,
            "wcag_level": scan.wcag_level,
            "issues_json": json.dumps(scan.issues),
            "created_at": scan.created_at,
            "page_title": scan.page_title,
        }
        for scan in scans
    ]
    try:
        write_pending_csv(Path(path), rows)
    except OSError as e:
        raise QueueServiceError(f"Failed to export pending AI scans: {e}", "EXPORT_FAILED") from e

    scan_ids = [scan.scan_id for scan in scans]
    await repository.mark_downloaded(scan_ids)
    logger.info("Exported %d pending scans to %s", len(scan_ids), path)
    return ExportResult(path=str(path), count=len(scan_ids), scan_ids=scan_ids)


# === IMPORT ===


def parse_import_csv(path: Path) -> list[ImportRow]:
    """Read and validate an output CSV. All rows must be valid.

    Raises:
        QueueServiceError: PARSE_FAILED, EMPTY_CSV or VALIDATION_FAILED.
    """
    try:
        with open(path, encoding="utf-8-sig", newline="") as f:
            records = [
                record for record in csv.DictReader(f)
                if any(isinstance(v, str) and v.strip() for v in record.values())
            ]
    except (OSError, csv.Error, UnicodeDecodeError) as e:
        raise QueueServiceError(f"Failed to parse CSV file: {e}", "PARSE_FAILED") from e

    if not records:
        raise QueueServiceError("CSV file is empty or contains no data rows", "EMPTY_CSV")

    rows: list[ImportRow] = []
    problems: list[str] = []
    for index, record in enumerate(records, start=2):
        data = {k: v.strip() for k, v in record.items() if isinstance(k, str) and isinstance(v, str)}
        try:
            rows.append(ImportRow.model_validate(data))
        except ValidationError as e:
            details = ", ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
            )
            problems.append(f"Row {index}: {details}")

    if problems:
        raise QueueServiceError("CSV validation failed:\n" + "\n".join(problems), "VALIDATION_FAILED")

    logger.info("Parsed and validated %d import rows", len(rows))
    return rows


async def _check_eligibility(repository: ScanRepository, scan_id: str) -> str | None:
    """Return a reason the scan cannot take results, or None."""
    scan = await repository.get_scan(scan_id)
    if scan is None:
        return f"Scan not found: {scan_id}"
    if not scan.ai_enabled:
        return f"Scan {scan_id} does not have AI enabled (ai_enabled=false)"
    if scan.ai_status != AiStatus.DOWNLOADED:
        status = scan.ai_status.value if scan.ai_status else "null"
        return f"Scan {scan_id} has invalid ai_status: {status} (expected: DOWNLOADED)"
    return None


def _enhancements(row: ImportRow) -> list[dict[str, Any]]:
    if not row.ai_issues_json:
        return []
    parsed = json.loads(row.ai_issues_json)
    if not isinstance(parsed, list):
        raise ValueError("ai_issues_json must be a JSON array")
    return parsed


async def import_results(
    rows: list[ImportRow],
    repository: ScanRepository,
    deductor: TokenDeductor,
    notifier: NotificationQueue,
) -> ImportResult:
    """Store AI results row by row.

    Ineligible or failing rows are recorded in the result and skipped.
    Tokens of the stored rows are deducted once, attributed to the first
    stored scan. Deduction and notification failures are logged only.
    """
    result = ImportResult()
    ledger = TokenLedger()

    for row in rows:
        reason = await _check_eligibility(repository, row.scan_id)
        if reason is not None:
            logger.warning("Skipping scan %s: %s", row.scan_id, reason)
            result.failed += 1
            result.errors.append(RowError(scan_id=row.scan_id, error=reason))
            continue

        try:
            await repository.store_ai_results(row, _enhancements(row))
        except Exception as e:
            logger.error("Failed to import AI results for scan %s: %s", row.scan_id, e)
            result.failed += 1
            result.errors.append(RowError(scan_id=row.scan_id, error=str(e)))
            continue

        result.processed += 1
        ledger.record(row.scan_id, row.tokens_used)
        logger.info("Imported AI results for scan %s (%d tokens)", row.scan_id, row.tokens_used)

        await _notify(repository, notifier, row.scan_id)

    anchor = ledger.first_scan_id
    if anchor is not None and ledger.total > 0:
        try:
            await deductor.deduct_tokens(anchor, ledger.total)
            result.tokens_deducted = ledger.total
            logger.info("Deducted %d tokens from campaign budget", ledger.total)
        except Exception as e:
            logger.error("Failed to deduct tokens from campaign: %s", e)

    result.success = result.failed == 0
    logger.info(
        "Import completed - processed: %d, failed: %d, tokens: %d",
        result.processed, result.failed, result.tokens_deducted,
    )
    return result


async def _notify(repository: ScanRepository, notifier: NotificationQueue, scan_id: str) -> None:
    try:
        scan = await repository.get_scan(scan_id)
        if scan is None or not scan.email:
            return
        await notifier.enqueue_notification(scan_id, scan.email, NOTIFICATION_TYPE)
        logger.info("Queued %s notification for scan %s", NOTIFICATION_TYPE, scan_id)
    except Exception as e:
        logger.warning("Failed to queue notification for scan %s: %s", scan_id, e)


# === RETRY ===


async def retry_failed_scan(repository: ScanRepository, scan_id: str) -> RetryResult:
    """Reset a FAILED scan to PENDING so the next export picks it up.

    Raises:
        QueueServiceError: INVALID_INPUT or SCAN_NOT_FOUND.
    """
    if not scan_id:
        raise QueueServiceError("Scan ID is required", "INVALID_INPUT")

    scan = await repository.get_scan(scan_id)
    if scan is None:
        raise QueueServiceError(f"Scan not found: {scan_id}", "SCAN_NOT_FOUND")

    status = scan.ai_status.value if scan.ai_status else "null"
    if not scan.ai_enabled:
        return RetryResult(
            success=False, ai_status=status,
            message="Scan does not have AI enabled (ai_enabled=false)",
        )
    if scan.ai_status != AiStatus.FAILED:
        return RetryResult(
            success=False, ai_status=status,
            message=f"Scan is not in FAILED status (current: {status}). "
                    "Only FAILED scans can be retried.",
        )

    await repository.reset_to_pending(scan_id)
    logger.info("Reset scan %s (%s) from FAILED to PENDING", scan_id, scan.url)
    return RetryResult(
        success=True, ai_status=AiStatus.PENDING.value,
        message=f"Scan {scan_id} has been reset to PENDING and is ready for re-export",
    )

# src/storage/csv_reader.py — v1
"""Input CSV parser: pending scans -> WorkItem list.

Expected columns: scan_id, url, email, wcag_level, issues_json,
created_at, page_title. Invalid rows are reported in ParseResult.skipped
rather than raised; only an unreadable file is fatal.
"""

from __future__ import annotations

import csv
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path

from pydantic import ValidationError

from aiscan.core.models import ExistingIssue, WorkItem

logger = logging.getLogger(__name__)

VALID_WCAG_LEVELS = ("A", "AA", "AAA")


class CsvParseError(Exception):
    """Raised when the input file cannot be read or is not valid CSV."""


@dataclass
class SkippedRow:
    """A data row rejected by validation. `row` is the 1-based file line (header = 1)."""

    row: int
    reason: str


@dataclass
class ParseResult:
    scans: list[WorkItem] = field(default_factory=list)
    skipped: list[SkippedRow] = field(default_factory=list)
    total_rows: int = 0


def _is_valid_url(url: str) -> bool:
    return url.startswith("http://") or url.startswith("https://")


def _clean(record: dict[str | None, str | list[str] | None], key: str) -> str:
    value = record.get(key)
    if not isinstance(value, str):
        return ""
    return value.strip()


def _parse_existing_issues(raw: str, scan_id: str) -> tuple[ExistingIssue, ...]:
    """Parse issues_json. Anything unusable is logged and ignored."""
    if not raw:
        return ()
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Could not parse issues_json for scan %s", scan_id)
        return ()
    if not isinstance(parsed, list):
        logger.warning("issues_json for scan %s is not a list, ignoring", scan_id)
        return ()
    try:
        return tuple(ExistingIssue.model_validate(issue) for issue in parsed)
    except ValidationError as e:
        logger.warning("Invalid issue in issues_json for scan %s: %s", scan_id, e)
        return ()


def _validate_row(
    record: dict[str | None, str | list[str] | None],
) -> tuple[WorkItem | None, str]:
    scan_id = _clean(record, "scan_id")
    if not scan_id:
        return None, "Missing scan_id"

    url = _clean(record, "url")
    if not url:
        return None, "Empty URL"
    if not _is_valid_url(url):
        return None, "Invalid URL format (must start with http:// or https://)"

    wcag_level = _clean(record, "wcag_level")
    if not wcag_level:
        return None, "Missing wcag_level"
    if wcag_level not in VALID_WCAG_LEVELS:
        return None, f"Invalid wcag_level '{wcag_level}' (must be A, AA, or AAA)"

    item = WorkItem(
        scan_id=scan_id,
        url=url,
        wcag_level=wcag_level,  # type: ignore[arg-type]
        email=_clean(record, "email") or None,
        created_at=_clean(record, "created_at") or None,
        page_title=_clean(record, "page_title") or None,
        existing_issues=_parse_existing_issues(_clean(record, "issues_json"), scan_id),
    )
    return item, ""


def parse_input_csv(path: Path) -> ParseResult:
    """Parse and validate an input CSV.

    Args:
        path: CSV file with a header row.

    Returns:
        ParseResult with valid scans in file order, skipped rows with
        reasons, and the number of data rows seen.

    Raises:
        CsvParseError: If the file cannot be read or parsed.
    """
    path = Path(path)
    result = ParseResult()
    seen_ids: set[str] = set()

    try:
        with open(path, encoding="utf-8-sig", newline="") as f:
            reader = csv.DictReader(f)
            for record in reader:
                if not any(
                    isinstance(v, str) and v.strip() for v in record.values()
                ):
                    continue
                result.total_rows += 1
                row_number = result.total_rows + 1

                item, reason = _validate_row(record)
                if item is None:
                    result.skipped.append(SkippedRow(row=row_number, reason=reason))
                    continue
                if item.scan_id in seen_ids:
                    result.skipped.append(
                        SkippedRow(row=row_number, reason=f"Duplicate scan_id '{item.scan_id}'")
                    )
                    continue

                seen_ids.add(item.scan_id)
                result.scans.append(item)
    except OSError as e:
        raise CsvParseError(f"File read error: {e}") from e
    except (csv.Error, UnicodeDecodeError) as e:
        raise CsvParseError(f"CSV parsing error: {e}") from e

    logger.debug(
        "Parsed %s: %d rows, %d valid, %d skipped",
        path.name, result.total_rows, len(result.scans), len(result.skipped),
    )
    return result

# src/storage/csv_writer.py — v1
"""CSV output: import rows and failed-scan reports.

Every field is quoted and None becomes an empty string, so the files load
unchanged into the downstream import.
"""

from __future__ import annotations

import csv
import logging
import os
from collections.abc import Iterable, Mapping
from datetime import datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel

from aiscan.core.models import IMPORT_COLUMNS

logger = logging.getLogger(__name__)

FAILED_SCAN_COLUMNS = ["scan_id", "url", "error_type", "error_message"]
PENDING_SCAN_COLUMNS = [
    "scan_id", "url", "email", "wcag_level", "issues_json", "created_at", "page_title",
]

_FILE_MODE = 0o644


def _timestamp(now: datetime | None = None) -> str:
    return (now or datetime.now()).strftime("%Y%m%d-%H%M%S")


def _to_record(row: BaseModel | Mapping[str, Any], columns: list[str]) -> list[str]:
    data = row.model_dump(mode="json") if isinstance(row, BaseModel) else dict(row)
    record = []
    for column in columns:
        value = data.get(column)
        record.append("" if value is None else str(value))
    return record


def _write(
    path: Path,
    columns: list[str],
    rows: Iterable[BaseModel | Mapping[str, Any]],
    append: bool = False,
) -> int:
    path.parent.mkdir(parents=True, exist_ok=True)
    appending = append and path.exists()
    count = 0
    with open(path, "a" if appending else "w", encoding="utf-8", newline="") as f:
        writer = csv.writer(f, quoting=csv.QUOTE_ALL, lineterminator="\n")
        if not appending:
            writer.writerow(columns)
        for row in rows:
            writer.writerow(_to_record(row, columns))
            count += 1
    os.chmod(path, _FILE_MODE)
    return count


def write_csv(
    path: Path,
    rows: Iterable[BaseModel | Mapping[str, Any]],
    append: bool = False,
) -> None:
    """Write import rows to path.

    Args:
        path: Destination file.
        rows: ImportRow models (or dicts with the same keys).
        append: Append without a header when the file already exists.
    """
    count = _write(Path(path), IMPORT_COLUMNS, rows, append=append)
    logger.info("Wrote %d result rows to %s", count, path)


def write_failed_scans_csv(
    output_dir: Path,
    rows: list[BaseModel] | list[Mapping[str, Any]],
    input_stem: str = "batch",
    now: datetime | None = None,
) -> Path | None:
    """Write failed-scans-<stem>-<timestamp>.csv in output_dir.

    An existing report of the same name is appended to, never replaced.

    Returns:
        The written path, or None when there is nothing to report.
    """
    if not rows:
        return None
    path = Path(output_dir) / f"failed-scans-{input_stem}-{_timestamp(now)}.csv"
    count = _write(path, FAILED_SCAN_COLUMNS, rows, append=True)
    logger.info("Wrote %d failed scans to %s", count, path)
    return path


def generate_output_path(
    output: str | Path,
    input_stem: str = "batch",
    now: datetime | None = None,
) -> Path:
    """Resolve the --output option into a results file path.

    A path ending in .csv is used as is. An existing directory gets
    ai-results-<stem>-<YYYYMMDD-HHMMSS>.csv inside it. Anything else is
    treated as a file path to create.
    """
    output_path = Path(output).expanduser()
    if output_path.suffix.lower() == ".csv":
        return output_path.resolve()
    if output_path.is_dir():
        return (output_path / f"ai-results-{input_stem}-{_timestamp(now)}.csv").resolve()
    return output_path.resolve()


def write_pending_csv(path: Path, rows: Iterable[Mapping[str, Any]]) -> None:
    """Write an input CSV of pending scans (the export side of the queue)."""
    count = _write(Path(path), PENDING_SCAN_COLUMNS, rows)
    logger.info("Wrote %d pending scans to %s", count, path)

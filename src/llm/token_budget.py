# src/llm/token_budget.py — v1
"""Token accounting across a run or an import.

The campaign budget is charged once per import with the total, attributed
to the first successfully processed scan.
"""

from __future__ import annotations

from collections.abc import Iterable

from aiscan.core.models import ImportRow


class TokenLedger:
    """Per-scan token usage, in the order scans were recorded."""

    def __init__(self) -> None:
        self._by_scan: dict[str, int] = {}

    def record(self, scan_id: str, tokens: int) -> None:
        if tokens < 0:
            raise ValueError(f"tokens must be >= 0, got {tokens}")
        self._by_scan[scan_id] = self._by_scan.get(scan_id, 0) + tokens

    def record_rows(self, rows: Iterable[ImportRow]) -> None:
        for row in rows:
            self.record(row.scan_id, row.tokens_used)

    @property
    def total(self) -> int:
        return sum(self._by_scan.values())

    @property
    def scan_count(self) -> int:
        return len(self._by_scan)

    @property
    def first_scan_id(self) -> str | None:
        """Attribution anchor for the budget deduction."""
        return next(iter(self._by_scan), None)

    def usage(self, scan_id: str) -> int:
        return self._by_scan.get(scan_id, 0)

    def as_dict(self) -> dict[str, int]:
        return dict(self._by_scan)

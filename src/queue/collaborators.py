# src/queue/collaborators.py — v1
"""Interfaces to the surrounding product: scan store, token budget, notifications.

The tool never talks to a database or message broker directly; callers
plug in implementations of these interfaces.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from aiscan.core.models import ImportRow, WcagLevel


class AiStatus(str, Enum):
    PENDING = "PENDING"
    DOWNLOADED = "DOWNLOADED"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class ScanRecord(BaseModel):
    """A scan as stored by the product."""

    scan_id: str
    url: str
    wcag_level: WcagLevel = "AA"
    email: str | None = None
    ai_enabled: bool = True
    ai_status: AiStatus | None = None
    created_at: str | None = None
    page_title: str | None = None
    issues: list[dict[str, Any]] = Field(default_factory=list)


class ScanRepository(ABC):
    """Scan persistence used by the export/import cycle."""

    @abstractmethod
    async def list_pending_scans(self) -> list[ScanRecord]:
        """AI-enabled scans in PENDING status, oldest first."""

    @abstractmethod
    async def mark_downloaded(self, scan_ids: list[str]) -> None:
        """Move exported scans to DOWNLOADED."""

    @abstractmethod
    async def get_scan(self, scan_id: str) -> ScanRecord | None:
        """Fetch one scan, None when unknown."""

    @abstractmethod
    async def store_ai_results(
        self, row: ImportRow, enhancements: list[dict[str, Any]],
    ) -> None:
        """Persist AI results for a scan and mark it COMPLETED."""

    @abstractmethod
    async def reset_to_pending(self, scan_id: str) -> None:
        """Move a FAILED scan back to PENDING and clear its error."""


class TokenDeductor(ABC):
    @abstractmethod
    async def deduct_tokens(self, scan_id: str, total_tokens: int) -> None:
        """Charge the campaign budget; scan_id anchors the attribution."""


class NotificationQueue(ABC):
    @abstractmethod
    async def enqueue_notification(self, scan_id: str, email: str, type: str) -> None:  # noqa: A002
        """Fire-and-forget notification request."""

# src/batch/models.py — v1
"""Batch processing models: Batch, MiniBatch, per-mini-batch results and run summary."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from aiscan.core.models import ErrorType, ScanResult, WorkItem

SummaryStatus = Literal["completed", "partial_failure", "complete_failure"]


class MiniBatch(BaseModel):
    """A group of 1-10 items sent to the worker in one invocation."""

    model_config = ConfigDict(frozen=True)

    mini_batch_number: int
    items: tuple[WorkItem, ...]


class Batch(BaseModel):
    """A contiguous slice of the input, split into mini-batches."""

    model_config = ConfigDict(frozen=True)

    batch_number: int
    items: tuple[WorkItem, ...]
    mini_batches: tuple[MiniBatch, ...]


class FailedScan(BaseModel):
    """An item the worker could not process."""

    scan_id: str
    url: str
    error_type: ErrorType
    error_message: str


class MiniBatchResult(BaseModel):
    """Outcome of one mini-batch. Always produced, never raised."""

    batch_number: int
    mini_batch_number: int
    results: list[ScanResult] = Field(default_factory=list)
    failed_scans: list[FailedScan] = Field(default_factory=list)
    duration_ms: int = 0
    attempts: int = 0


class ProcessingProgress(BaseModel):
    """Snapshot passed to the on_progress callback after each mini-batch."""

    batch_number: int
    total_batches: int
    mini_batch_number: int
    total_mini_batches: int
    processed_items: int
    total_items: int
    successful: int
    failed: int


class SummaryStats(BaseModel):
    """Raw counters accumulated by the CLI, input to generate_summary()."""

    files_processed: int = 0
    total: int = 0
    successful: int = 0
    failed: int = 0
    skipped: int = 0
    duration_seconds: float = 0.0
    output_files: list[str] = Field(default_factory=list)
    failed_files: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)


class ProcessingSummary(BaseModel):
    """Final run report, printed as JSON with --json-summary."""

    model_config = ConfigDict(frozen=True)

    status: SummaryStatus
    files_processed: int
    total: int
    successful: int
    failed: int
    skipped: int
    duration_seconds: float
    output_files: list[str] = Field(default_factory=list)
    failed_files: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)


class ScannerResult(BaseModel):
    """CSV files found in a watched directory."""

    files: list[str] = Field(default_factory=list)
    total_found: int = 0

# src/storage/models.py — v1
"""Persisted state models: Checkpoint, LockInfo."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class Checkpoint(BaseModel):
    """Resume state for one input file, written to .ai-scan-checkpoint.json."""

    model_config = ConfigDict(populate_by_name=True)

    input_file: str = Field(alias="inputFile")
    processed_scan_ids: list[str] = Field(default_factory=list, alias="processedScanIds")
    last_batch: int = Field(default=0, alias="lastBatch")
    last_mini_batch: int = Field(default=0, alias="lastMiniBatch")
    started_at: datetime = Field(alias="startedAt")
    updated_at: datetime = Field(alias="updatedAt")


class LockInfo(BaseModel):
    """Holder metadata stored in the lock file."""

    model_config = ConfigDict(populate_by_name=True)

    pid: int
    hostname: str
    acquired_at: datetime = Field(alias="startedAt")

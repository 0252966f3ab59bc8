# src/storage/checkpoint.py — v1
"""Checkpoint persistence for resumable runs.

Successful scan ids are buffered with mark_processed() and written by
flush(). All I/O here is synchronous so flush() can run from the shutdown
path without awaiting anything. Writes go to a temp file that is then
os.replace()d over the checkpoint, so a crash never leaves a torn file.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path

from pydantic import ValidationError

from aiscan.storage.models import Checkpoint

logger = logging.getLogger(__name__)

DEFAULT_CHECKPOINT_FILE = ".ai-scan-checkpoint.json"


class CheckpointManager:
    """Owns the checkpoint file for one input file at a time."""

    def __init__(self, path: Path = Path(DEFAULT_CHECKPOINT_FILE)) -> None:
        self._path = Path(path)
        self._checkpoint: Checkpoint | None = None
        self._processed: set[str] = set()
        self._pending: list[str] = []
        self._pending_position: tuple[int, int] | None = None

    @property
    def path(self) -> Path:
        return self._path

    @property
    def checkpoint(self) -> Checkpoint | None:
        return self._checkpoint

    @property
    def processed_ids(self) -> frozenset[str]:
        return frozenset(self._processed)

    @property
    def has_pending(self) -> bool:
        return bool(self._pending)

    def load_checkpoint(self) -> Checkpoint | None:
        """Load the checkpoint from disk.

        Returns:
            The checkpoint, or None when the file is missing or corrupt.
        """
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
            checkpoint = Checkpoint.model_validate(data)
        except FileNotFoundError:
            checkpoint = None
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            logger.warning("Ignoring corrupt checkpoint %s: %s", self._path, e)
            checkpoint = None

        self._set(checkpoint)
        return checkpoint

    def init_checkpoint(self, input_file: str) -> Checkpoint:
        """Start a fresh in-memory checkpoint for input_file."""
        now = datetime.now(timezone.utc)
        checkpoint = Checkpoint(
            input_file=input_file,
            processed_scan_ids=[],
            last_batch=0,
            last_mini_batch=0,
            started_at=now,
            updated_at=now,
        )
        self._set(checkpoint)
        return checkpoint

    def save_checkpoint(self, checkpoint: Checkpoint) -> None:
        """Atomically write checkpoint and make it the current one."""
        self._write(checkpoint)
        if checkpoint is not self._checkpoint:
            self._set(checkpoint)

    def mark_processed(
        self,
        scan_ids: list[str],
        batch_number: int | None = None,
        mini_batch_number: int | None = None,
    ) -> None:
        """Buffer successful ids until the next flush()."""
        for scan_id in scan_ids:
            if scan_id not in self._processed and scan_id not in self._pending:
                self._pending.append(scan_id)
        if batch_number is not None:
            self._pending_position = (batch_number, mini_batch_number or 0)

    def flush(self) -> None:
        """Persist buffered ids. No-op when nothing is pending.

        Raises:
            RuntimeError: If no checkpoint has been loaded or initialised.
        """
        if not self._pending and self._pending_position is None:
            return
        if self._checkpoint is None:
            raise RuntimeError(
                "Cannot flush: no checkpoint loaded. "
                "Call load_checkpoint() or init_checkpoint() first."
            )

        update: dict[str, object] = {
            "processed_scan_ids": [*self._checkpoint.processed_scan_ids, *self._pending],
        }
        if self._pending_position is not None:
            update["last_batch"], update["last_mini_batch"] = self._pending_position
        updated = self._checkpoint.model_copy(update=update)
        self._write(updated)
        self._checkpoint = updated

        self._processed.update(self._pending)
        self._pending = []
        self._pending_position = None

    def clear_checkpoint(self) -> None:
        """Delete the checkpoint file and forget in-memory state."""
        try:
            self._path.unlink()
        except FileNotFoundError:
            pass
        self._set(None)

    def is_processed(self, scan_id: str) -> bool:
        return scan_id in self._processed

    # --- Internal ---

    def _write(self, checkpoint: Checkpoint) -> None:
        checkpoint.updated_at = datetime.now(timezone.utc)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_name(self._path.name + ".tmp")
        tmp_path.write_text(
            checkpoint.model_dump_json(by_alias=True, indent=2), encoding="utf-8"
        )
        os.replace(tmp_path, self._path)

    def _set(self, checkpoint: Checkpoint | None) -> None:
        self._checkpoint = checkpoint
        self._processed = set(checkpoint.processed_scan_ids) if checkpoint else set()
        self._pending = []
        self._pending_position = None

# src/logging/context.py — v1
"""Contextual logging support — attach input file, batch and mini-batch to log records."""

from __future__ import annotations

import contextvars
from dataclasses import dataclass
from typing import Any

# Set per input file and per mini-batch
_input_file: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "input_file", default=None
)
_batch: contextvars.ContextVar[int | None] = contextvars.ContextVar(
    "batch", default=None
)
_mini_batch: contextvars.ContextVar[int | None] = contextvars.ContextVar(
    "mini_batch", default=None
)


@dataclass
class LogContext:
    """Immutable snapshot of current logging context."""

    input_file: str | None = None
    batch: int | None = None
    mini_batch: int | None = None

    def as_dict(self) -> dict[str, Any]:
        """Return non-None fields as dict for JSON log injection."""
        return {k: v for k, v in self.__dict__.items() if v is not None}


def get_context() -> LogContext:
    """Snapshot current context variables."""
    return LogContext(
        input_file=_input_file.get(),
        batch=_batch.get(),
        mini_batch=_mini_batch.get(),
    )


def set_file_context(input_file: str) -> None:
    """Set file-level context (called once per input CSV)."""
    _input_file.set(input_file)
    _batch.set(None)
    _mini_batch.set(None)


def set_batch_context(batch: int, mini_batch: int | None = None) -> None:
    """Set batch-level context (called per mini-batch)."""
    _batch.set(batch)
    _mini_batch.set(mini_batch)


def clear_context() -> None:
    """Reset all context variables."""
    _input_file.set(None)
    _batch.set(None)
    _mini_batch.set(None)

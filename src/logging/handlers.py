# src/logging/handlers.py — v1
"""File rotation handler for log files."""

from __future__ import annotations

import re
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path


_UNITS = {"B": 1, "KB": 1024, "MB": 1024**2, "GB": 1024**3}
_SIZE = re.compile(r"(\d+)\s*([KMG]?B)?", re.IGNORECASE)


def _parse_size(size_str: str) -> int:
    """Bytes for a rotation size such as "10MB", "512kb" or a bare "4096"."""
    match = _SIZE.fullmatch(size_str.strip())
    if not match:
        raise ValueError(f"Invalid size format: {size_str!r}. Use e.g. '10MB'.")
    return int(match.group(1)) * _UNITS[(match.group(2) or "B").upper()]


def resolve_log_path(log_option: str, now: datetime | None = None) -> Path:
    """Turn the --log argument into a file path.

    An existing directory (or a path ending with a separator) gets a dated
    file name: ai-scan-YYYYMMDD.log.
    """
    path = Path(log_option).expanduser()
    if path.is_dir() or log_option.endswith(("/", "\\")):
        stamp = (now or datetime.now()).strftime("%Y%m%d")
        return path / f"ai-scan-{stamp}.log"
    return path


def create_rotating_handler(
    log_file: str,
    rotation: str = "10MB",
    retention: int = 5,
) -> RotatingFileHandler:
    """Create a rotating file handler.

    Args:
        log_file: Path to log file or log directory.
        rotation: Max file size before rotation (e.g. "10MB").
        retention: Number of backup files to keep.

    Returns:
        Configured RotatingFileHandler.
    """
    max_bytes = _parse_size(rotation)
    path = resolve_log_path(log_file)
    path.parent.mkdir(parents=True, exist_ok=True)
    return RotatingFileHandler(path, maxBytes=max_bytes, backupCount=retention, encoding="utf-8")

# src/batch/scanner.py — v1
"""Directory scanner — discovery of pending CSV files and their disposal.

A watched directory holds pending CSV files at the top level and two
subdirectories: processed/ for files that yielded at least one result and
failed/ for the rest. Files are picked up oldest first by name, which
relies on producers using sortable (timestamped) file names.
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path

from aiscan.batch.models import ScannerResult

logger = logging.getLogger(__name__)

PROCESSED_DIR = "processed"
FAILED_DIR = "failed"


class DirectoryScanner:
    """Find CSV files in a watched directory and move them once handled."""

    def __init__(self, excluded_names: tuple[str, ...] = ()) -> None:
        # Lock and checkpoint file names of the watched directory
        self._excluded = {name.lower() for name in excluded_names}

    def ensure_subdirectories(self, directory: Path) -> None:
        """Create processed/ and failed/ under directory."""
        directory = Path(directory)
        (directory / PROCESSED_DIR).mkdir(parents=True, exist_ok=True)
        (directory / FAILED_DIR).mkdir(parents=True, exist_ok=True)

    def scan_directory(
        self, directory: Path, max_files: int | None = None,
    ) -> ScannerResult:
        """List pending CSV files.

        Args:
            directory: Watched directory (top level only).
            max_files: Cap on the number of files returned.

        Returns:
            ScannerResult with absolute paths sorted by name and the
            total number found before the cap.

        Raises:
            ValueError: If directory is not a directory.
        """
        directory = Path(directory)
        if not directory.is_dir():
            msg = f"Input directory is not a directory: {directory}"
            raise ValueError(msg)

        names = sorted(path.name for path in directory.iterdir() if self._is_candidate(path))
        total_found = len(names)
        if total_found == 0:
            logger.info("No pending files found in %s", directory)
            return ScannerResult(files=[], total_found=0)

        logger.info("Found %d CSV files to process", total_found)
        if max_files is not None:
            names = names[:max_files]

        root = directory.resolve()
        return ScannerResult(files=[str(root / name) for name in names], total_found=total_found)

    def has_files_to_process(self, directory: Path) -> bool:
        directory = Path(directory)
        return any(self._is_candidate(path) for path in directory.iterdir())

    def move_to_processed(self, file_path: Path, directory: Path) -> Path:
        return self._move(Path(file_path), Path(directory) / PROCESSED_DIR)

    def move_to_failed(self, file_path: Path, directory: Path) -> Path:
        return self._move(Path(file_path), Path(directory) / FAILED_DIR)

    # --- Internal ---

    def _is_candidate(self, path: Path) -> bool:
        name = path.name.lower()
        if name.startswith(".") or name in self._excluded:
            return False
        if not name.endswith(".csv"):
            return False
        return path.is_file()

    def _move(self, file_path: Path, target_dir: Path) -> Path:
        target_dir.mkdir(parents=True, exist_ok=True)
        target = target_dir / file_path.name
        if target.exists():
            stamp = datetime.now().strftime("%Y%m%d-%H%M%S-%f")
            target = target_dir / f"{file_path.stem}-{stamp}{file_path.suffix}"
        file_path.rename(target)
        logger.info("Moved %s to %s/", file_path.name, target_dir.name)
        return target

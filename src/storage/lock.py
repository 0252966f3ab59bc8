# src/storage/lock.py — v1
"""Single-instance lock for directory mode.

The lock is a JSON file created with O_CREAT|O_EXCL, so two processes
racing for it can never both succeed. A lock held on this host is stale
only when its PID is gone; a lock from another host is stale once it is
older than the threshold. A stale lock is removed and acquisition is
retried once.
"""

from __future__ import annotations

import errno
import json
import logging
import os
import socket
from datetime import datetime, timedelta, timezone
from pathlib import Path

from pydantic import ValidationError

from aiscan.storage.models import LockInfo

logger = logging.getLogger(__name__)

DEFAULT_STALE_AFTER_HOURS = 24.0


def _is_process_running(pid: int) -> bool:
    """Probe a PID with signal 0."""
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Process exists but belongs to someone else
        return True
    except OSError:
        return False
    return True


class LockManager:
    """Exclusive lock file guarding a watched directory."""

    def __init__(
        self,
        lock_path: Path,
        stale_after_hours: float = DEFAULT_STALE_AFTER_HOURS,
    ) -> None:
        self._path = Path(lock_path)
        self._stale_after = timedelta(hours=stale_after_hours)

    @property
    def lock_path(self) -> Path:
        return self._path

    def acquire_lock(self) -> bool:
        """Try to take the lock.

        Returns:
            True if this process now holds the lock, False if another live
            process holds it.

        Raises:
            OSError: On filesystem errors other than "file exists".
        """
        if self._try_create():
            return True

        info = self.read_lock_info()
        if info is not None and self.is_stale(info):
            logger.warning(
                "Removing stale lock %s (pid %d on %s since %s)",
                self._path, info.pid, info.hostname, info.acquired_at.isoformat(),
            )
            self.release_lock()
            return self._try_create()

        return False

    def release_lock(self) -> None:
        """Delete the lock file. Safe to call when it does not exist."""
        try:
            self._path.unlink()
        except FileNotFoundError:
            pass

    def read_lock_info(self) -> LockInfo | None:
        """Read holder metadata; missing or corrupt file yields None."""
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
            return LockInfo.model_validate(data)
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            logger.debug("Unreadable lock file %s: %s", self._path, e)
            return None

    def is_stale(self, info: LockInfo, now: datetime | None = None) -> bool:
        """Local locks go stale when the holder dies, foreign ones by age."""
        if info.hostname == socket.gethostname():
            return not _is_process_running(info.pid)
        now = now or datetime.now(timezone.utc)
        acquired = info.acquired_at
        if acquired.tzinfo is None:
            acquired = acquired.replace(tzinfo=timezone.utc)
        return now - acquired > self._stale_after

    # --- Internal ---

    def _try_create(self) -> bool:
        info = LockInfo(
            pid=os.getpid(),
            hostname=socket.gethostname(),
            acquired_at=datetime.now(timezone.utc),
        )
        try:
            fd = os.open(self._path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        except OSError as e:
            if e.errno == errno.EEXIST:
                return False
            raise
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(info.model_dump_json(by_alias=True, indent=2))
        logger.debug("Lock acquired: %s", self._path)
        return True

# src/core/shutdown.py — v1
"""Shutdown context shared between the run loop and signal handlers.

The context is created once per CLI invocation and passed explicitly to
the run functions and the mini-batch processor. Signal handlers only flip
the flag; the run loop checks it between mini-batches and performs the
actual cleanup (checkpoint flush, lock release) through cleanup().
"""

from __future__ import annotations

import asyncio
import logging
import signal
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from aiscan.storage.checkpoint import CheckpointManager
    from aiscan.storage.lock import LockManager

logger = logging.getLogger(__name__)

HANDLED_SIGNALS: tuple[signal.Signals, ...] = (signal.SIGINT, signal.SIGTERM)


@dataclass
class ShutdownContext:
    """Resources that must be cleaned up on interruption."""

    checkpoint_manager: CheckpointManager | None = None
    lock_manager: LockManager | None = None
    signal_name: str | None = None
    _event: asyncio.Event = field(default_factory=asyncio.Event, repr=False)

    @property
    def requested(self) -> bool:
        return self._event.is_set()

    def request(self, signal_name: str = "SIGINT") -> None:
        """Mark shutdown as requested. Repeated requests are ignored."""
        if self._event.is_set():
            logger.debug("Already shutting down, ignoring %s", signal_name)
            return
        self.signal_name = signal_name
        self._event.set()
        logger.warning(
            "Received %s, finishing current mini-batch and shutting down", signal_name,
        )

    async def sleep(self, seconds: float) -> bool:
        """Sleep for `seconds` or until shutdown is requested.

        Returns:
            True if the sleep was cut short by a shutdown request.
        """
        if seconds <= 0:
            return self.requested
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True

    def cleanup(self) -> list[str]:
        """Flush the checkpoint and release the lock.

        Both steps are attempted even if the first one fails.

        Returns:
            Error messages for the steps that failed (empty on success).
        """
        errors: list[str] = []

        if self.checkpoint_manager is not None:
            try:
                self.checkpoint_manager.flush()
                logger.info("Checkpoint saved")
            except OSError as exc:
                logger.error("Failed to flush checkpoint: %s", exc)
                errors.append(f"checkpoint flush failed: {exc}")

        if self.lock_manager is not None:
            try:
                self.lock_manager.release_lock()
                logger.info("Lock released")
            except OSError as exc:
                logger.error("Failed to release lock: %s", exc)
                errors.append(f"lock release failed: {exc}")
            self.lock_manager = None

        return errors


def install_signal_handlers(
    context: ShutdownContext, loop: asyncio.AbstractEventLoop,
) -> None:
    """Route SIGINT/SIGTERM to context.request on the running loop."""
    for sig in HANDLED_SIGNALS:
        try:
            loop.add_signal_handler(sig, context.request, sig.name)
        except (NotImplementedError, RuntimeError):
            # Platforms without loop signal support (Windows) fall back to
            # KeyboardInterrupt handling in main().
            logger.debug("Signal handler for %s not supported", sig.name)


def remove_signal_handlers(loop: asyncio.AbstractEventLoop) -> None:
    for sig in HANDLED_SIGNALS:
        try:
            loop.remove_signal_handler(sig)
        except (NotImplementedError, RuntimeError):
            pass

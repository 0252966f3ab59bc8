# src/llm/invoker.py — v1
"""Worker invocation interface and the Claude Code subprocess implementation.

The worker is an external AI agent CLI called as
`<command> <args...> <prompt>`; its stdout is the raw response. Failures
are raised as WorkerInvocationError subclasses carrying an ErrorType so
the retry loop and the failed-scans report can classify them.
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Sequence

from pydantic import BaseModel

from aiscan.core.models import ErrorType

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_S = 180.0

_RATE_LIMIT_MARKERS = ("rate limit", "rate_limit", "too many requests")


class InvocationResult(BaseModel):
    """Raw worker response."""

    output: str
    duration_ms: int
    tokens_used: int | None = None


class WorkerInvocationError(Exception):
    """Worker call failed. Subclasses fix the error_type."""

    error_type: ErrorType = ErrorType.UNKNOWN

    def __init__(self, message: str, duration_ms: int = 0) -> None:
        self.duration_ms = duration_ms
        super().__init__(message)


class WorkerTimeoutError(WorkerInvocationError):
    error_type = ErrorType.TIMEOUT


class WorkerRateLimitError(WorkerInvocationError):
    error_type = ErrorType.RATE_LIMIT


class WorkerProcessError(WorkerInvocationError):
    """Non-zero exit or the process could not be spawned."""

    error_type = ErrorType.PROCESS_CRASH


class MalformedOutputError(WorkerInvocationError):
    """Worker exited cleanly but nothing usable could be parsed."""

    error_type = ErrorType.INVALID_OUTPUT


class BaseWorkerInvoker(ABC):
    """Unified interface for worker back-ends (subprocess, fakes in tests)."""

    @abstractmethod
    async def invoke(self, prompt: str, timeout_s: float = DEFAULT_TIMEOUT_S) -> InvocationResult:
        """Run the worker once.

        Raises:
            WorkerInvocationError: On timeout, rate limit or crash.
        """

    @property
    @abstractmethod
    def name(self) -> str:
        """Worker identifier used in logs."""


def is_rate_limited(stdout: str, stderr: str, returncode: int | None) -> bool:
    """Detect rate-limit responses from the worker's output streams.

    stdout is only inspected after a non-zero exit: a successful response
    may quote "rate limit" or "429" in its payload.
    """
    streams = [stderr]
    if returncode not in (0, None):
        streams.append(stdout)
    combined = "\n".join(streams).lower()
    return "429" in combined or any(marker in combined for marker in _RATE_LIMIT_MARKERS)


class ClaudeCodeInvoker(BaseWorkerInvoker):
    """Runs `claude -p <prompt>` (or a configured command) as a subprocess."""

    def __init__(self, command: str = "claude", args: Sequence[str] = ("-p",)) -> None:
        self._command = command
        self._args = list(args)

    @property
    def name(self) -> str:
        return self._command

    async def invoke(self, prompt: str, timeout_s: float = DEFAULT_TIMEOUT_S) -> InvocationResult:
        t0 = time.perf_counter()

        def elapsed_ms() -> int:
            return int((time.perf_counter() - t0) * 1000)

        try:
            proc = await asyncio.create_subprocess_exec(
                self._command, *self._args, prompt,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise WorkerProcessError(
                f"Failed to spawn {self._command} process: {e}", elapsed_ms(),
            ) from e

        try:
            stdout_b, stderr_b = await asyncio.wait_for(proc.communicate(), timeout=timeout_s)
        except asyncio.TimeoutError:
            await self._kill(proc)
            raise WorkerTimeoutError(
                f"{self._command} execution timed out after {int(timeout_s * 1000)}ms",
                elapsed_ms(),
            ) from None
        except asyncio.CancelledError:
            await self._kill(proc)
            raise

        stdout = stdout_b.decode("utf-8", errors="replace")
        stderr = stderr_b.decode("utf-8", errors="replace")
        duration_ms = elapsed_ms()

        if is_rate_limited(stdout, stderr, proc.returncode):
            raise WorkerRateLimitError(f"{self._command} rate limit exceeded", duration_ms)

        if proc.returncode != 0:
            detail = (stderr or stdout).strip()[:500]
            raise WorkerProcessError(
                f"{self._command} exited with code {proc.returncode}: {detail}", duration_ms,
            )

        logger.debug("%s completed in %dms (%d chars)", self._command, duration_ms, len(stdout))
        return InvocationResult(output=stdout, duration_ms=duration_ms)

    @staticmethod
    async def _kill(proc: asyncio.subprocess.Process) -> None:
        if proc.returncode is None:
            try:
                proc.kill()
            except ProcessLookupError:
                pass
            await proc.wait()

# src/llm/retry.py — v1
"""Retry policy for worker invocations with exponential backoff.

Rate-limit failures back off from a long base delay (60s, 120s, 240s...),
every other failure from a short one (5s, 10s, 20s...). Both are capped.
The loop is explicit so shutdown can be checked between attempts.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import TYPE_CHECKING, Awaitable, Callable, TypeVar

from aiscan.core.models import ErrorType
from aiscan.llm.invoker import WorkerInvocationError

if TYPE_CHECKING:
    from aiscan.core.shutdown import ShutdownContext

logger = logging.getLogger(__name__)

T = TypeVar("T")


class WorkerRetryExhausted(Exception):
    """All attempts failed, or retrying was abandoned because of shutdown."""

    def __init__(
        self,
        error_type: ErrorType,
        attempts: int,
        last_error: Exception,
        interrupted: bool = False,
    ) -> None:
        self.error_type = ErrorType.INTERRUPTED if interrupted else error_type
        self.attempts = attempts
        self.last_error = last_error
        self.interrupted = interrupted
        reason = "interrupted by shutdown" if interrupted else error_type.value
        super().__init__(f"Worker failed after {attempts} attempts ({reason}): {last_error}")


@dataclass(frozen=True)
class RetryConfig:
    """Retry configuration. max_attempts counts the first call."""

    max_attempts: int = 3
    base_delay_s: float = 5.0
    rate_limit_base_delay_s: float = 60.0
    max_delay_s: float = 300.0
    backoff_factor: float = 2.0
    jitter: bool = False


def compute_delay(config: RetryConfig, error_type: ErrorType, attempt: int) -> float:
    """Delay before the next attempt, after `attempt` (1-based) failures."""
    base = (
        config.rate_limit_base_delay_s
        if error_type == ErrorType.RATE_LIMIT
        else config.base_delay_s
    )
    delay = base * (config.backoff_factor ** (attempt - 1))
    if config.jitter:
        delay *= 0.5 + random.random()  # noqa: S311
    return min(delay, config.max_delay_s)


async def invoke_with_retry(
    fn: Callable[[], Awaitable[T]],
    config: RetryConfig | None = None,
    shutdown: ShutdownContext | None = None,
    label: str = "worker",
) -> tuple[T, int]:
    """Call fn until it succeeds or attempts run out.

    Only WorkerInvocationError is retried; anything else propagates.

    Returns:
        (value, attempts) on success.

    Raises:
        WorkerRetryExhausted: If every attempt failed or shutdown was
            requested while waiting to retry.
    """
    config = config or RetryConfig()
    attempts = 0

    while True:
        attempts += 1
        try:
            return await fn(), attempts
        except WorkerInvocationError as e:
            error_type = e.error_type

            if attempts >= config.max_attempts:
                logger.error(
                    "%s failed after %d attempts (%s): %s",
                    label, attempts, error_type.value, e,
                )
                raise WorkerRetryExhausted(error_type, attempts, e) from e

            if shutdown is not None and shutdown.requested:
                raise WorkerRetryExhausted(error_type, attempts, e, interrupted=True) from e

            delay = compute_delay(config, error_type, attempts)
            if error_type == ErrorType.RATE_LIMIT:
                logger.warning(
                    "%s rate limited. Waiting %.1fs before retry %d/%d",
                    label, delay, attempts, config.max_attempts - 1,
                )
            else:
                logger.warning(
                    "%s failed (%s): %s. Waiting %.1fs before retry %d/%d",
                    label, error_type.value, e, delay, attempts, config.max_attempts - 1,
                )

            if shutdown is not None:
                if await shutdown.sleep(delay):
                    raise WorkerRetryExhausted(
                        error_type, attempts, e, interrupted=True,
                    ) from e
            elif delay > 0:
                await asyncio.sleep(delay)

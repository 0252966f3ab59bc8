# src/batch/processor.py — v1
"""Mini-batch processor — sequential worker invocation with retry and checkpointing.

For every mini-batch, in batch then mini-batch order:
    1. render the prompt
    2. invoke the worker (timeout + retry with backoff)
    3. parse and match results; absent items become missing_result failures
    4. hand the successes to `on_results`, then checkpoint their ids
    5. wait `delay_s` before the next mini-batch

A mini-batch always yields a MiniBatchResult; worker failures never abort
the run. An exception from `on_results` propagates with the ids left out
of the checkpoint, so a resumed run redoes that mini-batch. Shutdown is
honoured before each mini-batch and between retries.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from aiscan.batch.models import (
    Batch,
    FailedScan,
    MiniBatch,
    MiniBatchResult,
    ProcessingProgress,
)
from aiscan.batch.organizer import count_mini_batches
from aiscan.core.models import ErrorType, ScanResult, WorkItem
from aiscan.llm.invoker import (
    DEFAULT_TIMEOUT_S,
    BaseWorkerInvoker,
    InvocationResult,
    MalformedOutputError,
)
from aiscan.llm.prompt import generate_prompt
from aiscan.llm.result_parser import ParsedResults, parse_results
from aiscan.llm.retry import RetryConfig, WorkerRetryExhausted, invoke_with_retry
from aiscan.logging.context import set_batch_context

if TYPE_CHECKING:
    from aiscan.core.shutdown import ShutdownContext
    from aiscan.storage.checkpoint import CheckpointManager

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProcessingProgress], None]
ResultsCallback = Callable[[list[ScanResult]], None]


@dataclass
class ProcessorOptions:
    delay_s: float = 5.0
    timeout_s: float = DEFAULT_TIMEOUT_S
    retry: RetryConfig = field(default_factory=RetryConfig)
    on_progress: ProgressCallback | None = None
    on_results: ResultsCallback | None = None


def unprocessed_items(
    batches: Sequence[Batch], results: Sequence[MiniBatchResult],
) -> list[WorkItem]:
    """Items of mini-batches that have no result (not reached)."""
    done = {(r.batch_number, r.mini_batch_number) for r in results}
    return [
        item
        for batch in batches
        for mini_batch in batch.mini_batches
        if (batch.batch_number, mini_batch.mini_batch_number) not in done
        for item in mini_batch.items
    ]


def _failed(items: Sequence[WorkItem], error_type: ErrorType, message: str) -> list[FailedScan]:
    return [
        FailedScan(scan_id=item.scan_id, url=item.url, error_type=error_type, error_message=message)
        for item in items
    ]


class MiniBatchProcessor:
    """Drive the worker over organised batches."""

    def __init__(
        self,
        invoker: BaseWorkerInvoker,
        options: ProcessorOptions | None = None,
        checkpoint_manager: CheckpointManager | None = None,
        shutdown: ShutdownContext | None = None,
        prompt_template: str | None = None,
    ) -> None:
        self._invoker = invoker
        self._options = options or ProcessorOptions()
        self._checkpoint = checkpoint_manager
        self._shutdown = shutdown
        self._template = prompt_template
        self._stopped_early = False

    @property
    def stopped_early(self) -> bool:
        """True when the last process_all_batches() run was cut by shutdown."""
        return self._stopped_early

    async def process_all_batches(self, batches: Sequence[Batch]) -> list[MiniBatchResult]:
        """Process every mini-batch sequentially.

        Returns:
            One MiniBatchResult per mini-batch reached. Mini-batches not
            reached because of shutdown have no entry; see
            unprocessed_items().
        """
        self._stopped_early = False
        total_mini_batches = count_mini_batches(batches)
        total_items = sum(len(batch.items) for batch in batches)
        results: list[MiniBatchResult] = []
        processed_items = successful = failed = 0
        position = 0

        for batch in batches:
            logger.info(
                "Starting batch %d/%d (%d scans)",
                batch.batch_number, len(batches), len(batch.items),
            )
            for mini_batch in batch.mini_batches:
                if self._shutdown is not None and self._shutdown.requested:
                    self._stopped_early = True
                    logger.warning(
                        "Shutdown requested, stopping before batch %d mini-batch %d",
                        batch.batch_number, mini_batch.mini_batch_number,
                    )
                    return results

                result = await self.process_mini_batch(mini_batch, batch.batch_number)
                results.append(result)
                position += 1
                processed_items += len(mini_batch.items)
                successful += len(result.results)
                failed += len(result.failed_scans)

                if self._options.on_progress is not None:
                    self._options.on_progress(ProcessingProgress(
                        batch_number=batch.batch_number,
                        total_batches=len(batches),
                        mini_batch_number=mini_batch.mini_batch_number,
                        total_mini_batches=total_mini_batches,
                        processed_items=processed_items,
                        total_items=total_items,
                        successful=successful,
                        failed=failed,
                    ))

                if position < total_mini_batches:
                    await self._delay()

        return results

    async def process_mini_batch(self, mini_batch: MiniBatch, batch_number: int) -> MiniBatchResult:
        """Run one mini-batch through the worker. Never raises for worker failures."""
        items = list(mini_batch.items)
        number = mini_batch.mini_batch_number
        set_batch_context(batch_number, number)
        t0 = time.perf_counter()
        logger.info(
            "Processing batch %d, mini-batch %d (%d scans)", batch_number, number, len(items),
        )

        def elapsed_ms() -> int:
            return int((time.perf_counter() - t0) * 1000)

        try:
            prompt = generate_prompt(items, self._template)

            async def attempt() -> tuple[InvocationResult, ParsedResults]:
                invocation = await self._invoker.invoke(prompt, self._options.timeout_s)
                parsed = parse_results(invocation.output, items)
                if not parsed.results:
                    raise MalformedOutputError(
                        "No valid results found in worker output", invocation.duration_ms,
                    )
                return invocation, parsed

            (invocation, parsed), attempts = await invoke_with_retry(
                attempt,
                self._options.retry,
                shutdown=self._shutdown,
                label=f"Mini-batch {batch_number}.{number}",
            )
        except WorkerRetryExhausted as e:
            failed = _failed(items, e.error_type, str(e.last_error))
            self._log_failures(failed)
            return MiniBatchResult(
                batch_number=batch_number,
                mini_batch_number=number,
                failed_scans=failed,
                duration_ms=elapsed_ms(),
                attempts=e.attempts,
            )
        except Exception as e:
            logger.exception("Unexpected error in batch %d mini-batch %d", batch_number, number)
            failed = _failed(items, ErrorType.UNKNOWN, str(e) or type(e).__name__)
            return MiniBatchResult(
                batch_number=batch_number,
                mini_batch_number=number,
                failed_scans=failed,
                duration_ms=elapsed_ms(),
                attempts=1,
            )

        results = self._with_duration(parsed.results, invocation.duration_ms)
        failed = _failed(
            parsed.missing, ErrorType.MISSING_RESULT, "No result returned for scan in worker output",
        )
        self._log_failures(failed)
        if results and self._options.on_results is not None:
            self._options.on_results(results)
        self._checkpoint_successes(results, batch_number, number)

        duration_ms = elapsed_ms()
        logger.info(
            "Mini-batch %d completed: %d succeeded, %d failed (%dms)",
            number, len(results), len(failed), duration_ms,
        )
        return MiniBatchResult(
            batch_number=batch_number,
            mini_batch_number=number,
            results=results,
            failed_scans=failed,
            duration_ms=duration_ms,
            attempts=attempts,
        )

    # --- Internal ---

    @staticmethod
    def _with_duration(results: list[ScanResult], duration_ms: int) -> list[ScanResult]:
        """Split the invocation time evenly across the results."""
        per_item = duration_ms // len(results) if results else 0
        return [
            r if r.duration_ms is not None else r.model_copy(update={"duration_ms": per_item})
            for r in results
        ]

    def _checkpoint_successes(self, results: list[ScanResult], batch_number: int, number: int) -> None:
        if self._checkpoint is None or not results:
            return
        self._checkpoint.mark_processed([r.scan_id for r in results], batch_number, number)
        try:
            self._checkpoint.flush()
        except OSError as e:
            # Ids stay buffered and go out with the next flush
            logger.error("Checkpoint write failed: %s", e)

    @staticmethod
    def _log_failures(failed: list[FailedScan]) -> None:
        for scan in failed:
            logger.debug(
                "Scan %s (%s) failed [%s]: %s",
                scan.scan_id, scan.url, scan.error_type.value, scan.error_message,
            )

    async def _delay(self) -> None:
        delay = self._options.delay_s
        if delay <= 0:
            return
        logger.debug("Waiting %.1fs before next mini-batch", delay)
        if self._shutdown is not None:
            await self._shutdown.sleep(delay)
        else:
            await asyncio.sleep(delay)

# src/main.py — v1
"""CLI entry point — process pending-scan CSVs through the AI worker.

Usage:
    ai-scan --input scans.csv [options]          single-file mode
    ai-scan --input-dir /var/ai-scan/inbox [...]  directory mode (cron)
    ai-scan --check-prerequisites

Exit codes: 0 completed (or interrupted by a signal), 1 partial failure,
2 complete failure, 3 prerequisites missing, 4 lock held by another
instance, 5 invalid arguments.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO, NoReturn

from pydantic import ValidationError

from aiscan.batch.models import FailedScan, ProcessingProgress, ProcessingSummary, SummaryStats
from aiscan.batch.organizer import count_mini_batches, organize_batches
from aiscan.batch.processor import MiniBatchProcessor, ProcessorOptions, unprocessed_items
from aiscan.batch.scanner import DirectoryScanner
from aiscan.batch.summary import exit_code_for, generate_summary, print_json_summary
from aiscan.config.settings import (
    MAX_MINI_BATCH_SIZE,
    MIN_MINI_BATCH_SIZE,
    ConfigurationError,
    Settings,
    load_settings,
)
from aiscan.core.models import ExitCode, ScanResult
from aiscan.core.shutdown import ShutdownContext, install_signal_handlers, remove_signal_handlers
from aiscan.llm.invoker import BaseWorkerInvoker, ClaudeCodeInvoker
from aiscan.llm.prerequisites import (
    are_prerequisites_met,
    check_prerequisites,
    get_installation_instructions,
)
from aiscan.llm.prompt import TemplateValidationError, load_custom_template, validate_template
from aiscan.llm.retry import RetryConfig
from aiscan.llm.token_budget import TokenLedger
from aiscan.llm.transformer import transform_to_import_format
from aiscan.logging.context import clear_context, set_file_context
from aiscan.logging.logger import setup_logging
from aiscan.storage.checkpoint import CheckpointManager
from aiscan.storage.csv_reader import parse_input_csv
from aiscan.storage.csv_writer import generate_output_path, write_csv, write_failed_scans_csv
from aiscan.storage.lock import LockManager
from aiscan.version import __version__

logger = logging.getLogger(__name__)


class _ArgumentParser(argparse.ArgumentParser):
    """argparse with the tool's own exit code for usage errors."""

    def error(self, message: str) -> NoReturn:
        self.print_usage(sys.stderr)
        self.exit(ExitCode.INVALID_ARGUMENTS, f"{self.prog}: error: {message}\n")


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    try:
        settings = load_settings()
    except (ConfigurationError, ValidationError) as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return ExitCode.INVALID_ARGUMENTS

    parser = _build_parser(settings)
    args = parser.parse_args(argv)
    _validate_args(parser, args)

    _setup_logging(args, settings)

    if args.check_prerequisites:
        return asyncio.run(_cmd_check_prerequisites(settings))

    try:
        template = _load_template(args.prompt_template)
    except TemplateValidationError as exc:
        logger.error("%s", exc)
        return ExitCode.INVALID_ARGUMENTS

    shutdown = ShutdownContext()
    invoker = ClaudeCodeInvoker(settings.worker_command, settings.worker_args_list)
    try:
        return asyncio.run(_run(args, settings, invoker, shutdown, template))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        shutdown.cleanup()
        return ExitCode.SUCCESS
    except Exception as exc:
        logger.error("Fatal error: %s", exc, exc_info=args.verbose)
        shutdown.cleanup()
        return ExitCode.COMPLETE_FAILURE


def run() -> None:
    """Console-script wrapper."""
    sys.exit(main())


# === ARGUMENTS ===


def _positive_int(value: str) -> int:
    try:
        parsed = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid number: {value!r}") from None
    if parsed < 1:
        raise argparse.ArgumentTypeError(f"must be >= 1, got {parsed}")
    return parsed


def _mini_batch_size(value: str) -> int:
    parsed = _positive_int(value)
    if not MIN_MINI_BATCH_SIZE <= parsed <= MAX_MINI_BATCH_SIZE:
        raise argparse.ArgumentTypeError(
            f"mini-batch size must be between {MIN_MINI_BATCH_SIZE} "
            f"and {MAX_MINI_BATCH_SIZE}, got: {parsed}"
        )
    return parsed


def _non_negative_float(value: str) -> float:
    try:
        parsed = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid number: {value!r}") from None
    if parsed < 0:
        raise argparse.ArgumentTypeError(f"must be >= 0, got {parsed}")
    return parsed


def _build_parser(settings: Settings) -> argparse.ArgumentParser:
    """Build CLI argument parser. Defaults come from settings."""
    parser = _ArgumentParser(
        prog="ai-scan",
        description=f"ai-scan v{__version__} — process accessibility scans with an AI worker",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}",
    )

    source = parser.add_mutually_exclusive_group()
    source.add_argument("-i", "--input", type=Path, help="Single CSV file to process")
    source.add_argument("-d", "--input-dir", type=Path, help="Directory to scan for CSV files")

    parser.add_argument(
        "-o", "--output", default="./",
        help="Output file or directory (default: ./)",
    )
    parser.add_argument(
        "-b", "--batch-size", type=_positive_int, default=settings.batch_size,
        help=f"Scans per batch (default: {settings.batch_size})",
    )
    parser.add_argument(
        "-m", "--mini-batch-size", type=_mini_batch_size, default=settings.mini_batch_size,
        help=f"Scans per worker invocation, 1-10 (default: {settings.mini_batch_size})",
    )
    parser.add_argument(
        "--delay", type=_non_negative_float, default=settings.delay_seconds,
        help=f"Seconds between mini-batches (default: {settings.delay_seconds:g})",
    )
    parser.add_argument(
        "--start-batch", type=_positive_int, default=1,
        help="Skip batches before this number (default: 1)",
    )
    parser.add_argument(
        "--timeout", type=_positive_int, default=settings.timeout_ms,
        help=f"Worker timeout in milliseconds (default: {settings.timeout_ms})",
    )
    parser.add_argument(
        "--retries", type=_positive_int, default=settings.retries,
        help=f"Maximum attempts per mini-batch (default: {settings.retries})",
    )
    parser.add_argument(
        "--max-files", type=_positive_int, default=None,
        help="Max CSV files to process per invocation (directory mode)",
    )
    parser.add_argument("-l", "--log", default=None, help="Log file or directory")

    checkpoint = parser.add_mutually_exclusive_group()
    checkpoint.add_argument("-r", "--resume", action="store_true", help="Resume from checkpoint")
    checkpoint.add_argument(
        "--clear-checkpoint", action="store_true", help="Clear checkpoint and start fresh",
    )

    parser.add_argument("--prompt-template", type=Path, default=None, help="Custom prompt template")
    parser.add_argument("--dry-run", action="store_true", help="Show the batch plan without processing")
    parser.add_argument(
        "--check-prerequisites", action="store_true", help="Only validate the environment",
    )

    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    verbosity.add_argument("-q", "--quiet", action="store_true", help="Warnings and errors only")

    parser.add_argument(
        "-j", "--json-summary", action="store_true", help="Print a JSON summary on stdout",
    )
    return parser


def _validate_args(parser: argparse.ArgumentParser, args: argparse.Namespace) -> None:
    if args.check_prerequisites:
        return
    if args.input is None and args.input_dir is None:
        parser.error("one of the arguments -i/--input -d/--input-dir is required")
    if args.mini_batch_size > args.batch_size:
        parser.error("--mini-batch-size must not exceed --batch-size")
    if args.max_files is not None and args.input_dir is None:
        parser.error("--max-files requires --input-dir")


def _setup_logging(args: argparse.Namespace, settings: Settings) -> None:
    """Configure logging for CLI usage. Directory mode is quiet by default."""
    if args.verbose:
        level = "DEBUG"
    elif args.quiet or args.input_dir is not None:
        level = "WARNING"
    else:
        level = settings.log_level
    setup_logging(
        level=level,
        log_format=settings.log_format,
        log_file=args.log,
        rotation=settings.log_rotation,
        retention=settings.log_retention,
    )


def _load_template(path: Path | None) -> str | None:
    if path is None:
        return None
    text = load_custom_template(path)
    validate_template(text)
    return text


# === COMMANDS ===


async def _cmd_check_prerequisites(settings: Settings) -> int:
    result = await check_prerequisites(settings.worker_command)
    mark = "ok" if result.installed else "missing"
    print(f"{result.command} CLI: {mark}")
    if result.version:
        print(f"  Version: {result.version}")
    if not are_prerequisites_met(result):
        for error in result.errors:
            print(f"  - {error}")
        for line in get_installation_instructions(result):
            print(f"  {line}")
        return ExitCode.PREREQUISITES_MISSING
    print("All prerequisites are met")
    return ExitCode.SUCCESS


async def _run(
    args: argparse.Namespace,
    settings: Settings,
    invoker: BaseWorkerInvoker,
    shutdown: ShutdownContext,
    template: str | None,
) -> int:
    loop = asyncio.get_running_loop()
    install_signal_handlers(shutdown, loop)
    try:
        if args.input_dir is not None:
            return await run_directory(args, settings, invoker, shutdown, template)
        return await run_single_file(args, settings, invoker, shutdown, template)
    finally:
        remove_signal_handlers(loop)
        clear_context()


# === FILE PROCESSING ===


@dataclass
class FileOutcome:
    """Counters and artefacts of one processed input file."""

    total: int = 0
    successful: int = 0
    failed: int = 0
    skipped: int = 0
    output_file: str | None = None
    failed_file: str | None = None
    errors: list[str] = field(default_factory=list)
    interrupted: bool = False


def _prepare_checkpoint(
    manager: CheckpointManager, input_key: str, args: argparse.Namespace,
) -> set[str]:
    """Set up the checkpoint for input_key and return already-processed ids."""
    if args.clear_checkpoint and not args.dry_run:
        manager.clear_checkpoint()
        logger.info("Checkpoint cleared, starting fresh")

    if args.resume:
        checkpoint = manager.load_checkpoint()
        if checkpoint is not None and checkpoint.input_file != input_key:
            logger.warning(
                "Checkpoint belongs to %s, not %s; starting from the beginning",
                checkpoint.input_file, input_key,
            )
            checkpoint = None
        if checkpoint is not None:
            logger.info(
                "Resuming from checkpoint: %d scans already processed",
                len(checkpoint.processed_scan_ids),
            )
            return set(checkpoint.processed_scan_ids)
        logger.info("No checkpoint found, starting from beginning")

    if not args.dry_run:
        manager.save_checkpoint(manager.init_checkpoint(input_key))
    return set()


def _print_plan(batches: list, total_items: int, args: argparse.Namespace, out: IO[str]) -> None:
    print("=== Dry Run - Batch Plan ===", file=out)
    print(f"Total batches: {len(batches)}", file=out)
    print(f"Total mini-batches: {count_mini_batches(batches)}", file=out)
    print(f"Total URLs: {total_items}", file=out)
    print(f"Batch size: {args.batch_size}", file=out)
    print(f"Mini-batch size: {args.mini_batch_size}", file=out)
    for batch in batches:
        print(
            f"  Batch {batch.batch_number}: {len(batch.items)} scans, "
            f"{len(batch.mini_batches)} mini-batches",
            file=out,
        )


class _ResultSink:
    """Append each mini-batch's import rows to the results file as it lands.

    Rows reach the file before their ids reach the checkpoint, so a crash
    never leaves checkpointed scans without output.
    """

    def __init__(self, path: Path, settings: Settings, append: bool = False) -> None:
        self.path = path
        self.ledger = TokenLedger()
        self._settings = settings
        self._append = append
        self._written = False

    def write(self, results: list[ScanResult]) -> None:
        rows = transform_to_import_format(
            results,
            ai_model=self._settings.ai_model,
            base_prompt_tokens=self._settings.base_prompt_tokens,
            default_processing_time_s=self._settings.default_processing_time_s,
        )
        write_csv(self.path, rows, append=self._append or self._written)
        self._written = True
        self.ledger.record_rows(rows)

    def finish(self) -> None:
        """Leave a header-only file when no mini-batch produced results."""
        if not self._written:
            write_csv(self.path, [], append=self._append)
            self._written = True


def _log_progress(progress: ProcessingProgress) -> None:
    percent = 100 * progress.processed_items // max(progress.total_items, 1)
    logger.info(
        "Progress: %d/%d scans (%d%%), %d succeeded, %d failed",
        progress.processed_items, progress.total_items, percent,
        progress.successful, progress.failed,
    )


async def process_file(
    path: Path,
    args: argparse.Namespace,
    settings: Settings,
    invoker: BaseWorkerInvoker,
    checkpoint_manager: CheckpointManager,
    shutdown: ShutdownContext,
    template: str | None = None,
    append_output: bool = False,
) -> FileOutcome:
    """Parse, batch, process and write the results of one input CSV.

    Raises:
        CsvParseError: If the input cannot be read.
        OSError: If outputs or the checkpoint cannot be written.
    """
    set_file_context(path.name)
    outcome = FileOutcome()

    parsed = parse_input_csv(path)
    outcome.skipped = len(parsed.skipped)
    for row in parsed.skipped:
        logger.debug("Row %d skipped: %s", row.row, row.reason)
    logger.info(
        "Parsed %d scans (%d skipped, %d total rows)",
        len(parsed.scans), len(parsed.skipped), parsed.total_rows,
    )
    if not parsed.scans:
        logger.error("No valid scans found in %s", path.name)
        outcome.errors.append(f"{path.name}: No valid scans found")
        return outcome
    outcome.total = parsed.total_rows

    input_key = str(path.resolve())
    done_ids = _prepare_checkpoint(checkpoint_manager, input_key, args)
    items = [item for item in parsed.scans if item.scan_id not in done_ids]
    outcome.skipped += len(parsed.scans) - len(items)

    batches = organize_batches(items, args.batch_size, args.mini_batch_size)
    if args.start_batch > 1:
        before = [b for b in batches if b.batch_number < args.start_batch]
        outcome.skipped += sum(len(b.items) for b in before)
        batches = [b for b in batches if b.batch_number >= args.start_batch]
    logger.info(
        "Organized into %d batches with %d mini-batches", len(batches), count_mini_batches(batches),
    )

    if args.dry_run:
        out = sys.stderr if args.json_summary else sys.stdout
        _print_plan(batches, sum(len(b.items) for b in batches), args, out)
        return outcome

    if not batches:
        logger.info("No scans left to process in %s", path.name)
        return outcome

    shutdown.checkpoint_manager = checkpoint_manager
    # Resumed runs add to the rows an earlier run already wrote
    sink = _ResultSink(
        generate_output_path(args.output, path.stem), settings,
        append=append_output or bool(done_ids),
    )
    processor = MiniBatchProcessor(
        invoker,
        ProcessorOptions(
            delay_s=args.delay,
            timeout_s=args.timeout / 1000,
            retry=RetryConfig(
                max_attempts=args.retries,
                base_delay_s=settings.retry_base_delay_s,
                rate_limit_base_delay_s=settings.rate_limit_base_delay_s,
                max_delay_s=settings.max_retry_delay_s,
            ),
            on_progress=_log_progress,
            on_results=sink.write,
        ),
        checkpoint_manager=checkpoint_manager,
        shutdown=shutdown,
        prompt_template=template,
    )
    mini_results = await processor.process_all_batches(batches)
    outcome.interrupted = processor.stopped_early
    unreached = unprocessed_items(batches, mini_results)
    if unreached:
        logger.warning("%d scans not reached before shutdown", len(unreached))
    outcome.skipped += len(unreached)

    scan_results = [r for mb in mini_results for r in mb.results]
    failed_scans: list[FailedScan] = [f for mb in mini_results for f in mb.failed_scans]
    outcome.successful = len(scan_results)
    outcome.failed = len(failed_scans)
    logger.info(
        "Processing complete: %d successful, %d failed", outcome.successful, outcome.failed,
    )

    sink.finish()
    outcome.output_file = str(sink.path)
    logger.info(
        "Estimated tokens used: %d across %d scans", sink.ledger.total, sink.ledger.scan_count,
    )

    failed_path = write_failed_scans_csv(sink.path.parent, failed_scans, path.stem)
    if failed_path is not None:
        logger.warning("Failed scans written to: %s", failed_path)
        outcome.failed_file = str(failed_path)

    checkpoint_manager.flush()
    return outcome


def _finish(stats: SummaryStats, t0: float, args: argparse.Namespace, interrupted: bool) -> int:
    stats.duration_seconds = time.perf_counter() - t0
    summary = generate_summary(stats)
    _report(summary, args)
    if interrupted:
        return ExitCode.SUCCESS
    return exit_code_for(summary)


def _report(summary: ProcessingSummary, args: argparse.Namespace) -> None:
    if args.json_summary:
        print_json_summary(summary)
        return
    logger.info("=== Processing Summary ===")
    logger.info("Status: %s", summary.status)
    logger.info("Files processed: %d", summary.files_processed)
    logger.info("Total: %d", summary.total)
    logger.info("Successful: %d", summary.successful)
    logger.info("Failed: %d", summary.failed)
    logger.info("Skipped: %d", summary.skipped)
    logger.info("Duration: %.2fs", summary.duration_seconds)
    if summary.output_files:
        logger.info("Output files: %s", ", ".join(summary.output_files))
    if summary.failed_files:
        logger.info("Failed files: %s", ", ".join(summary.failed_files))


def _add(stats: SummaryStats, outcome: FileOutcome) -> None:
    stats.total += outcome.total
    stats.successful += outcome.successful
    stats.failed += outcome.failed
    stats.skipped += outcome.skipped
    stats.errors.extend(outcome.errors)
    if outcome.output_file:
        stats.output_files.append(outcome.output_file)
    if outcome.failed_file:
        stats.failed_files.append(outcome.failed_file)


# === MODES ===


async def run_single_file(
    args: argparse.Namespace,
    settings: Settings,
    invoker: BaseWorkerInvoker,
    shutdown: ShutdownContext,
    template: str | None = None,
) -> int:
    """Process --input. No lock: one writer per checkpoint is an operator contract."""
    t0 = time.perf_counter()
    logger.info("AI Scan CLI - Single File Mode (input: %s)", args.input)

    checkpoint_manager = CheckpointManager(settings.checkpoint_file)
    outcome = await process_file(
        Path(args.input), args, settings, invoker, checkpoint_manager, shutdown, template,
    )
    if args.dry_run:
        return ExitCode.SUCCESS

    if outcome.interrupted:
        for error in shutdown.cleanup():
            logger.error("Shutdown cleanup: %s", error)

    stats = SummaryStats(files_processed=1)
    _add(stats, outcome)
    return _finish(stats, t0, args, outcome.interrupted)


async def run_directory(
    args: argparse.Namespace,
    settings: Settings,
    invoker: BaseWorkerInvoker,
    shutdown: ShutdownContext,
    template: str | None = None,
) -> int:
    """Process every pending CSV of --input-dir under the directory lock."""
    t0 = time.perf_counter()
    directory = Path(args.input_dir)
    logger.info("AI Scan CLI - Directory Mode (input: %s)", directory)
    if not directory.is_dir():
        logger.error("Not a directory: %s", directory)
        return ExitCode.INVALID_ARGUMENTS

    scanner = DirectoryScanner(excluded_names=(settings.lock_file_name, settings.checkpoint_file_name))
    stats = SummaryStats()

    if args.dry_run:
        found = scanner.scan_directory(directory, args.max_files)
        checkpoint_manager = CheckpointManager(directory / settings.checkpoint_file_name)
        for file_name in found.files:
            await process_file(
                Path(file_name), args, settings, invoker, checkpoint_manager, shutdown, template,
            )
        return ExitCode.SUCCESS

    lock = LockManager(directory / settings.lock_file_name, settings.stale_lock_hours)
    if not lock.acquire_lock():
        info = lock.read_lock_info()
        if info is not None:
            logger.warning(
                "Another instance is already running (PID %d on %s since %s)",
                info.pid, info.hostname, info.acquired_at.isoformat(),
            )
        else:
            logger.warning("Another instance is already running (lock %s)", lock.lock_path)
        return ExitCode.LOCK_EXISTS
    shutdown.lock_manager = lock
    logger.info("Lock acquired (PID %d)", os.getpid())

    checkpoint_manager = CheckpointManager(directory / settings.checkpoint_file_name)
    shutdown.checkpoint_manager = checkpoint_manager
    output = Path(args.output).expanduser()
    # One shared file is appended to; otherwise one results file per input
    append_output = output.suffix.lower() == ".csv" or output.is_file()
    interrupted = False
    try:
        scanner.ensure_subdirectories(directory)
        if not append_output:
            output.mkdir(parents=True, exist_ok=True)
        found = scanner.scan_directory(directory, args.max_files)
        if found.files:
            logger.info("Processing %d of %d total files", len(found.files), found.total_found)

        for file_name in found.files:
            if shutdown.requested:
                interrupted = True
                break
            path = Path(file_name)
            try:
                outcome = await process_file(
                    path, args, settings, invoker, checkpoint_manager, shutdown, template,
                    append_output=append_output,
                )
            except Exception as exc:
                logger.error("Failed to process %s: %s", path.name, exc, exc_info=args.verbose)
                stats.errors.append(f"{path.name}: {exc}")
                scanner.move_to_failed(path, directory)
                stats.files_processed += 1
                continue

            _add(stats, outcome)
            stats.files_processed += 1
            if outcome.interrupted:
                # Left in place so a --resume run picks it up
                interrupted = True
                break
            if outcome.successful > 0 or (outcome.failed == 0 and not outcome.errors):
                scanner.move_to_processed(path, directory)
            else:
                scanner.move_to_failed(path, directory)
    finally:
        for error in shutdown.cleanup():
            logger.error("Shutdown cleanup: %s", error)
        clear_context()

    return _finish(stats, t0, args, interrupted or shutdown.requested)


if __name__ == "__main__":
    sys.exit(main())

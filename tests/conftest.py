# tests/conftest.py — v1
"""Shared test fixtures for all unit and integration tests.

Provides a scripted fake worker, sample work items and input CSVs.
No AI worker is spawned — every worker call is faked.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

import pytest

from aiscan.core.models import WorkItem
from aiscan.llm.retry import RetryConfig
from tests.fakes import FakeInvoker, input_rows, make_items, write_input_csv


@pytest.fixture
def sample_items() -> list[WorkItem]:
    """Five AA work items."""
    return make_items(5)


@pytest.fixture
def fake_invoker() -> FakeInvoker:
    return FakeInvoker()


@pytest.fixture
def no_wait_retry() -> RetryConfig:
    """Three attempts without backoff delays."""
    return RetryConfig(max_attempts=3, base_delay_s=0, rate_limit_base_delay_s=0, max_delay_s=0)


@pytest.fixture
def input_csv(tmp_path: Path) -> Path:
    """Input CSV with ten valid rows."""
    return write_input_csv(tmp_path / "scans.csv", input_rows(10))


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Run every test from tmp_path with no AI_SCAN_* variables leaking in."""
    for key in list(os.environ):
        if key.startswith("AI_SCAN_"):
            monkeypatch.delenv(key)
    monkeypatch.chdir(tmp_path)


@pytest.fixture(autouse=True)
def _reset_aiscan_logger():
    """Undo setup_logging() calls made by CLI tests."""
    yield
    logger = logging.getLogger("aiscan")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)

# tests/unit/logging/test_logger.py — v1
"""Tests for logging/logger.py — formatters and setup."""

from __future__ import annotations

import io
import json
import logging

import pytest

from aiscan.logging.context import clear_context, set_batch_context, set_file_context
from aiscan.logging.logger import JsonFormatter, TextFormatter, get_logger, setup_logging


def _record(msg: str = "hello", level: int = logging.INFO) -> logging.LogRecord:
    return logging.LogRecord("aiscan.test", level, __file__, 1, msg, None, None)


@pytest.fixture(autouse=True)
def _reset():
    clear_context()
    yield
    clear_context()


class TestJsonFormatter:
    def test_basic_fields(self):
        data = json.loads(JsonFormatter().format(_record()))
        assert data["level"] == "INFO"
        assert data["logger"] == "aiscan.test"
        assert data["message"] == "hello"
        assert "context" not in data

    def test_includes_context(self):
        set_file_context("scans.csv")
        set_batch_context(1, 2)
        data = json.loads(JsonFormatter().format(_record()))
        assert data["context"] == {"input_file": "scans.csv", "batch": 1, "mini_batch": 2}


class TestTextFormatter:
    def test_plain(self):
        line = TextFormatter().format(_record("processing"))
        assert "[INFO    ]" in line
        assert line.endswith("processing")

    def test_context_prefix(self):
        set_file_context("scans.csv")
        set_batch_context(3, 1)
        line = TextFormatter().format(_record("go"))
        assert "[scans.csv] (batch 3.1) go" in line


class TestSetupLogging:
    def test_console_stream_and_level(self):
        stream = io.StringIO()
        setup_logging(level="WARNING", stream=stream)
        get_logger("x").info("hidden")
        get_logger("x").warning("shown")
        output = stream.getvalue()
        assert "hidden" not in output
        assert "shown" in output

    def test_reinit_does_not_duplicate(self):
        stream = io.StringIO()
        setup_logging(stream=stream)
        setup_logging(stream=stream)
        assert len(logging.getLogger("aiscan").handlers) == 1

    def test_log_file(self, tmp_path):
        log_file = tmp_path / "logs" / "run.log"
        setup_logging(log_file=str(log_file), stream=io.StringIO(), log_format="json")
        get_logger("x").info("to file")
        for handler in logging.getLogger("aiscan").handlers:
            handler.flush()
        line = log_file.read_text().strip().splitlines()[-1]
        assert json.loads(line)["message"] == "to file"

    def test_get_logger_namespace(self):
        assert get_logger("batch").name == "aiscan.batch"

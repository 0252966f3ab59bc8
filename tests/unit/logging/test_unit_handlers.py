# tests/unit/logging/test_handlers.py — v1
"""Tests for logging/handlers.py — log path resolution and rotation."""

from __future__ import annotations

from datetime import datetime

import pytest

from aiscan.logging.handlers import _parse_size, create_rotating_handler, resolve_log_path


class TestParseSize:
    def test_mb(self):
        assert _parse_size("10MB") == 10 * 1024 * 1024

    def test_kb(self):
        assert _parse_size("512KB") == 512 * 1024

    def test_case_insensitive(self):
        assert _parse_size("10mb") == 10 * 1024 * 1024

    def test_invalid_format(self):
        with pytest.raises(ValueError, match="Invalid size"):
            _parse_size("10bytes")


class TestResolveLogPath:
    def test_file_path_kept(self, tmp_path):
        target = tmp_path / "run.log"
        assert resolve_log_path(str(target)) == target

    def test_directory_gets_dated_name(self, tmp_path):
        path = resolve_log_path(str(tmp_path), now=datetime(2026, 3, 9, 8, 0))
        assert path == tmp_path / "ai-scan-20260309.log"

    def test_trailing_separator_means_directory(self, tmp_path):
        path = resolve_log_path(str(tmp_path / "logs") + "/", now=datetime(2026, 3, 9))
        assert path.name == "ai-scan-20260309.log"


class TestCreateRotatingHandler:
    def test_creates_handler(self, tmp_path):
        handler = create_rotating_handler(str(tmp_path / "test.log"), rotation="1MB", retention=5)
        try:
            assert handler.maxBytes == 1024 * 1024
            assert handler.backupCount == 5
        finally:
            handler.close()

    def test_creates_parent_dirs(self, tmp_path):
        log_file = tmp_path / "deep" / "nested" / "test.log"
        handler = create_rotating_handler(str(log_file))
        handler.close()
        assert log_file.parent.exists()

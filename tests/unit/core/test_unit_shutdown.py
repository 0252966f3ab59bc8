# tests/unit/core/test_shutdown.py — v1
"""Tests for core/shutdown.py — shutdown flag, interruptible sleep, cleanup."""

from __future__ import annotations

import asyncio
import time
from unittest.mock import MagicMock

import pytest

from aiscan.core.shutdown import ShutdownContext


class TestShutdownRequest:
    def test_initially_not_requested(self):
        assert ShutdownContext().requested is False

    def test_request_sets_flag_and_signal(self):
        ctx = ShutdownContext()
        ctx.request("SIGTERM")
        assert ctx.requested is True
        assert ctx.signal_name == "SIGTERM"

    def test_second_request_ignored(self):
        ctx = ShutdownContext()
        ctx.request("SIGTERM")
        ctx.request("SIGINT")
        assert ctx.signal_name == "SIGTERM"


class TestSleep:
    @pytest.mark.asyncio
    async def test_full_sleep_returns_false(self):
        ctx = ShutdownContext()
        assert await ctx.sleep(0.01) is False

    @pytest.mark.asyncio
    async def test_wakes_early_on_request(self):
        ctx = ShutdownContext()
        loop = asyncio.get_running_loop()
        loop.call_later(0.01, ctx.request, "SIGINT")
        t0 = time.perf_counter()
        assert await ctx.sleep(5) is True
        assert time.perf_counter() - t0 < 2

    @pytest.mark.asyncio
    async def test_zero_sleep_reports_state(self):
        ctx = ShutdownContext()
        assert await ctx.sleep(0) is False
        ctx.request()
        assert await ctx.sleep(0) is True


class TestCleanup:
    def test_nothing_registered(self):
        assert ShutdownContext().cleanup() == []

    def test_flushes_and_releases(self):
        checkpoint = MagicMock()
        lock = MagicMock()
        ctx = ShutdownContext(checkpoint_manager=checkpoint, lock_manager=lock)
        assert ctx.cleanup() == []
        checkpoint.flush.assert_called_once()
        lock.release_lock.assert_called_once()
        assert ctx.lock_manager is None

    def test_lock_released_even_if_flush_fails(self):
        checkpoint = MagicMock()
        checkpoint.flush.side_effect = OSError("disk full")
        lock = MagicMock()
        ctx = ShutdownContext(checkpoint_manager=checkpoint, lock_manager=lock)
        errors = ctx.cleanup()
        assert len(errors) == 1
        assert "disk full" in errors[0]
        lock.release_lock.assert_called_once()

    def test_release_failure_reported(self):
        lock = MagicMock()
        lock.release_lock.side_effect = OSError("read-only")
        errors = ShutdownContext(lock_manager=lock).cleanup()
        assert errors == ["lock release failed: read-only"]

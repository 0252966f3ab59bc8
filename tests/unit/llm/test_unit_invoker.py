# tests/unit/llm/test_invoker.py — v1
"""Tests for llm/invoker.py — worker subprocess invocation."""

from __future__ import annotations

import sys

import pytest

from aiscan.core.models import ErrorType
from aiscan.llm.invoker import (
    ClaudeCodeInvoker,
    MalformedOutputError,
    WorkerProcessError,
    WorkerRateLimitError,
    WorkerTimeoutError,
    is_rate_limited,
)


def _python_worker(code: str) -> ClaudeCodeInvoker:
    """Invoker running `python -c code <prompt>` in place of the AI CLI."""
    return ClaudeCodeInvoker(sys.executable, ("-c", code))


class TestIsRateLimited:
    @pytest.mark.parametrize("stdout,stderr,code,expected", [
        ("", "Rate limit exceeded", 1, True),
        ("too many requests, slow down", "", 1, True),
        ("", "rate_limit_error", 0, True),
        ("Summary: too many requests hit the rate limit page", "", 0, False),
        ("", "HTTP 429", 1, True),
        ("error 429", "", 1, True),
        ('{"results": [{"aiPriority": 429}]}', "", 0, False),
        ("all good", "", 0, False),
    ])
    def test_detection(self, stdout, stderr, code, expected):
        assert is_rate_limited(stdout, stderr, code) is expected


class TestErrorTypes:
    def test_error_type_per_class(self):
        assert WorkerTimeoutError("x").error_type == ErrorType.TIMEOUT
        assert WorkerRateLimitError("x").error_type == ErrorType.RATE_LIMIT
        assert WorkerProcessError("x").error_type == ErrorType.PROCESS_CRASH
        assert MalformedOutputError("x").error_type == ErrorType.INVALID_OUTPUT

    def test_duration_kept(self):
        assert WorkerTimeoutError("x", duration_ms=1500).duration_ms == 1500


class TestClaudeCodeInvoker:
    @pytest.mark.asyncio
    async def test_prompt_passed_as_last_argument(self):
        invoker = _python_worker("import sys; print(sys.argv[-1])")
        result = await invoker.invoke("review https://example.com", timeout_s=30)
        assert result.output.strip() == "review https://example.com"
        assert result.duration_ms >= 0

    @pytest.mark.asyncio
    async def test_nonzero_exit(self):
        invoker = _python_worker("import sys; sys.stderr.write('boom'); sys.exit(3)")
        with pytest.raises(WorkerProcessError, match="exited with code 3: boom"):
            await invoker.invoke("p", timeout_s=30)

    @pytest.mark.asyncio
    async def test_rate_limit(self):
        invoker = _python_worker("import sys; sys.stderr.write('Error: 429'); sys.exit(1)")
        with pytest.raises(WorkerRateLimitError):
            await invoker.invoke("p", timeout_s=30)

    @pytest.mark.asyncio
    async def test_successful_output_mentioning_rate_limit(self):
        invoker = _python_worker("print('Too many requests: the rate limit banner fails contrast')")
        result = await invoker.invoke("p", timeout_s=30)
        assert "rate limit" in result.output

    @pytest.mark.asyncio
    async def test_timeout_kills_process(self):
        invoker = _python_worker("import time; time.sleep(30)")
        with pytest.raises(WorkerTimeoutError, match="timed out after 200ms"):
            await invoker.invoke("p", timeout_s=0.2)

    @pytest.mark.asyncio
    async def test_missing_command(self, tmp_path):
        invoker = ClaudeCodeInvoker(str(tmp_path / "no-such-worker"), ())
        with pytest.raises(WorkerProcessError, match="Failed to spawn"):
            await invoker.invoke("p", timeout_s=5)

    def test_name(self):
        assert ClaudeCodeInvoker().name == "claude"

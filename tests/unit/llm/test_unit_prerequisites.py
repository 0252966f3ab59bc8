# tests/unit/llm/test_prerequisites.py — v1
"""Tests for llm/prerequisites.py — worker CLI availability check."""

from __future__ import annotations

import sys

import pytest

from aiscan.llm.prerequisites import (
    PrerequisiteResult,
    are_prerequisites_met,
    check_prerequisites,
    get_installation_instructions,
)


class TestCheckPrerequisites:
    @pytest.mark.asyncio
    async def test_installed(self):
        # The interpreter answers --version like any CLI
        result = await check_prerequisites(sys.executable)
        assert result.installed is True
        assert result.version
        assert are_prerequisites_met(result)

    @pytest.mark.asyncio
    async def test_missing(self, tmp_path):
        result = await check_prerequisites(str(tmp_path / "claude-missing"))
        assert result.installed is False
        assert "not installed" in result.errors[0]
        assert not are_prerequisites_met(result)


class TestInstructions:
    def test_claude(self):
        lines = get_installation_instructions(PrerequisiteResult(command="claude"))
        assert any("npm install -g @anthropic-ai/claude-code" in line for line in lines)

    def test_other_command(self):
        lines = get_installation_instructions(PrerequisiteResult(command="my-agent"))
        assert "my-agent" in lines[0]

    def test_installed_needs_nothing(self):
        assert get_installation_instructions(PrerequisiteResult(command="claude", installed=True)) == []

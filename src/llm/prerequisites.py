# src/llm/prerequisites.py — v1
"""Check that the worker CLI is installed before a run."""

from __future__ import annotations

import asyncio
import logging
import re

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

_VERSION_RE = re.compile(r"(\d+\.\d+\.\d+)")
_CHECK_TIMEOUT_S = 30.0


class PrerequisiteResult(BaseModel):
    command: str
    installed: bool = False
    version: str | None = None
    errors: list[str] = Field(default_factory=list)


async def check_prerequisites(command: str = "claude") -> PrerequisiteResult:
    """Run `<command> --version` and record whether it works."""
    result = PrerequisiteResult(command=command)
    try:
        proc = await asyncio.create_subprocess_exec(
            command, "--version",
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError:
        result.errors.append(f"{command} CLI is not installed.")
        return result
    except OSError as e:
        result.errors.append(f"Failed to check {command} CLI version: {e}")
        return result

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=_CHECK_TIMEOUT_S)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        result.errors.append(f"{command} --version did not answer within {_CHECK_TIMEOUT_S:.0f}s")
        return result

    if proc.returncode != 0:
        detail = stderr.decode("utf-8", errors="replace").strip()
        result.errors.append(
            f"Failed to check {command} CLI version (exit {proc.returncode}): {detail}"
        )
        return result

    text = stdout.decode("utf-8", errors="replace").strip()
    match = _VERSION_RE.search(text)
    result.installed = True
    result.version = match.group(1) if match else text
    logger.debug("%s version %s", command, result.version)
    return result


def get_installation_instructions(result: PrerequisiteResult) -> list[str]:
    if result.installed:
        return []
    if result.command != "claude":
        return [
            f"{result.command} CLI is not available.",
            f"Make sure '{result.command}' is installed and on PATH.",
        ]
    return [
        "Claude Code CLI is not installed.",
        "Install with: npm install -g @anthropic-ai/claude-code",
        "Then authenticate with: claude auth login",
    ]


def are_prerequisites_met(result: PrerequisiteResult) -> bool:
    return result.installed

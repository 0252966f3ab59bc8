# src/core/models.py — v1
"""Shared Pydantic domain models used across modules.

Scan records flow through the tool in three shapes:
    WorkItem    — one validated row of the input CSV (pending scan)
    ScanResult  — what the worker produced for a WorkItem
    ImportRow   — the flattened row written to the output CSV
"""

from __future__ import annotations

from enum import Enum, IntEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


WcagLevel = Literal["A", "AA", "AAA"]


class ErrorType(str, Enum):
    """Failure classification carried by FailedScan and worker errors."""

    TIMEOUT = "timeout"
    RATE_LIMIT = "rate_limit"
    PROCESS_CRASH = "process_crash"
    INVALID_OUTPUT = "invalid_output"
    MISSING_RESULT = "missing_result"
    INTERRUPTED = "interrupted"
    UNKNOWN = "unknown"


class ExitCode(IntEnum):
    """Process exit codes returned by the CLI."""

    SUCCESS = 0
    PARTIAL_FAILURE = 1
    COMPLETE_FAILURE = 2
    PREREQUISITES_MISSING = 3
    LOCK_EXISTS = 4
    INVALID_ARGUMENTS = 5


# === INPUT ===


class ExistingIssue(BaseModel):
    """Issue already detected by the automated scanner (from issues_json)."""

    model_config = ConfigDict(extra="allow", frozen=True, populate_by_name=True)

    id: str
    rule_id: str = Field(default="", alias="ruleId")
    wcag_criteria: str = Field(default="", alias="wcagCriteria")
    impact: str = "MODERATE"
    description: str = ""
    html_snippet: str = Field(default="", alias="htmlSnippet")
    css_selector: str = Field(default="", alias="cssSelector")


class WorkItem(BaseModel):
    """A pending scan parsed from one input CSV row. Immutable."""

    model_config = ConfigDict(frozen=True)

    scan_id: str
    url: str
    wcag_level: WcagLevel = "AA"
    email: str | None = None
    created_at: str | None = None
    page_title: str | None = None
    existing_issues: tuple[ExistingIssue, ...] = ()


# === WORKER OUTPUT ===


class Issue(BaseModel):
    """Issue discovered by the worker (discovery mode)."""

    id: str
    rule_id: str = ""
    wcag_criteria: str = ""
    impact: Literal["CRITICAL", "SERIOUS", "MODERATE", "MINOR"] = "MODERATE"
    description: str
    help_text: str = ""
    help_url: str = ""
    html_snippet: str = ""
    css_selector: str = ""
    ai_explanation: str = ""
    ai_fix_suggestion: str = ""
    ai_priority: int = 5


class AiIssueEnhancement(BaseModel):
    """AI explanation attached to an existing issue (enhancement mode)."""

    issue_id: str = Field(serialization_alias="issueId")
    ai_explanation: str = Field(default="", serialization_alias="aiExplanation")
    ai_fix_suggestion: str = Field(default="", serialization_alias="aiFixSuggestion")
    ai_priority: int = Field(default=5, serialization_alias="aiPriority")


class ScanResult(BaseModel):
    """Normalized worker result for a single scan."""

    scan_id: str
    url: str = ""
    summary: str | dict[str, Any] = ""
    remediation_plan: str | dict[str, Any] = ""
    issues: list[Issue] = Field(default_factory=list)
    ai_enhancements: list[AiIssueEnhancement] | None = None
    tokens_used: int | None = None
    duration_ms: int | None = None


# === OUTPUT ===


class ImportRow(BaseModel):
    """Row of the output CSV consumed by the downstream import."""

    scan_id: str = Field(min_length=1)
    ai_summary: str
    ai_remediation_plan: str
    ai_issues_json: str = "[]"
    tokens_used: int = Field(ge=0)
    ai_model: str
    processing_time: int = Field(ge=0)


IMPORT_COLUMNS: list[str] = list(ImportRow.model_fields)

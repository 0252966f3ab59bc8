# src/llm/transformer.py — v1
"""Convert worker ScanResults into output CSV rows (ImportRow)."""

from __future__ import annotations

import json
import math
from collections.abc import Sequence
from typing import Any

from aiscan.core.models import AiIssueEnhancement, ImportRow, ScanResult

DEFAULT_AI_MODEL = "claude-opus-4-5-20251101"
BASE_PROMPT_TOKENS = 2000
DEFAULT_PROCESSING_TIME_S = 60
CHARS_PER_TOKEN = 4


def _compact(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def _numbered(title: str, items: list[Any]) -> list[str]:
    return [title] + [f"  {i}. {item}" for i, item in enumerate(items, start=1)]


def format_summary(summary: str | dict[str, Any]) -> str:
    """Render a structured summary as one line of prose."""
    if isinstance(summary, str):
        return summary

    parts: list[str] = []
    if summary.get("totalIssues") is not None:
        parts.append(f"Found {summary['totalIssues']} accessibility issues.")
    critical = summary.get("criticalIssues")
    if isinstance(critical, (int, float)) and critical > 0:
        parts.append(f"{critical} critical issues require immediate attention.")
    serious = summary.get("seriousIssues")
    if isinstance(serious, (int, float)) and serious > 0:
        parts.append(f"{serious} serious issues significantly impact accessibility.")
    if summary.get("overallCompliance") is not None:
        parts.append(f"Overall compliance: {summary['overallCompliance']}.")
    if summary.get("complianceScore") is not None:
        parts.append(f"Compliance score: {summary['complianceScore']}%.")
    return " ".join(parts) if parts else _compact(summary)


def format_remediation_plan(plan: str | dict[str, Any]) -> str:
    """Render a structured plan (quickWins/shortTerm/longTerm) as text."""
    if isinstance(plan, str):
        return plan

    sections: list[str] = []
    for key, title in (
        ("quickWins", "QUICK WINS (immediate fixes):"),
        ("shortTerm", "SHORT-TERM IMPROVEMENTS:"),
        ("longTerm", "LONG-TERM CHANGES:"),
    ):
        items = plan.get(key)
        if isinstance(items, list) and items:
            if sections:
                sections.append("")
            sections.extend(_numbered(title, items))
    if plan.get("estimatedEffort") is not None:
        sections.append("")
        sections.append(f"Estimated effort: {plan['estimatedEffort']}")
    return "\n".join(sections).strip("\n") if sections else _compact(plan)


def ai_issues_json(result: ScanResult) -> str:
    """Enhancements as JSON; derived from discovered issues when absent."""
    if result.ai_enhancements:
        enhancements = result.ai_enhancements
    else:
        enhancements = [
            AiIssueEnhancement(
                issue_id=issue.id,
                ai_explanation=issue.ai_explanation,
                ai_fix_suggestion=issue.ai_fix_suggestion,
                ai_priority=issue.ai_priority,
            )
            for issue in result.issues
        ]
    return _compact([e.model_dump(by_alias=True) for e in enhancements])


def estimate_tokens(result: ScanResult, base_prompt_tokens: int = BASE_PROMPT_TOKENS) -> int:
    """Worker-reported tokens, else base prompt + output chars / 4."""
    if result.tokens_used is not None:
        return result.tokens_used

    def size(value: str | dict[str, Any]) -> int:
        return len(value) if isinstance(value, str) else len(_compact(value))

    if result.ai_enhancements is not None:
        details = [e.model_dump(by_alias=True) for e in result.ai_enhancements]
    else:
        details = [i.model_dump() for i in result.issues]
    output_chars = size(result.summary) + size(result.remediation_plan) + len(_compact(details))
    return base_prompt_tokens + math.ceil(output_chars / CHARS_PER_TOKEN)


def processing_time_s(result: ScanResult, default_s: int = DEFAULT_PROCESSING_TIME_S) -> int:
    if not result.duration_ms:
        return default_s
    return math.ceil(result.duration_ms / 1000)


def transform_to_import_format(
    results: Sequence[ScanResult],
    ai_model: str = DEFAULT_AI_MODEL,
    base_prompt_tokens: int = BASE_PROMPT_TOKENS,
    default_processing_time_s: int = DEFAULT_PROCESSING_TIME_S,
) -> list[ImportRow]:
    """Map each ScanResult to one ImportRow, preserving order."""
    return [
        ImportRow(
            scan_id=result.scan_id,
            ai_summary=format_summary(result.summary),
            ai_remediation_plan=format_remediation_plan(result.remediation_plan),
            ai_issues_json=ai_issues_json(result),
            tokens_used=estimate_tokens(result, base_prompt_tokens),
            ai_model=ai_model,
            processing_time=processing_time_s(result, default_processing_time_s),
        )
        for result in results
    ]

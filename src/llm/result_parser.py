# src/llm/result_parser.py — v1
"""Worker output parser.

The worker is asked for pure JSON but may wrap it in prose or markdown.
Extraction strategies are tried in order until one yields results:
    1. the whole output as JSON
    2. a ```json (or bare ```) fenced block
    3. the first balanced {...} object
    4. the first [{...}] array (tried before 3 when a "[" comes first)
Accepted shapes are {"results": [...]}, a bare list, or a single object.
"""

from __future__ import annotations

import json
import logging
import re
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from aiscan.core.models import AiIssueEnhancement, Issue, ScanResult, WorkItem

logger = logging.getLogger(__name__)

_IMPACT_LEVELS = ("CRITICAL", "SERIOUS", "MODERATE", "MINOR")
DEFAULT_PRIORITY = 5

_JSON_FENCE = re.compile(r"```json\s*\n(.*)", re.DOTALL)
_ANY_FENCE = re.compile(r"```\s*\n?(.*?)```", re.DOTALL)
_ARRAY_PATTERN = re.compile(r"\[\s*\{.*\}\s*\]", re.DOTALL)


@dataclass
class ParsedResults:
    """Results matched against the items of a mini-batch."""

    results: list[ScanResult] = field(default_factory=list)
    missing: list[WorkItem] = field(default_factory=list)
    unexpected_ids: list[str] = field(default_factory=list)
    raw_count: int = 0


# === EXTRACTION ===


def _loads(text: str) -> Any | None:
    try:
        return json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return None


def extract_from_markdown(output: str) -> str | None:
    """Return the JSON text of a fenced code block, if any."""
    match = _JSON_FENCE.search(output)
    if match:
        content = match.group(1)
        end = content.rfind("\n```")
        if end != -1:
            candidate = content[:end].strip()
            if _loads(candidate) is not None:
                return candidate

    match = _ANY_FENCE.search(output)
    if match:
        candidate = match.group(1).strip()
        if candidate.startswith(("{", "[")):
            return candidate
    return None


def extract_balanced_object(output: str) -> str | None:
    """Return the first {...} span with balanced braces that parses as JSON."""
    start = output.find("{")
    if start == -1:
        return None

    depth = 0
    in_string = False
    escape_next = False
    for i in range(start, len(output)):
        char = output[i]
        if escape_next:
            escape_next = False
            continue
        if char == "\\":
            escape_next = True
            continue
        if char == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                candidate = output[start:i + 1]
                if _loads(candidate) is not None:
                    return candidate
    return None


def _results_array(parsed: Any) -> list[Any]:
    if isinstance(parsed, list):
        return parsed
    if isinstance(parsed, dict):
        results = parsed.get("results")
        if isinstance(results, list):
            return results
        return [parsed]
    return []


def _array_match(output: str) -> str | None:
    match = _ARRAY_PATTERN.search(output)
    return match.group(0) if match else None


def extract_raw_results(output: str) -> list[Any]:
    """Run the extraction strategies; empty list when nothing parses."""
    fallbacks = [extract_balanced_object, _array_match]
    if 0 <= output.find("[") < output.find("{"):
        fallbacks.reverse()
    candidates = [lambda: output.strip(), lambda: extract_from_markdown(output)]
    candidates += [lambda fn=fn: fn(output) for fn in fallbacks]
    for candidate in candidates:
        text = candidate()
        if not text:
            continue
        parsed = _loads(text)
        if parsed is None:
            continue
        raw = _results_array(parsed)
        if raw:
            return raw
    return []


# === NORMALISATION ===


def _str(data: dict[str, Any], *keys: str) -> str:
    for key in keys:
        value = data.get(key)
        if isinstance(value, str):
            return value
    return ""


def _priority(value: Any) -> int:
    if isinstance(value, (int, float)) and not isinstance(value, bool) and 1 <= value <= 10:
        return round(value)
    return DEFAULT_PRIORITY


def normalize_issue(raw: Any) -> Issue | None:
    """Normalise a discovered issue; None when unusable (no description)."""
    if not isinstance(raw, dict):
        return None
    description = raw.get("description")
    if not isinstance(description, str) or not description:
        return None
    impact = raw.get("impact")
    help_url = raw.get("helpUrl", raw.get("help_url"))
    return Issue(
        id=str(uuid.uuid4()),
        rule_id=_str(raw, "ruleId", "rule_id"),
        wcag_criteria=_str(raw, "wcagCriteria", "wcag_criteria"),
        impact=impact if impact in _IMPACT_LEVELS else "MODERATE",
        description=description,
        help_text=_str(raw, "helpText", "help_text"),
        help_url="" if help_url is None else str(help_url),
        html_snippet=_str(raw, "htmlSnippet", "html_snippet"),
        css_selector=_str(raw, "cssSelector", "css_selector"),
        ai_explanation=_str(raw, "aiExplanation", "ai_explanation"),
        ai_fix_suggestion=_str(raw, "aiFixSuggestion", "ai_fix_suggestion"),
        ai_priority=_priority(raw.get("aiPriority", raw.get("ai_priority"))),
    )


def normalize_enhancement(raw: Any) -> AiIssueEnhancement | None:
    if not isinstance(raw, dict):
        return None
    issue_id = _str(raw, "issueId", "issue_id")
    if not issue_id:
        return None
    return AiIssueEnhancement(
        issue_id=issue_id,
        ai_explanation=_str(raw, "aiExplanation", "ai_explanation"),
        ai_fix_suggestion=_str(raw, "aiFixSuggestion", "ai_fix_suggestion"),
        ai_priority=_priority(raw.get("aiPriority", raw.get("ai_priority"))),
    )


def _text_or_object(value: Any) -> str | dict[str, Any]:
    if isinstance(value, (str, dict)):
        return value
    if value is None:
        return ""
    return json.dumps(value)


def normalize_scan_result(raw: Any) -> ScanResult | None:
    if not isinstance(raw, dict):
        return None

    issues_raw = raw.get("issues")
    issues = [
        issue for issue in (normalize_issue(i) for i in issues_raw) if issue is not None
    ] if isinstance(issues_raw, list) else []

    enhancements_raw = raw.get("aiEnhancements", raw.get("ai_enhancements"))
    enhancements = [
        e for e in (normalize_enhancement(r) for r in enhancements_raw) if e is not None
    ] if isinstance(enhancements_raw, list) else None

    tokens = raw.get("tokensUsed", raw.get("tokens_used"))
    return ScanResult(
        scan_id=str(raw.get("scanId", raw.get("scan_id")) or ""),
        url=_str(raw, "url"),
        summary=_text_or_object(raw.get("summary")),
        remediation_plan=_text_or_object(raw.get("remediationPlan", raw.get("remediation_plan"))),
        issues=issues,
        ai_enhancements=enhancements,
        tokens_used=tokens if isinstance(tokens, int) and tokens >= 0 else None,
    )


# === MATCHING ===


def parse_results(raw_output: str, expected_items: Sequence[WorkItem]) -> ParsedResults:
    """Parse worker output and match results to the mini-batch items.

    Results for ids outside the mini-batch are dropped; items with no
    result are reported in `missing`. When a one-item mini-batch yields a
    single result without a recognisable scan id, it is attributed to
    that item.
    """
    raw_results = extract_raw_results(raw_output)
    normalized = [r for r in (normalize_scan_result(raw) for raw in raw_results) if r is not None]
    parsed = ParsedResults(raw_count=len(normalized))

    by_id = {item.scan_id: item for item in expected_items}
    if (
        len(expected_items) == 1
        and len(normalized) == 1
        and normalized[0].scan_id not in by_id
    ):
        item = expected_items[0]
        logger.debug("Attributing unlabelled result to scan %s", item.scan_id)
        normalized[0] = normalized[0].model_copy(update={"scan_id": item.scan_id})

    matched: dict[str, ScanResult] = {}
    for result in normalized:
        item = by_id.get(result.scan_id)
        if item is None:
            parsed.unexpected_ids.append(result.scan_id)
            continue
        if result.scan_id in matched:
            continue
        if not result.url:
            result = result.model_copy(update={"url": item.url})
        matched[result.scan_id] = result

    if parsed.unexpected_ids:
        logger.warning(
            "Ignoring %d results for unknown scan ids: %s",
            len(parsed.unexpected_ids), ", ".join(parsed.unexpected_ids[:5]),
        )

    for item in expected_items:
        if item.scan_id in matched:
            parsed.results.append(matched[item.scan_id])
        else:
            parsed.missing.append(item)
    return parsed

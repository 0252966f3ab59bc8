# tests/unit/llm/test_transformer.py — v1
"""Tests for llm/transformer.py — ScanResult to output rows."""

from __future__ import annotations

import json

from aiscan.core.models import AiIssueEnhancement, Issue, ScanResult
from aiscan.llm.transformer import (
    ai_issues_json,
    estimate_tokens,
    format_remediation_plan,
    format_summary,
    processing_time_s,
    transform_to_import_format,
)


class TestFormatSummary:
    def test_text_passthrough(self):
        assert format_summary("All good.") == "All good."

    def test_structured(self):
        text = format_summary({
            "totalIssues": 12, "criticalIssues": 2, "seriousIssues": 0,
            "overallCompliance": "partial", "complianceScore": 71,
        })
        assert text == (
            "Found 12 accessibility issues. 2 critical issues require immediate attention. "
            "Overall compliance: partial. Compliance score: 71%."
        )

    def test_unknown_shape_as_json(self):
        assert format_summary({"note": "x"}) == '{"note":"x"}'


class TestFormatRemediationPlan:
    def test_sections(self):
        text = format_remediation_plan({
            "quickWins": ["Add alt text"],
            "longTerm": ["Rebuild nav", "Audit forms"],
            "estimatedEffort": "2 weeks",
        })
        assert text == (
            "QUICK WINS (immediate fixes):\n  1. Add alt text\n\n"
            "LONG-TERM CHANGES:\n  1. Rebuild nav\n  2. Audit forms\n\n"
            "Estimated effort: 2 weeks"
        )

    def test_text_passthrough(self):
        assert format_remediation_plan("Do X") == "Do X"


class TestAiIssuesJson:
    def test_enhancements_used(self):
        result = ScanResult(scan_id="s", ai_enhancements=[
            AiIssueEnhancement(issue_id="i1", ai_explanation="e", ai_fix_suggestion="f", ai_priority=7),
        ])
        assert json.loads(ai_issues_json(result)) == [
            {"issueId": "i1", "aiExplanation": "e", "aiFixSuggestion": "f", "aiPriority": 7},
        ]

    def test_derived_from_issues(self):
        result = ScanResult(scan_id="s", issues=[
            Issue(id="n1", description="d", ai_explanation="e", ai_priority=3),
        ])
        data = json.loads(ai_issues_json(result))
        assert data[0]["issueId"] == "n1"
        assert data[0]["aiPriority"] == 3

    def test_empty(self):
        assert ai_issues_json(ScanResult(scan_id="s")) == "[]"


class TestEstimates:
    def test_reported_tokens_win(self):
        assert estimate_tokens(ScanResult(scan_id="s", tokens_used=999)) == 999

    def test_estimate_from_output_size(self):
        result = ScanResult(scan_id="s", summary="x" * 40, remediation_plan="y" * 38)
        # 78 chars + "[]" = 80 chars -> 20 tokens
        assert estimate_tokens(result, base_prompt_tokens=2000) == 2020

    def test_processing_time(self):
        assert processing_time_s(ScanResult(scan_id="s", duration_ms=1200)) == 2
        assert processing_time_s(ScanResult(scan_id="s"), default_s=60) == 60


class TestTransform:
    def test_rows_in_order(self):
        results = [ScanResult(scan_id="a", summary="s", duration_ms=5000),
                   ScanResult(scan_id="b", summary="t")]
        rows = transform_to_import_format(results, ai_model="model-x")
        assert [r.scan_id for r in rows] == ["a", "b"]
        assert rows[0].processing_time == 5
        assert rows[1].processing_time == 60
        assert {r.ai_model for r in rows} == {"model-x"}

# src/llm/prompt.py — v1
"""Prompt generation from jinja2 templates.

Templates receive two variables:
    scans       list of dicts (scan_id, url, wcag_level, page_title,
                existing_issues, existing_issues_json)
    wcag_level  strictest WCAG level among the scans of the mini-batch
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from jinja2 import Environment, StrictUndefined, TemplateSyntaxError, UndefinedError, meta

from aiscan.core.models import WorkItem

logger = logging.getLogger(__name__)

_PROMPT_PATH = Path(__file__).parent / "prompts" / "default_prompt.j2"

REQUIRED_VARIABLES = ("scans", "wcag_level")
# Per-scan attributes a template must reference inside its loop
REQUIRED_ATTRIBUTES = ("url", "scan_id")

_LEVEL_ORDER = {"A": 1, "AA": 2, "AAA": 3}

_env = Environment(
    undefined=StrictUndefined,
    keep_trailing_newline=True,
    trim_blocks=True,
    lstrip_blocks=True,
    autoescape=False,  # noqa: S701 - plain-text prompts, not HTML
)


class TemplateValidationError(Exception):
    """Raised when a prompt template is unusable."""


def get_default_template_path() -> Path:
    return _PROMPT_PATH


def load_custom_template(path: Path) -> str:
    """Read a template file.

    Raises:
        TemplateValidationError: If the file cannot be read.
    """
    try:
        return Path(path).read_text(encoding="utf-8")
    except OSError as e:
        raise TemplateValidationError(f"Cannot read prompt template {path}: {e}") from e


def validate_template(template_text: str) -> None:
    """Check syntax and required placeholders.

    Raises:
        TemplateValidationError: On syntax errors or missing placeholders.
    """
    try:
        ast = _env.parse(template_text)
    except TemplateSyntaxError as e:
        raise TemplateValidationError(
            f"Template syntax validation failed: {e.message} (line {e.lineno})"
        ) from e

    declared = meta.find_undeclared_variables(ast)
    missing = [name for name in REQUIRED_VARIABLES if name not in declared]
    missing += [
        f".{attr}" for attr in REQUIRED_ATTRIBUTES
        if not re.search(rf"\.{attr}\b|\[['\"]{attr}['\"]\]", template_text)
    ]
    if missing:
        raise TemplateValidationError(
            "Template validation failed. Missing required placeholders: "
            + ", ".join(missing)
        )


def strictest_level(items: Sequence[WorkItem]) -> str:
    if not items:
        return "AA"
    return max((item.wcag_level for item in items), key=_LEVEL_ORDER.__getitem__)


def _scan_context(item: WorkItem) -> dict[str, Any]:
    issues = [issue.model_dump(by_alias=True) for issue in item.existing_issues]
    return {
        "scan_id": item.scan_id,
        "url": item.url,
        "wcag_level": item.wcag_level,
        "page_title": item.page_title or "",
        "email": item.email or "",
        "existing_issues": issues,
        "existing_issues_json": json.dumps(issues, indent=2) if issues else "[]",
    }


def generate_prompt(items: Sequence[WorkItem], template_text: str | None = None) -> str:
    """Render the prompt for one mini-batch.

    Args:
        items: Work items of the mini-batch.
        template_text: Custom template source; the packaged default is used
            when None.

    Returns:
        Rendered prompt text.

    Raises:
        TemplateValidationError: If the template is invalid.
    """
    if template_text is None:
        template_text = _PROMPT_PATH.read_text(encoding="utf-8")
    validate_template(template_text)

    template = _env.from_string(template_text)
    try:
        prompt = template.render(
            scans=[_scan_context(item) for item in items],
            wcag_level=strictest_level(items),
        )
    except UndefinedError as e:
        raise TemplateValidationError(f"Template references unknown value: {e.message}") from e
    logger.debug("Generated prompt for %d scans (%d chars)", len(items), len(prompt))
    return prompt

"""Structural validation of an assembled draft.

Findings are data, not exceptions: they are reported in the run metadata and
never stop a run.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from content_pipeline.config.pipeline import ValidationConfig
from content_pipeline.core.coverage import SectionWriteState, is_element_covered, mentions_term, normalize_term
from content_pipeline.core.pipeline.markdown import normalize_heading, parse_draft
from content_pipeline.core.pipeline.models import ArticlePlan, ValidationIssue

logger = logging.getLogger(__name__)


def _element_mentioned(state: SectionWriteState, element: str, text: str) -> bool:
    key = normalize_term(element)
    return is_element_covered(state, element) or key in state.covered_topics or mentions_term(text, element)


def validate_draft(
    markdown: str,
    plan: ArticlePlan,
    state: SectionWriteState,
    config: Optional[ValidationConfig] = None,
) -> List[ValidationIssue]:
    """Check a draft against its plan and coverage state.

    Checks: title present, no fewer sections than planned (and the configured
    minimum), no very short sections, no placeholder text, no duplicate
    headlines, every required element covered somewhere.
    """
    cfg = config or ValidationConfig()
    issues: List[ValidationIssue] = []

    if not markdown.strip():
        return [ValidationIssue(severity="error", code="empty_draft", message="Draft is empty")]

    draft = parse_draft(markdown)
    sections = draft.content_sections

    if not draft.title:
        issues.append(ValidationIssue(severity="error", code="missing_title", message="Draft has no '# ' title"))

    if len(sections) < len(plan.sections):
        issues.append(
            ValidationIssue(
                severity="error",
                code="missing_sections",
                message=f"Draft has {len(sections)} sections, plan has {len(plan.sections)}",
            )
        )
    elif len(sections) < cfg.min_sections:
        issues.append(
            ValidationIssue(
                severity="warning",
                code="too_few_sections",
                message=f"Draft has {len(sections)} sections (minimum {cfg.min_sections})",
            )
        )

    seen: set[str] = set()
    for section in sections:
        key = normalize_heading(section.headline)
        if key in seen:
            issues.append(
                ValidationIssue(
                    severity="warning",
                    code="duplicate_headline",
                    message=f"Headline repeated: {section.headline!r}",
                    location=section.headline,
                )
            )
        seen.add(key)

        if len(section.content) < cfg.min_section_length:
            issues.append(
                ValidationIssue(
                    severity="warning",
                    code="short_section",
                    message=(
                        f"Section is {len(section.content)} characters (minimum {cfg.min_section_length})"
                    ),
                    location=section.headline,
                )
            )

    lowered = markdown.lower()
    for marker in cfg.placeholder_markers:
        if marker.lower() in lowered:
            issues.append(
                ValidationIssue(
                    severity="error",
                    code="placeholder_text",
                    message=f"Placeholder text found: {marker!r}",
                )
            )

    for element in plan.required_elements:
        if not _element_mentioned(state, element, markdown):
            issues.append(
                ValidationIssue(
                    severity="warning",
                    code="uncovered_element",
                    message=f"Required element not covered: {element}",
                )
            )

    if issues:
        logger.info(
            "Draft validation: %d error(s), %d warning(s)",
            sum(1 for i in issues if i.severity == "error"),
            sum(1 for i in issues if i.severity == "warning"),
        )
    return issues

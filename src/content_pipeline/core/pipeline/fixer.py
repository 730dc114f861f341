"""One iteration of the fixer loop.

Issues are grouped by target (section headline or ``global``). Per target
only the highest-priority actionable issue is fixed in an iteration, since a
regenerated section makes smaller edits to it moot. ``direct_edit`` fixes are
capped per iteration.

The orchestrator owns retries, call accounting and re-review; this module
only decides what to fix and records what happened.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional, Sequence

from content_pipeline.core.errors import GenerationCancelledError
from content_pipeline.core.pipeline.markdown import find_section
from content_pipeline.core.pipeline.models import (
    FixApplied,
    FixOutcome,
    FixStrategy,
    ReviewIssue,
)

logger = logging.getLogger(__name__)

STRATEGY_PRIORITY: tuple[FixStrategy, ...] = (
    FixStrategy.REGENERATE,
    FixStrategy.ADD_SECTION,
    FixStrategy.EXPAND,
    FixStrategy.DIRECT_EDIT,
)

ApplyFix = Callable[[str, ReviewIssue, str, Optional[str]], Awaitable[FixOutcome]]


@dataclass
class FixerIterationResult:
    markdown: str
    fixes_applied: List[FixApplied] = field(default_factory=list)

    @property
    def successful_fixes(self) -> int:
        return sum(1 for fix in self.fixes_applied if fix.success)


def is_actionable(issue: ReviewIssue) -> bool:
    return issue.fix_strategy != FixStrategy.NO_ACTION


def group_issues_by_target(issues: Sequence[ReviewIssue]) -> Dict[str, List[ReviewIssue]]:
    """Group actionable issues by target, keeping first-seen order."""
    groups: Dict[str, List[ReviewIssue]] = {}
    for issue in issues:
        if is_actionable(issue):
            groups.setdefault(issue.target, []).append(issue)
    return groups


def select_issue_to_fix(issues: Sequence[ReviewIssue]) -> Optional[ReviewIssue]:
    """Highest-priority actionable issue; ties keep reviewer order."""
    actionable = [i for i in issues if is_actionable(i)]
    if not actionable:
        return None
    return min(actionable, key=lambda i: STRATEGY_PRIORITY.index(i.fix_strategy))


async def run_fixer_iteration(
    markdown: str,
    issues: Sequence[ReviewIssue],
    apply_fix: ApplyFix,
    *,
    iteration: int,
    max_direct_edits: int,
) -> FixerIterationResult:
    """Apply at most one fix per target.

    Args:
        markdown: Current draft.
        issues: Outstanding reviewer issues.
        apply_fix: Called as ``(markdown, issue, target, section_markdown)``.
        iteration: 1-based fixer iteration number (for records).
        max_direct_edits: Cap on successful ``direct_edit`` fixes.

    Returns:
        The updated draft and one ``FixApplied`` per attempted fix. A fix
        that raises is logged and recorded as failed; the draft is kept.
    """
    result = FixerIterationResult(markdown=markdown)
    groups = group_issues_by_target(issues)
    if not groups:
        logger.info("Fixer iteration %d: no actionable issues", iteration)
        return result

    logger.info("Fixer iteration %d: %d target(s) to fix", iteration, len(groups))
    direct_edits = 0

    for target, target_issues in groups.items():
        issue = select_issue_to_fix(target_issues)
        if issue is None:
            continue
        if issue.fix_strategy == FixStrategy.DIRECT_EDIT and direct_edits >= max_direct_edits:
            logger.debug("Skipping direct edit for %r: limit reached", target)
            continue

        section = find_section(result.markdown, target) if target != "global" else None
        try:
            outcome = await apply_fix(
                result.markdown,
                issue,
                target,
                section.content if section else None,
            )
        except (asyncio.CancelledError, GenerationCancelledError):
            raise
        except Exception as e:
            logger.warning("Fix %s for %r failed: %s", issue.fix_strategy.value, target, e)
            outcome = FixOutcome(markdown=result.markdown, success=False, description=str(e))

        success = outcome.success and bool(outcome.markdown.strip())
        result.fixes_applied.append(
            FixApplied(
                iteration=iteration,
                strategy=issue.fix_strategy,
                target=target,
                reason=issue.message,
                success=success,
                description=outcome.description,
            )
        )
        if success:
            result.markdown = outcome.markdown
            if issue.fix_strategy == FixStrategy.DIRECT_EDIT:
                direct_edits += 1
        else:
            logger.warning("Fix failed for %r: %s", target, outcome.description or "no description")

    logger.info(
        "Fixer iteration %d complete: %d/%d fixes successful",
        iteration,
        result.successful_fixes,
        len(result.fixes_applied),
    )
    return result

"""Article generation pipeline: boundary models, coverage-aware orchestration, repair loop."""

from content_pipeline.core.pipeline.fixer import (
    STRATEGY_PRIORITY,
    FixerIterationResult,
    group_issues_by_target,
    run_fixer_iteration,
    select_issue_to_fix,
)
from content_pipeline.core.pipeline.markdown import (
    assemble_draft,
    extract_image_urls,
    find_section,
    insert_section,
    parse_draft,
    replace_section,
)
from content_pipeline.core.pipeline.models import (
    ArticlePlan,
    AssetFailure,
    AssetRecord,
    CallRecord,
    FixApplied,
    FixContext,
    FixOutcome,
    FixStrategy,
    GenerationMetadata,
    GenerationRequest,
    GenerationResult,
    RecoveryMetadata,
    RecoveryState,
    ResearchBrief,
    ReviewIssue,
    ReviewResult,
    SectionDraft,
    SectionPlan,
    SectionTask,
    Severity,
    TokenUsage,
    ValidationIssue,
    validate_payload,
)
from content_pipeline.core.pipeline.orchestrator import ArticleOrchestrator, ProgressCallback
from content_pipeline.core.pipeline.protocols import (
    AssetStore,
    Fixer,
    Planner,
    Researcher,
    Reviewer,
    SectionWriter,
)
from content_pipeline.core.pipeline.validation import validate_draft

__all__ = [
    "ArticleOrchestrator",
    "ProgressCallback",
    # Collaborators
    "AssetStore",
    "Fixer",
    "Planner",
    "Researcher",
    "Reviewer",
    "SectionWriter",
    # Models
    "ArticlePlan",
    "AssetFailure",
    "AssetRecord",
    "CallRecord",
    "FixApplied",
    "FixContext",
    "FixOutcome",
    "FixStrategy",
    "GenerationMetadata",
    "GenerationRequest",
    "GenerationResult",
    "RecoveryMetadata",
    "RecoveryState",
    "ResearchBrief",
    "ReviewIssue",
    "ReviewResult",
    "SectionDraft",
    "SectionPlan",
    "SectionTask",
    "Severity",
    "TokenUsage",
    "ValidationIssue",
    "validate_payload",
    # Fixer
    "STRATEGY_PRIORITY",
    "FixerIterationResult",
    "group_issues_by_target",
    "run_fixer_iteration",
    "select_issue_to_fix",
    # Markdown
    "assemble_draft",
    "extract_image_urls",
    "find_section",
    "insert_section",
    "parse_draft",
    "replace_section",
    "validate_draft",
]

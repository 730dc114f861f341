"""Boundary models for the generation pipeline.

Every collaborator payload (research brief, plan, section draft, review,
fix outcome) is validated into one of these models before it enters the
orchestrator's state machine. Collaborators may return the model itself, a
mapping, or a string containing a JSON object; anything else that does not
validate becomes a ``PayloadValidationError``.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Type, TypeVar

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from content_pipeline.core.coverage import SectionWriteState
from content_pipeline.core.errors import PayloadValidationError
from content_pipeline.core.pipeline.json_parsing import extract_json_object

ModelT = TypeVar("ModelT", bound=BaseModel)


class Severity(str, Enum):
    """Reviewer issue severity."""

    CRITICAL = "critical"
    MAJOR = "major"
    MINOR = "minor"


class FixStrategy(str, Enum):
    """How the fixer should address an issue."""

    REGENERATE = "regenerate"
    ADD_SECTION = "add_section"
    EXPAND = "expand"
    DIRECT_EDIT = "direct_edit"
    NO_ACTION = "no_action"


# =============================================================================
# Accounting
# =============================================================================


class TokenUsage(BaseModel):
    """Token and cost accounting for one or more model calls."""

    input_tokens: int = Field(default=0, ge=0, validation_alias=AliasChoices("input_tokens", "inputTokens"))
    output_tokens: int = Field(default=0, ge=0, validation_alias=AliasChoices("output_tokens", "outputTokens"))
    cost_usd: Optional[float] = Field(None, ge=0, description="Actual cost when the provider reports it")

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        cost = None
        if self.cost_usd is not None or other.cost_usd is not None:
            cost = (self.cost_usd or 0.0) + (other.cost_usd or 0.0)
        return TokenUsage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            cost_usd=cost,
        )


class CallRecord(BaseModel):
    """One collaborator call, recorded outside the phase timer."""

    phase: str = Field(..., description="Phase the call belongs to")
    operation: str = Field(..., description="Collaborator method invoked")
    latency_ms: int = Field(..., ge=0, description="Wall time including retries")
    attempts: int = Field(default=1, ge=1)
    success: bool = True
    token_usage: TokenUsage = Field(default_factory=TokenUsage)


# =============================================================================
# Requests and collaborator payloads
# =============================================================================


class GenerationRequest(BaseModel):
    """What to write about."""

    topic: str = Field(..., min_length=1, description="Subject of the article")
    instructions: str = Field(default="", description="Free-form editorial direction")
    category: Optional[str] = Field(None, description="Article category (guide, news, list, ...)")
    context: Dict[str, Any] = Field(default_factory=dict, description="Opaque data for collaborators")


class ResearchBrief(BaseModel):
    """Scout output shared by every later phase."""

    overview: str = Field(default="", description="Condensed research summary")
    findings: List[str] = Field(default_factory=list)
    sources: List[str] = Field(default_factory=list)
    token_usage: Optional[TokenUsage] = None


class SectionPlan(BaseModel):
    """One planned section."""

    model_config = ConfigDict(populate_by_name=True)

    headline: str = Field(..., min_length=1)
    goal: str = Field(..., min_length=1)
    research_queries: List[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("research_queries", "researchQueries"),
    )
    must_cover: List[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("must_cover", "mustCover"),
        description="Required elements this section is responsible for",
    )


class ArticlePlan(BaseModel):
    """Editor output: ordered sections plus document-wide required elements."""

    model_config = ConfigDict(populate_by_name=True)

    title: str = Field(..., min_length=1)
    excerpt: str = ""
    tags: List[str] = Field(default_factory=list)
    sections: List[SectionPlan] = Field(..., min_length=1)
    required_elements: List[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("required_elements", "requiredElements"),
    )
    token_usage: Optional[TokenUsage] = None

    @field_validator("required_elements")
    @classmethod
    def _strip_elements(cls, value: List[str]) -> List[str]:
        return [item.strip() for item in value if item and item.strip()]


class ReviewIssue(BaseModel):
    """One reviewer finding."""

    model_config = ConfigDict(populate_by_name=True)

    severity: Severity
    category: str = "structure"
    location: Optional[str] = Field(None, description="Section headline or 'global'")
    message: str = Field(..., min_length=1)
    suggestion: Optional[str] = None
    fix_strategy: FixStrategy = Field(
        default=FixStrategy.NO_ACTION,
        validation_alias=AliasChoices("fix_strategy", "fixStrategy"),
    )
    fix_instruction: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("fix_instruction", "fixInstruction"),
    )

    @field_validator("severity", "fix_strategy", mode="before")
    @classmethod
    def _normalize_enum(cls, value: Any) -> Any:
        return value.strip().lower() if isinstance(value, str) else value

    @property
    def target(self) -> str:
        return (self.location or "").strip() or "global"


class ReviewResult(BaseModel):
    """Reviewer verdict for a draft."""

    approved: bool
    issues: List[ReviewIssue] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)
    token_usage: Optional[TokenUsage] = None


class SectionTask(BaseModel):
    """Everything a section writer needs for one section."""

    request: GenerationRequest
    plan: ArticlePlan
    section: SectionPlan
    section_index: int = Field(..., ge=1, description="1-based position in the plan")
    total_sections: int = Field(..., ge=1)
    research: ResearchBrief
    previous_headlines: List[str] = Field(default_factory=list)
    cross_reference_context: str = ""
    required_elements_reminder: str = ""
    feedback: List[ReviewIssue] = Field(default_factory=list, description="Issues from a rejected plan")

    @property
    def guidance(self) -> str:
        """Coverage guidance blocks joined for prompt injection."""
        return "\n\n".join(b for b in (self.cross_reference_context, self.required_elements_reminder) if b)


class SectionDraft(BaseModel):
    """Writer output for one section."""

    markdown: str
    covered_elements: Optional[List[str]] = Field(
        None,
        validation_alias=AliasChoices("covered_elements", "coveredElements"),
        description="Required elements the writer claims to have covered",
    )
    token_usage: Optional[TokenUsage] = None


class FixContext(BaseModel):
    """Context passed to the fixer for one issue."""

    request: GenerationRequest
    plan: ArticlePlan
    research: ResearchBrief
    iteration: int = Field(..., ge=1)
    target: str
    section_markdown: Optional[str] = Field(None, description="Current text of the targeted section")


class FixOutcome(BaseModel):
    """Fixer output for one issue."""

    markdown: str
    success: bool = True
    description: str = ""
    token_usage: Optional[TokenUsage] = None


class FixApplied(BaseModel):
    """Record of one attempted fix."""

    iteration: int
    strategy: FixStrategy
    target: str
    reason: str
    success: bool
    description: str = ""


class ValidationIssue(BaseModel):
    """Structural problem found in a draft."""

    severity: Literal["error", "warning"]
    code: str
    message: str
    location: Optional[str] = None


class AssetRecord(BaseModel):
    """An image fetched and handed to the asset store."""

    url: str
    final_url: str
    media_type: str
    size: int
    stored: Optional[Any] = Field(None, description="Whatever the asset store returned")


class AssetFailure(BaseModel):
    """An image that could not be fetched or stored."""

    url: str
    error_code: str
    error_type: str
    message: str
    security: bool = False


# =============================================================================
# Recovery bookkeeping
# =============================================================================


class RecoveryMetadata(BaseModel):
    """Frozen summary of the repair loop for one run."""

    model_config = ConfigDict(frozen=True)

    plan_retries: int = 0
    fixer_iterations: int = 0
    fixes_applied: List[FixApplied] = Field(default_factory=list)
    initial_reviewer_issues: List[ReviewIssue] = Field(default_factory=list)
    final_reviewer_issues: List[ReviewIssue] = Field(default_factory=list)


@dataclass
class RecoveryState:
    """Mutable repair-loop bookkeeping, owned by a single run.

    ``initial_reviewer_issues`` is None until the first rejection and is
    never overwritten afterwards.
    """

    plan_retries: int = 0
    fixer_iterations: int = 0
    fixes_applied: List[FixApplied] = field(default_factory=list)
    initial_reviewer_issues: Optional[List[ReviewIssue]] = None
    final_reviewer_issues: List[ReviewIssue] = field(default_factory=list)

    def record_rejection(self, issues: List[ReviewIssue]) -> None:
        if self.initial_reviewer_issues is None:
            self.initial_reviewer_issues = list(issues)

    def freeze(self) -> RecoveryMetadata:
        return RecoveryMetadata(
            plan_retries=self.plan_retries,
            fixer_iterations=self.fixer_iterations,
            fixes_applied=list(self.fixes_applied),
            initial_reviewer_issues=list(self.initial_reviewer_issues or []),
            final_reviewer_issues=list(self.final_reviewer_issues),
        )


# =============================================================================
# Results
# =============================================================================


class GenerationMetadata(BaseModel):
    """Persisted summary of a generation run."""

    run_id: str
    generated_at: datetime
    phase_durations: Dict[str, int]
    total_duration_ms: int
    recovery: RecoveryMetadata
    token_usage: TokenUsage = Field(default_factory=TokenUsage)
    calls: List[CallRecord] = Field(default_factory=list)
    validation_issues: List[ValidationIssue] = Field(default_factory=list)
    assets: List[AssetRecord] = Field(default_factory=list)
    asset_failures: List[AssetFailure] = Field(default_factory=list)


class GenerationResult(BaseModel):
    """Final output of a run; returned even when review never approved."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    markdown: str
    plan: ArticlePlan
    approved: bool
    outstanding_issues: List[ReviewIssue] = Field(default_factory=list)
    section_write_state: SectionWriteState
    metadata: GenerationMetadata


# =============================================================================
# Boundary validation
# =============================================================================


def validate_payload(model_cls: Type[ModelT], payload: Any) -> ModelT:
    """Validate a collaborator payload into ``model_cls``.

    Args:
        model_cls: Target pydantic model.
        payload: A ``model_cls`` instance, another pydantic model, a mapping,
            or a string containing a JSON object.

    Raises:
        PayloadValidationError: If the payload cannot be coerced.
    """
    name = model_cls.__name__
    if isinstance(payload, model_cls):
        return payload
    if isinstance(payload, BaseModel):
        payload = payload.model_dump()
    elif isinstance(payload, (str, bytes)):
        text = payload.decode("utf-8", errors="replace") if isinstance(payload, bytes) else payload
        data = extract_json_object(text)
        if data is None:
            raise PayloadValidationError(name, "no JSON object found in response")
        payload = data

    try:
        return model_cls.model_validate(payload)
    except ValidationError as e:
        errors = json.loads(e.json(include_url=False))
        raise PayloadValidationError(name, f"{e.error_count()} validation error(s)", errors=errors) from e


def coerce_section_draft(payload: Any) -> SectionDraft:
    """Writers may return bare markdown; JSON-looking strings are still parsed."""
    if isinstance(payload, str):
        stripped = payload.lstrip()
        if stripped.startswith("{") or stripped.startswith("```json"):
            return validate_payload(SectionDraft, payload)
        return SectionDraft(markdown=payload)
    return validate_payload(SectionDraft, payload)

"""Collaborator interfaces consumed by the orchestrator.

Prompting, the language model, and persistence live behind these protocols.
Implementations may return the typed model, a mapping, or a string holding a
JSON object; the orchestrator validates whatever comes back.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional, Protocol, Sequence, Union, runtime_checkable

from content_pipeline.core.fetch import FetchResult
from content_pipeline.core.pipeline.models import (
    ArticlePlan,
    FixContext,
    FixOutcome,
    GenerationRequest,
    ResearchBrief,
    ReviewIssue,
    ReviewResult,
    SectionDraft,
    SectionTask,
)

Payload = Union[Mapping[str, Any], str]


@runtime_checkable
class Researcher(Protocol):
    """Scout phase: gathers research for the request."""

    async def research(self, request: GenerationRequest) -> Union[ResearchBrief, Payload]: ...


@runtime_checkable
class Planner(Protocol):
    """Editor phase: turns research into an article plan.

    ``feedback`` is empty on the first plan and holds the outstanding reviewer
    issues on a plan retry.
    """

    async def plan(
        self,
        request: GenerationRequest,
        research: ResearchBrief,
        feedback: Sequence[ReviewIssue],
    ) -> Union[ArticlePlan, Payload]: ...


@runtime_checkable
class SectionWriter(Protocol):
    """Specialist phase: writes one section (bare markdown is accepted)."""

    async def write_section(self, task: SectionTask) -> Union[SectionDraft, Payload]: ...


@runtime_checkable
class Reviewer(Protocol):
    async def review(self, draft: str, plan: ArticlePlan) -> Union[ReviewResult, Payload]: ...


@runtime_checkable
class Fixer(Protocol):
    """Repairs a draft for one reviewer issue and returns the full markdown."""

    async def apply_fix(
        self,
        markdown: str,
        issue: ReviewIssue,
        context: FixContext,
    ) -> Union[FixOutcome, Payload]: ...


@runtime_checkable
class AssetStore(Protocol):
    """Receives validated image payloads; the return value is kept in metadata."""

    async def store(self, url: str, result: FetchResult) -> Optional[Any]: ...

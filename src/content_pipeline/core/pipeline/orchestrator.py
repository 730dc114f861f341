"""Recovery-driven article generation.

Sequences scout -> editor -> specialist -> validation -> reviewer, and on
rejection runs bounded fixer iterations and, if needed, bounded plan
retries. Budgets exhausted without approval are not an error: the best draft
seen is returned with its outstanding issues.

Each run owns its state (timer, coverage state, recovery bookkeeping); an
orchestrator instance can serve any number of sequential or concurrent runs.

Example:
    orchestrator = ArticleOrchestrator(
        researcher=scout,
        planner=editor,
        writer=specialist,
        reviewer=reviewer,
        fixer=fixer,
        config=load_config(),
    )
    result = await orchestrator.generate(GenerationRequest(topic="Zelda: TotK beginner guide"))
    result.metadata.recovery.fixer_iterations
"""

from __future__ import annotations

import asyncio
import logging
import random
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import partial
from typing import Any, Awaitable, Callable, Iterator, List, Optional, Sequence, Tuple, TypeVar

from content_pipeline.config import PipelineConfig
from content_pipeline.core.concurrency import ConcurrencyLimiter
from content_pipeline.core.context import run_context
from content_pipeline.core.coverage import (
    SectionWriteState,
    build_cross_reference_context,
    build_required_elements_reminder,
    create_initial_section_write_state,
    mentions_term,
    normalize_term,
    update_section_write_state,
)
from content_pipeline.core.errors import (
    FetchSecurityError,
    FetchValidationError,
    GenerationCancelledError,
    GenerationTimeoutError,
    error_to_dict,
)
from content_pipeline.core.fetch import FetchRequest, SecureImageFetcher
from content_pipeline.core.observability import MetricsCollector, get_audit_logger, get_metrics
from content_pipeline.core.pipeline.fixer import is_actionable, run_fixer_iteration
from content_pipeline.core.pipeline.markdown import assemble_draft, extract_image_urls
from content_pipeline.core.pipeline.models import (
    ArticlePlan,
    AssetFailure,
    AssetRecord,
    CallRecord,
    FixContext,
    FixOutcome,
    GenerationMetadata,
    GenerationRequest,
    GenerationResult,
    RecoveryState,
    ResearchBrief,
    ReviewIssue,
    ReviewResult,
    SectionTask,
    TokenUsage,
    ValidationIssue,
    coerce_section_draft,
    validate_payload,
)
from content_pipeline.core.pipeline.protocols import (
    AssetStore,
    Fixer,
    Planner,
    Researcher,
    Reviewer,
    SectionWriter,
)
from content_pipeline.core.pipeline.validation import validate_draft
from content_pipeline.core.resilience import SleepFunc, async_retry_with_backoff, is_retryable_generation_error
from content_pipeline.core.timing import Clock, PhaseName, PhaseTimer, system_clock

logger = logging.getLogger(__name__)

T = TypeVar("T")

ProgressCallback = Callable[[str, int, str], None]

SPECIALIST_PROGRESS_START = 10
SPECIALIST_PROGRESS_END = 90
ASSETS_PHASE = "assets"


@dataclass
class _Candidate:
    """A reviewed draft and everything needed to return it."""

    markdown: str
    plan: ArticlePlan
    state: SectionWriteState
    approved: bool
    issues: List[ReviewIssue]
    validation_issues: List[ValidationIssue]
    score: int


@dataclass
class _Run:
    """Per-run mutable state. Never shared between runs."""

    run_id: str
    timer: PhaseTimer
    cancel_event: Optional[asyncio.Event]
    progress_callback: Optional[ProgressCallback]
    phase_totals: dict[str, int] = field(default_factory=lambda: {p.value: 0 for p in PhaseName})
    recovery: RecoveryState = field(default_factory=RecoveryState)
    calls: List[CallRecord] = field(default_factory=list)
    token_usage: TokenUsage = field(default_factory=TokenUsage)
    best: Optional[_Candidate] = None
    current_phase: Optional[str] = None


class ArticleOrchestrator:
    """Runs the generation state machine against injected collaborators."""

    def __init__(
        self,
        researcher: Researcher,
        planner: Planner,
        writer: SectionWriter,
        reviewer: Reviewer,
        fixer: Optional[Fixer] = None,
        *,
        config: Optional[PipelineConfig] = None,
        clock: Optional[Clock] = None,
        sleep_func: Optional[SleepFunc] = None,
        rng: Optional[random.Random] = None,
        image_fetcher: Optional[SecureImageFetcher] = None,
        asset_store: Optional[AssetStore] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.config = config or PipelineConfig()
        self._researcher = researcher
        self._planner = planner
        self._writer = writer
        self._reviewer = reviewer
        self._fixer = fixer
        self._clock = clock or system_clock
        self._sleep = sleep_func
        self._rng = rng
        self._asset_store = asset_store
        if image_fetcher is None and asset_store is not None:
            image_fetcher = SecureImageFetcher.from_config(self.config.fetch, sleep_func=sleep_func, rng=rng)
        self._image_fetcher = image_fetcher
        self._metrics = metrics or get_metrics()
        self._retry_policy = self.config.retry.to_policy().with_predicate(is_retryable_generation_error)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def generate(
        self,
        request: Any,
        *,
        cancel_event: Optional[asyncio.Event] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> GenerationResult:
        """Run one generation.

        Args:
            request: ``GenerationRequest`` or a mapping/JSON string of one.
            cancel_event: Set to abort at the next phase or section boundary.
            progress_callback: Called as ``(phase, percent, message)``.

        Returns:
            The approved draft, or the best unapproved draft with its
            outstanding issues once recovery budgets are exhausted.

        Raises:
            PayloadValidationError: Request or a collaborator payload is invalid
                (after retries).
            GenerationCancelledError: ``cancel_event`` was set.
            GenerationTimeoutError: ``generation_timeout`` elapsed.
        """
        request = validate_payload(GenerationRequest, request)

        with run_context() as run_id:
            run = _Run(
                run_id=run_id,
                timer=PhaseTimer(self._clock),
                cancel_event=cancel_event,
                progress_callback=progress_callback,
            )
            logger.info("Generation %s started: %r", run_id, request.topic)

            timeout = self.config.generation_timeout
            try:
                if timeout:
                    try:
                        result = await asyncio.wait_for(self._execute(run, request), timeout=timeout)
                    except asyncio.TimeoutError as e:
                        raise GenerationTimeoutError(timeout, phase=run.current_phase) from e
                else:
                    result = await self._execute(run, request)
            except GenerationCancelledError as e:
                logger.warning("Generation %s stopped: %s", run_id, e)
                outcome = "timeout" if isinstance(e, GenerationTimeoutError) else "cancelled"
                self._metrics.counter("generation.completed", labels={"outcome": outcome})
                raise

            outcome = "approved" if result.approved else "unapproved"
            self._metrics.counter("generation.completed", labels={"outcome": outcome})
            logger.info(
                "Generation %s finished (%s) in %dms: %d plan retries, %d fixer iterations",
                run_id,
                outcome,
                result.metadata.total_duration_ms,
                result.metadata.recovery.plan_retries,
                result.metadata.recovery.fixer_iterations,
            )
            return result

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    async def _execute(self, run: _Run, request: GenerationRequest) -> GenerationResult:
        with self._phase(run, PhaseName.SCOUT, 0, "Researching topic"):
            research = await self._call(
                run,
                PhaseName.SCOUT,
                "research",
                partial(validate_payload, ResearchBrief),
                self._researcher.research,
                request,
            )

        feedback: List[ReviewIssue] = []
        while True:
            message = "Planning article" if not feedback else f"Re-planning (retry {run.recovery.plan_retries})"
            with self._phase(run, PhaseName.EDITOR, 5, message):
                plan = await self._call(
                    run,
                    PhaseName.EDITOR,
                    "plan",
                    partial(validate_payload, ArticlePlan),
                    self._planner.plan,
                    request,
                    research,
                    list(feedback),
                )

            markdown, state = await self._write_sections(run, request, research, plan, feedback)
            candidate = await self._review(run, markdown, plan, state, progress=92)

            if not candidate.approved:
                run.recovery.record_rejection(candidate.issues)
                candidate = await self._repair(run, request, research, candidate)

            if candidate.approved or not self._should_retry_plan(run, candidate.issues):
                break

            run.recovery.plan_retries += 1
            feedback = list(candidate.issues)
            logger.info(
                "Plan retry %d/%d with %d outstanding issue(s)",
                run.recovery.plan_retries,
                self.config.recovery.max_plan_retries,
                len(feedback),
            )

        best = run.best
        if best is None:
            raise RuntimeError("Generation finished without a reviewed draft")
        run.recovery.final_reviewer_issues = list(best.issues)

        assets, asset_failures = await self._fetch_assets(run, best.markdown)

        self._report(run, "complete", 100, "Generation complete")
        metadata = GenerationMetadata(
            run_id=run.run_id,
            generated_at=datetime.now(timezone.utc),
            phase_durations=dict(run.phase_totals),
            total_duration_ms=sum(run.phase_totals.values()),
            recovery=run.recovery.freeze(),
            token_usage=run.token_usage,
            calls=list(run.calls),
            validation_issues=list(best.validation_issues),
            assets=assets,
            asset_failures=asset_failures,
        )
        return GenerationResult(
            markdown=best.markdown,
            plan=best.plan,
            approved=best.approved,
            outstanding_issues=list(best.issues),
            section_write_state=best.state,
            metadata=metadata,
        )

    async def _write_sections(
        self,
        run: _Run,
        request: GenerationRequest,
        research: ResearchBrief,
        plan: ArticlePlan,
        feedback: Sequence[ReviewIssue],
    ) -> Tuple[str, SectionWriteState]:
        """Write every planned section, threading coverage state through."""
        coverage = self.config.coverage
        state = create_initial_section_write_state()
        bodies: List[Tuple[str, str]] = []
        total = len(plan.sections)
        span = SPECIALIST_PROGRESS_END - SPECIALIST_PROGRESS_START

        with self._phase(run, PhaseName.SPECIALIST, SPECIALIST_PROGRESS_START, f"Writing {total} sections"):
            for index, section in enumerate(plan.sections, start=1):
                self._check_cancelled(run, PhaseName.SPECIALIST.value)
                self._report(
                    run,
                    PhaseName.SPECIALIST.value,
                    SPECIALIST_PROGRESS_START + (span * (index - 1)) // total,
                    f"Writing section {index}/{total}: {section.headline}",
                )
                task = SectionTask(
                    request=request,
                    plan=plan,
                    section=section,
                    section_index=index,
                    total_sections=total,
                    research=research,
                    previous_headlines=[s.headline for s in plan.sections[: index - 1]],
                    cross_reference_context=build_cross_reference_context(state, coverage),
                    required_elements_reminder=build_required_elements_reminder(
                        state,
                        plan.required_elements,
                        section.must_cover or None,
                    ),
                    feedback=list(feedback),
                )
                draft = await self._call(
                    run,
                    PhaseName.SPECIALIST,
                    "write_section",
                    coerce_section_draft,
                    self._writer.write_section,
                    task,
                )
                if draft.covered_elements is not None:
                    explicit = draft.covered_elements
                else:
                    explicit = _mentioned_elements([*section.must_cover, *plan.required_elements], draft.markdown)
                state = update_section_write_state(state, draft.markdown, section.headline, explicit, coverage)
                bodies.append((section.headline, draft.markdown))

        return assemble_draft(plan.title, bodies), state

    async def _review(
        self,
        run: _Run,
        markdown: str,
        plan: ArticlePlan,
        state: SectionWriteState,
        *,
        progress: int,
    ) -> _Candidate:
        """Validate and review a draft, and keep it if it is the best so far."""
        with self._phase(run, PhaseName.VALIDATION, SPECIALIST_PROGRESS_END, "Validating draft"):
            validation_issues = validate_draft(markdown, plan, state, self.config.validation)

        with self._phase(run, PhaseName.REVIEWER, progress, "Reviewing draft"):
            review = await self._call(
                run,
                PhaseName.REVIEWER,
                "review",
                partial(validate_payload, ReviewResult),
                self._reviewer.review,
                markdown,
                plan,
            )

        candidate = _Candidate(
            markdown=markdown,
            plan=plan,
            state=state,
            approved=review.approved,
            issues=list(review.issues),
            validation_issues=validation_issues,
            score=self._score(review.issues),
        )
        if self._is_better(candidate, run.best):
            run.best = candidate
        logger.info(
            "Review: %s with %d issue(s) (score %d)",
            "approved" if review.approved else "rejected",
            len(review.issues),
            candidate.score,
        )
        return candidate

    async def _repair(
        self,
        run: _Run,
        request: GenerationRequest,
        research: ResearchBrief,
        candidate: _Candidate,
    ) -> _Candidate:
        """Fixer iterations for one draft, each followed by a re-review."""
        fixer = self._fixer
        if fixer is None:
            return candidate

        current = candidate
        for _ in range(self.config.recovery.max_fixer_iterations):
            if current.approved or not any(is_actionable(i) for i in current.issues):
                break

            run.recovery.fixer_iterations += 1
            iteration = run.recovery.fixer_iterations
            with self._phase(run, PhaseName.FIXER, 95, f"Fixer iteration {iteration}"):
                outcome = await run_fixer_iteration(
                    current.markdown,
                    current.issues,
                    partial(self._apply_fix, run, fixer, request, research, current.plan, iteration),
                    iteration=iteration,
                    max_direct_edits=self.config.recovery.max_direct_edits_per_iteration,
                )
            run.recovery.fixes_applied.extend(outcome.fixes_applied)

            if outcome.successful_fixes == 0:
                logger.info("Fixer iteration %d changed nothing; stopping repair", iteration)
                break

            current = await self._review(run, outcome.markdown, current.plan, current.state, progress=96)

        return current

    async def _apply_fix(
        self,
        run: _Run,
        fixer: Fixer,
        request: GenerationRequest,
        research: ResearchBrief,
        plan: ArticlePlan,
        iteration: int,
        markdown: str,
        issue: ReviewIssue,
        target: str,
        section_markdown: Optional[str],
    ) -> FixOutcome:
        context = FixContext(
            request=request,
            plan=plan,
            research=research,
            iteration=iteration,
            target=target,
            section_markdown=section_markdown,
        )
        return await self._call(
            run,
            PhaseName.FIXER,
            "apply_fix",
            partial(validate_payload, FixOutcome),
            fixer.apply_fix,
            markdown,
            issue,
            context,
        )

    def _should_retry_plan(self, run: _Run, issues: Sequence[ReviewIssue]) -> bool:
        recovery = self.config.recovery
        if run.recovery.plan_retries >= recovery.max_plan_retries:
            return False
        return any(issue.severity.value in recovery.plan_retry_severities for issue in issues)

    def _score(self, issues: Sequence[ReviewIssue]) -> int:
        return sum(self.config.recovery.weight_for(issue.severity.value) for issue in issues)

    @staticmethod
    def _is_better(candidate: _Candidate, best: Optional[_Candidate]) -> bool:
        """Approved beats rejected; otherwise lower score wins, ties go to the newer draft."""
        if best is None:
            return True
        if candidate.approved != best.approved:
            return candidate.approved
        return candidate.score <= best.score

    # ------------------------------------------------------------------
    # Assets
    # ------------------------------------------------------------------

    async def _fetch_assets(self, run: _Run, markdown: str) -> Tuple[List[AssetRecord], List[AssetFailure]]:
        """Fetch referenced images concurrently; failures never fail the run."""
        if self._image_fetcher is None or not self.config.fetch.enabled:
            return [], []
        urls = extract_image_urls(markdown)
        if not urls:
            return [], []

        self._check_cancelled(run, ASSETS_PHASE)
        self._report(run, ASSETS_PHASE, 97, f"Fetching {len(urls)} image(s)")

        fetcher = self._image_fetcher
        store = self._asset_store
        fetch_config = self.config.fetch

        async def fetch_one(url: str) -> AssetRecord:
            request = FetchRequest(
                url=url,
                max_size_bytes=fetch_config.max_size_bytes,
                check_size_first=fetch_config.check_size_first,
                timeout=fetch_config.timeout,
                connect_timeout=fetch_config.connect_timeout,
                max_retries=fetch_config.max_retries,
                initial_delay=fetch_config.initial_delay,
                backoff_multiplier=fetch_config.backoff_multiplier,
                max_delay=fetch_config.max_delay,
            )
            result = await fetcher.download_image_with_retry(request)
            stored = await store.store(url, result) if store is not None else None
            return AssetRecord(
                url=url,
                final_url=result.final_url,
                media_type=result.media_type,
                size=result.size,
                stored=stored,
            )

        limiter = ConcurrencyLimiter(fetch_config.max_concurrent_downloads, name="assets")
        gathered = await limiter.map(fetch_one, urls)
        logger.debug(
            "Fetched %d asset(s) in %.2fs, peak concurrency %d",
            len(urls),
            gathered.stats.elapsed_seconds,
            limiter.peak_active,
        )

        records: List[AssetRecord] = []
        failures: List[AssetFailure] = []
        for url, record, error in zip(urls, gathered.results, gathered.errors):
            if error is None:
                records.append(record)
                continue
            if isinstance(error, Exception):
                payload = error_to_dict(error)
            else:
                payload = {"error_code": "INTERNAL_ERROR", "error_type": "internal", "message": str(error)}
            failures.append(
                AssetFailure(
                    url=url,
                    error_code=payload["error_code"],
                    error_type=payload["error_type"],
                    message=payload["message"],
                    security=isinstance(error, FetchSecurityError),
                )
            )
            if isinstance(error, FetchValidationError):
                get_audit_logger().asset_rejected(url, payload["error_code"])
            logger.warning("Asset %s failed: %s", url, payload["message"])

        return records, failures

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    async def _call(
        self,
        run: _Run,
        phase: PhaseName,
        operation: str,
        coerce: Callable[[Any], T],
        func: Callable[..., Awaitable[Any]],
        *args: Any,
    ) -> T:
        """Invoke a collaborator with retries, validation and call accounting."""
        attempts = 0

        async def attempt() -> T:
            nonlocal attempts
            attempts += 1
            return coerce(await func(*args))

        started = self._clock.now()
        try:
            result = await async_retry_with_backoff(
                attempt,
                policy=self._retry_policy,
                context=f"{phase.value}.{operation}",
                rng=self._rng,
                sleep_func=self._sleep,
            )
        except Exception:
            run.calls.append(
                CallRecord(
                    phase=phase.value,
                    operation=operation,
                    latency_ms=self._elapsed(started),
                    attempts=max(attempts, 1),
                    success=False,
                )
            )
            raise

        usage = getattr(result, "token_usage", None) or TokenUsage()
        run.calls.append(
            CallRecord(
                phase=phase.value,
                operation=operation,
                latency_ms=self._elapsed(started),
                attempts=attempts,
                token_usage=usage,
            )
        )
        run.token_usage = run.token_usage + usage
        return result

    def _elapsed(self, started: float) -> int:
        return max(int(round(self._clock.now() - started)), 0)

    @contextmanager
    def _phase(self, run: _Run, phase: PhaseName, progress: int, message: str) -> Iterator[None]:
        """Cancellation check, progress report and timing around one phase."""
        self._check_cancelled(run, phase.value)
        self._report(run, phase.value, progress, message)
        run.current_phase = phase.value
        run.timer.start(phase)
        try:
            yield
        finally:
            duration = run.timer.end(phase)
            run.phase_totals[phase.value] += duration
            self._metrics.timer("phase.duration", duration, labels={"phase": phase.value})

    @staticmethod
    def _check_cancelled(run: _Run, phase: Optional[str]) -> None:
        if run.cancel_event is not None and run.cancel_event.is_set():
            raise GenerationCancelledError(phase)

    @staticmethod
    def _report(run: _Run, phase: str, progress: int, message: str) -> None:
        if run.progress_callback is None:
            return
        try:
            run.progress_callback(phase, max(0, min(progress, 100)), message)
        except Exception:
            logger.exception("Progress callback failed for phase %s", phase)


def _mentioned_elements(candidates: Sequence[str], markdown: str) -> List[str]:
    """Candidates mentioned as whole words (case-insensitive) in the text."""
    seen: set[str] = set()
    mentioned: List[str] = []
    for element in candidates:
        key = normalize_term(element)
        if key and key not in seen and mentions_term(markdown, element):
            seen.add(key)
            mentioned.append(element)
    return mentioned

"""End-to-end runs of ArticleOrchestrator against scripted collaborators."""

import asyncio

import httpx
import pytest

from content_pipeline.config import FetchConfig, PipelineConfig, RecoveryConfig, RetryConfig
from content_pipeline.core.errors import (
    GenerationCancelledError,
    GenerationTimeoutError,
    PayloadValidationError,
)
from content_pipeline.core.fetch import SecureImageFetcher
from content_pipeline.core.pipeline import ArticleOrchestrator, FixStrategy, GenerationRequest
from content_pipeline.core.pipeline.markdown import parse_draft
from tests.fakes import (
    PNG_BYTES,
    AppendingFixer,
    FakeClock,
    MemoryAssetStore,
    ScriptedPlanner,
    ScriptedResearcher,
    ScriptedReviewer,
    ScriptedWriter,
    approve,
    issue,
    make_plan,
    public_resolver,
    reject,
)

pytestmark = pytest.mark.integration

REQUEST = GenerationRequest(topic="Zelda: Tears of the Kingdom beginner guide")


def build(
    *,
    planner=None,
    writer=None,
    reviewer=None,
    fixer=None,
    researcher=None,
    config=None,
    clock=None,
    sleep_func=None,
    **kwargs,
):
    async def no_sleep(seconds):
        return None

    return ArticleOrchestrator(
        researcher=researcher or ScriptedResearcher(),
        planner=planner or ScriptedPlanner(make_plan()),
        writer=writer or ScriptedWriter(),
        reviewer=reviewer or ScriptedReviewer(approve()),
        fixer=fixer,
        config=config or PipelineConfig(),
        clock=clock or FakeClock(),
        sleep_func=sleep_func or no_sleep,
        **kwargs,
    )


class TestApprovedFirstTime:
    @pytest.mark.asyncio
    async def test_straight_through(self):
        clock = FakeClock()
        researcher = ScriptedResearcher(clock=clock, elapsed_ms=1500)
        writer = ScriptedWriter()
        orchestrator = build(researcher=researcher, writer=writer, clock=clock)

        result = await orchestrator.generate(REQUEST)

        assert result.approved is True
        assert result.outstanding_issues == []
        draft = parse_draft(result.markdown)
        assert draft.title == "Zelda: Tears of the Kingdom Beginner Guide"
        assert [s.headline for s in draft.sections] == ["Getting Started", "Combat Basics", "Exploration Tips"]

        recovery = result.metadata.recovery
        assert recovery.plan_retries == 0
        assert recovery.fixer_iterations == 0
        assert recovery.fixes_applied == []
        assert recovery.initial_reviewer_issues == []

        assert result.metadata.phase_durations["scout"] == 1500
        assert result.metadata.total_duration_ms == 1500
        assert [c.operation for c in result.metadata.calls] == [
            "research",
            "plan",
            "write_section",
            "write_section",
            "write_section",
            "review",
        ]
        assert result.metadata.run_id.startswith("run_")
        assert result.section_write_state.sections_written == 3
        assert [t.section_index for t in writer.tasks] == [1, 2, 3]
        assert writer.tasks[2].previous_headlines == ["Getting Started", "Combat Basics"]

    @pytest.mark.asyncio
    async def test_accepts_request_mapping(self):
        result = await build().generate({"topic": "Hollow Knight charms"})
        assert result.approved is True

    @pytest.mark.asyncio
    async def test_progress_reported_in_order(self):
        events = []
        await build().generate(REQUEST, progress_callback=lambda phase, pct, msg: events.append((phase, pct)))
        phases = [p for p, _ in events]
        assert phases[0] == "scout"
        assert phases[-1] == "complete"
        assert events[-1][1] == 100
        percents = [pct for _, pct in events]
        assert percents == sorted(percents)

    @pytest.mark.asyncio
    async def test_broken_progress_callback_does_not_fail_run(self):
        def callback(phase, pct, msg):
            raise RuntimeError("ui went away")

        result = await build().generate(REQUEST, progress_callback=callback)
        assert result.approved is True

    @pytest.mark.asyncio
    async def test_token_usage_aggregated(self):
        plan = {**make_plan(), "token_usage": {"inputTokens": 100, "outputTokens": 40}}
        reviewer = ScriptedReviewer({**approve(), "token_usage": {"input_tokens": 10, "output_tokens": 5}})
        result = await build(planner=ScriptedPlanner(plan), reviewer=reviewer).generate(REQUEST)
        assert result.metadata.token_usage.total_tokens == 155


class TestFixerRecovery:
    @pytest.mark.asyncio
    async def test_rejection_fixed_then_approved(self):
        rejection = reject(issue("major", "Combat section is thin", "Combat Basics", "expand"))
        reviewer = ScriptedReviewer(rejection, approve())
        fixer = AppendingFixer()

        result = await build(reviewer=reviewer, fixer=fixer).generate(REQUEST)

        assert result.approved is True
        assert "Fixed: Combat section is thin" in result.markdown
        recovery = result.metadata.recovery
        assert recovery.fixer_iterations == 1
        assert recovery.plan_retries == 0
        assert len(recovery.fixes_applied) == 1
        assert recovery.fixes_applied[0].strategy == FixStrategy.EXPAND
        assert recovery.fixes_applied[0].success is True
        assert [i.message for i in recovery.initial_reviewer_issues] == ["Combat section is thin"]
        assert recovery.final_reviewer_issues == []

        fixed_issue, context = fixer.calls[0]
        assert context.target == "Combat Basics"
        assert context.iteration == 1
        assert context.section_markdown.startswith("Detailed walkthrough of combat basics")
        assert len(reviewer.drafts) == 2

    @pytest.mark.asyncio
    async def test_fixer_token_usage_counted_once(self):
        rejection = reject(issue("major", "Combat section is thin", "Combat Basics", "expand"))
        fixer = AppendingFixer(token_usage={"input_tokens": 30, "output_tokens": 12})

        result = await build(reviewer=ScriptedReviewer(rejection, approve()), fixer=fixer).generate(REQUEST)

        assert result.approved is True
        assert result.metadata.token_usage.total_tokens == 42
        fixer_calls = [c for c in result.metadata.calls if c.operation == "apply_fix"]
        assert len(fixer_calls) == 1
        assert fixer_calls[0].token_usage.total_tokens == 42

    @pytest.mark.asyncio
    async def test_budgets_exhausted_returns_best_unapproved(self):
        rejection = reject(issue("minor", "Wording is clunky", None, "direct_edit"))
        reviewer = ScriptedReviewer(rejection)
        fixer = AppendingFixer()

        result = await build(reviewer=reviewer, fixer=fixer).generate(REQUEST)

        assert result.approved is False
        assert [i.message for i in result.outstanding_issues] == ["Wording is clunky"]
        recovery = result.metadata.recovery
        assert recovery.fixer_iterations == 2
        assert recovery.plan_retries == 0
        assert [f.iteration for f in recovery.fixes_applied] == [1, 2]
        assert [i.message for i in recovery.final_reviewer_issues] == ["Wording is clunky"]
        assert len(reviewer.drafts) == 3

    @pytest.mark.asyncio
    async def test_failed_fixes_stop_repair(self):
        rejection = reject(issue("minor", "Wording is clunky", None, "direct_edit"))
        reviewer = ScriptedReviewer(rejection)
        fixer = AppendingFixer(success=False)

        result = await build(reviewer=reviewer, fixer=fixer).generate(REQUEST)

        assert result.approved is False
        assert result.metadata.recovery.fixer_iterations == 1
        assert result.metadata.recovery.fixes_applied[0].success is False
        assert len(reviewer.drafts) == 1

    @pytest.mark.asyncio
    async def test_no_fixer_means_no_repair(self):
        rejection = reject(issue("minor", "Wording is clunky", None, "direct_edit"))
        result = await build(reviewer=ScriptedReviewer(rejection)).generate(REQUEST)
        assert result.approved is False
        assert result.metadata.recovery.fixer_iterations == 0

    @pytest.mark.asyncio
    async def test_fixer_budget_respected(self):
        config = PipelineConfig(recovery=RecoveryConfig(max_fixer_iterations=0))
        rejection = reject(issue("minor", "Wording is clunky", None, "direct_edit"))
        fixer = AppendingFixer()
        result = await build(reviewer=ScriptedReviewer(rejection), fixer=fixer, config=config).generate(REQUEST)
        assert fixer.calls == []
        assert result.metadata.recovery.fixer_iterations == 0


class TestPlanRetry:
    @pytest.mark.asyncio
    async def test_critical_issue_triggers_replan_with_feedback(self):
        planner = ScriptedPlanner(make_plan(title="First Plan"), make_plan(title="Second Plan"))
        writer = ScriptedWriter(bodies={"Getting Started": "Meet **Ultrahand** early."})
        reviewer = ScriptedReviewer(reject(issue("critical", "Wrong angle entirely")), approve())

        result = await build(planner=planner, writer=writer, reviewer=reviewer, fixer=AppendingFixer()).generate(
            REQUEST
        )

        assert result.approved is True
        assert result.plan.title == "Second Plan"
        assert result.metadata.recovery.plan_retries == 1
        assert result.metadata.recovery.fixer_iterations == 0
        assert planner.feedback[0] == []
        assert [i.message for i in planner.feedback[1]] == ["Wrong angle entirely"]

        # Coverage state starts over for the new plan
        assert len(writer.tasks) == 6
        assert writer.tasks[3].section_index == 1
        assert writer.tasks[3].cross_reference_context == ""
        assert [i.message for i in writer.tasks[3].feedback] == ["Wrong angle entirely"]
        assert result.section_write_state.sections_written == 3

    @pytest.mark.asyncio
    async def test_minor_issues_do_not_replan(self):
        planner = ScriptedPlanner(make_plan())
        reviewer = ScriptedReviewer(reject(issue("minor", "Nitpick")))
        result = await build(planner=planner, reviewer=reviewer).generate(REQUEST)
        assert len(planner.feedback) == 1
        assert result.metadata.recovery.plan_retries == 0

    @pytest.mark.asyncio
    async def test_best_draft_kept_across_plans(self):
        planner = ScriptedPlanner(make_plan(title="First Plan"), make_plan(title="Second Plan"))
        reviewer = ScriptedReviewer(
            reject(issue("major", "Missing a section")),
            reject(issue("critical", "Factually wrong")),
        )
        result = await build(planner=planner, reviewer=reviewer).generate(REQUEST)

        assert result.approved is False
        assert result.metadata.recovery.plan_retries == 1
        assert result.plan.title == "First Plan"
        assert parse_draft(result.markdown).title == "First Plan"
        assert [i.message for i in result.outstanding_issues] == ["Missing a section"]
        assert [i.message for i in result.metadata.recovery.initial_reviewer_issues] == ["Missing a section"]

    @pytest.mark.asyncio
    async def test_plan_retry_budget(self):
        config = PipelineConfig(recovery=RecoveryConfig(max_plan_retries=2))
        planner = ScriptedPlanner(make_plan())
        reviewer = ScriptedReviewer(reject(issue("critical", "Still wrong")))
        result = await build(planner=planner, reviewer=reviewer, config=config).generate(REQUEST)
        assert len(planner.feedback) == 3
        assert result.metadata.recovery.plan_retries == 2


class TestCoverageAcrossSections:
    @pytest.mark.asyncio
    async def test_three_section_run_threads_coverage(self):
        plan = make_plan(
            required=["Ultrahand", "Fuse", "Recall"],
            must_cover={
                "Getting Started": ["Ultrahand"],
                "Combat Basics": ["Fuse"],
                "Exploration Tips": ["Recall"],
            },
        )
        writer = ScriptedWriter(
            bodies={
                "Getting Started": "Your first power is **Ultrahand**, which lifts and joins objects.",
                "Combat Basics": "Attach rocks to sticks with **Fuse** for sturdier weapons.",
                "Exploration Tips": "Climb falling debris back to the sky with **Recall**.",
            }
        )

        result = await build(planner=ScriptedPlanner(plan), writer=writer).generate(REQUEST)
        first, second, third = writer.tasks

        assert first.cross_reference_context == ""
        assert "=== MUST COVER IN THIS SECTION ===\n- Ultrahand" in first.required_elements_reminder
        assert "- Recall" in first.required_elements_reminder

        assert '- Section 1 "Getting Started": Ultrahand' in second.cross_reference_context
        assert "- Ultrahand" not in second.required_elements_reminder

        assert '- Section 2 "Combat Basics": Fuse' in third.cross_reference_context
        reminder = third.required_elements_reminder
        assert "- Recall" in reminder
        assert "- Ultrahand" not in reminder
        assert "- Fuse" not in reminder
        assert "ultrahand" in third.guidance.lower()

        state = result.section_write_state
        assert state.covered_elements == frozenset({"ultrahand", "fuse", "recall"})
        assert state.covered_topics["fuse"].section_index == 2
        assert not any(i.code == "uncovered_element" for i in result.metadata.validation_issues)

    @pytest.mark.asyncio
    async def test_partial_word_matches_do_not_cover_elements(self):
        plan = make_plan(required=["Fuse", "Map"])
        writer = ScriptedWriter(
            bodies={"Getting Started": "The old man refused to talk until you finished Mapping the plateau."}
        )
        result = await build(planner=ScriptedPlanner(plan), writer=writer).generate(REQUEST)

        reminder = writer.tasks[1].required_elements_reminder
        assert "- Fuse" in reminder
        assert "- Map" in reminder
        assert result.section_write_state.covered_elements == frozenset()

    @pytest.mark.asyncio
    async def test_writer_reported_elements_win(self):
        plan = make_plan(required=["Ultrahand", "Fuse"], must_cover={"Getting Started": ["Ultrahand", "Fuse"]})
        writer = ScriptedWriter(
            bodies={"Getting Started": {"markdown": "Ultrahand and Fuse basics.", "coveredElements": ["Fuse"]}}
        )
        result = await build(planner=ScriptedPlanner(plan), writer=writer).generate(REQUEST)
        assert result.section_write_state.covered_elements == frozenset({"fuse"})
        assert "- Ultrahand" in writer.tasks[1].required_elements_reminder


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_before_start(self):
        event = asyncio.Event()
        event.set()
        researcher = ScriptedResearcher()
        with pytest.raises(GenerationCancelledError) as exc_info:
            await build(researcher=researcher).generate(REQUEST, cancel_event=event)
        assert exc_info.value.phase == "scout"
        assert researcher.calls == 0

    @pytest.mark.asyncio
    async def test_cancel_between_sections(self):
        event = asyncio.Event()
        writer = ScriptedWriter(on_write=lambda task: event.set())
        reviewer = ScriptedReviewer(approve())
        with pytest.raises(GenerationCancelledError) as exc_info:
            await build(writer=writer, reviewer=reviewer).generate(REQUEST, cancel_event=event)
        assert exc_info.value.phase == "specialist"
        assert len(writer.tasks) == 1
        assert reviewer.drafts == []

    @pytest.mark.asyncio
    async def test_generation_timeout(self):
        class SlowResearcher:
            async def research(self, request):
                await asyncio.sleep(5)

        config = PipelineConfig(generation_timeout=0.05)
        with pytest.raises(GenerationTimeoutError) as exc_info:
            await build(researcher=SlowResearcher(), config=config).generate(REQUEST)
        assert exc_info.value.phase == "scout"
        assert isinstance(exc_info.value, GenerationCancelledError)


class TestCollaboratorRetries:
    @pytest.mark.asyncio
    async def test_malformed_plan_retried(self):
        planner = ScriptedPlanner("I think the article should cover combat.", make_plan())
        sleeps = []

        async def sleep(seconds):
            sleeps.append(seconds)

        result = await build(planner=planner, sleep_func=sleep).generate(REQUEST)

        assert result.approved is True
        plan_calls = [c for c in result.metadata.calls if c.operation == "plan"]
        assert len(plan_calls) == 1
        assert plan_calls[0].attempts == 2
        assert len(sleeps) == 1

    @pytest.mark.asyncio
    async def test_malformed_payload_exhausts_retries(self):
        config = PipelineConfig(retry=RetryConfig(max_retries=1))
        planner = ScriptedPlanner({"title": "No sections"})
        with pytest.raises(PayloadValidationError):
            await build(planner=planner, config=config).generate(REQUEST)
        assert len(planner.feedback) == 2

    @pytest.mark.asyncio
    async def test_non_retryable_error_propagates(self):
        class BrokenResearcher:
            def __init__(self):
                self.calls = 0

            async def research(self, request):
                self.calls += 1
                raise ValueError("prompt rejected")

        researcher = BrokenResearcher()
        with pytest.raises(ValueError, match="prompt rejected"):
            await build(researcher=researcher).generate(REQUEST)
        assert researcher.calls == 1

    @pytest.mark.asyncio
    async def test_transient_review_failure_retried(self):
        class FlakyReviewer:
            def __init__(self):
                self.calls = 0

            async def review(self, draft, plan):
                self.calls += 1
                if self.calls == 1:
                    raise ConnectionError("connection reset by peer")
                return approve()

        reviewer = FlakyReviewer()
        result = await build(reviewer=reviewer).generate(REQUEST)
        assert result.approved is True
        assert reviewer.calls == 2


class TestAssets:
    @pytest.mark.asyncio
    async def test_images_fetched_and_failures_recorded(self):
        def handler(request):
            return httpx.Response(200, content=PNG_BYTES)

        fetcher = SecureImageFetcher(transport=httpx.MockTransport(handler), resolver=public_resolver)
        store = MemoryAssetStore()
        writer = ScriptedWriter(
            bodies={
                "Getting Started": (
                    "Start here. ![Map](https://img.example.com/map.png)\n\n"
                    "![Metadata](https://169.254.169.254/latest/meta-data/)"
                ),
            }
        )
        config = PipelineConfig(fetch=FetchConfig(check_size_first=False))

        result = await build(writer=writer, config=config, image_fetcher=fetcher, asset_store=store).generate(
            REQUEST
        )

        assets = result.metadata.assets
        assert [a.url for a in assets] == ["https://img.example.com/map.png"]
        assert assets[0].media_type == "image/png"
        assert assets[0].stored == "assets/1.png"

        failures = result.metadata.asset_failures
        assert len(failures) == 1
        assert failures[0].error_code == "SSRF_BLOCKED"
        assert failures[0].security is True
        assert result.approved is True

    @pytest.mark.asyncio
    async def test_fetch_disabled(self):
        def handler(request):
            raise AssertionError("no fetch expected")

        fetcher = SecureImageFetcher(transport=httpx.MockTransport(handler), resolver=public_resolver)
        writer = ScriptedWriter(bodies={"Getting Started": "![Map](https://img.example.com/map.png)"})
        config = PipelineConfig(fetch=FetchConfig(enabled=False))
        result = await build(writer=writer, config=config, image_fetcher=fetcher).generate(REQUEST)
        assert result.metadata.assets == []
        assert result.metadata.asset_failures == []


class TestIsolation:
    @pytest.mark.asyncio
    async def test_concurrent_runs_do_not_share_state(self):
        orchestrator = build(reviewer=ScriptedReviewer(approve()))
        first, second = await asyncio.gather(orchestrator.generate(REQUEST), orchestrator.generate(REQUEST))
        assert first.metadata.run_id != second.metadata.run_id
        assert first.section_write_state.sections_written == 3
        assert second.section_write_state.sections_written == 3
        assert len(first.metadata.calls) == len(second.metadata.calls) == 6

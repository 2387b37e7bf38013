"""End-to-end tests for ResearchCoordinator with a mocked search service."""

import asyncio
from unittest.mock import AsyncMock

import httpx
import pytest

from research_agent.agents.planning_agent import PlanningAgent
from research_agent.agents.sifters.critic_agent import CriticAgent
from research_agent.agents.sifters.data_consolidator import DataConsolidator
from research_agent.agents.sifters.source_authority import SourceAuthorityResolver
from research_agent.agents.wide_research.reports import INSUFFICIENT_DATA_STATUS
from research_agent.config.decision_rules import MAX_TOTAL_ERRORS
from research_agent.data_management.memory_store import MemoryStore
from research_agent.data_management.schemas.memory_schema import MemoryKind
from research_agent.data_management.schemas.research_schema import (
    ErrorKind,
    ResearchPlan,
    ResearchState,
    ResearchStrategy,
)
from research_agent.orchestration.actions import Adapt
from research_agent.orchestration.coordinator import (
    ResearchCallbacks,
    ResearchCoordinator,
    progress_changes,
    search_queries,
    strategy_changes,
)
from research_agent.orchestration.decision_engine import DecisionEngine, ProgressEvaluation
from research_agent.orchestration.state_machine import ResearchStateMachine
from research_agent.orchestration.task_executor import ParallelExecutor
from research_agent.tools.search import SearchHit, SearchResult

QUERY = "Apple revenue"

HITS = [
    SearchHit(
        url="https://www.sec.gov/apple-10k",
        title="Apple 10-K",
        snippet="Apple reported annual revenue of $383 billion in fiscal 2023 according to its 10-K filing.",
        position=1,
    ),
    SearchHit(
        url="https://www.reuters.com/technology/apple-results",
        title="Apple results",
        snippet="Apple revenue declined slightly as iPhone sales slowed, Reuters reported on Thursday.",
        position=2,
    ),
    SearchHit(
        url="https://someblog.example/apple",
        title="Apple thoughts",
        snippet="A blogger discusses Apple revenue trends and what they might mean for investors.",
        position=3,
    ),
]

REUTERS_FIGURE = SearchHit(
    url="https://www.reuters.com/technology/apple-revenue",
    title="Apple revenue",
    snippet="Apple revenue reached $350 billion as iPhone sales slowed, Reuters reported.",
    position=2,
)


def status_error(code: int) -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "https://search.example/search")
    response = httpx.Response(code, request=request)
    return httpx.HTTPStatusError(f"Client error '{code}'", request=request, response=response)


# ── Fixtures ──────────────────────────────────────────────────────────────


@pytest.fixture
def memory():
    return MemoryStore()


@pytest.fixture
def search():
    service = AsyncMock()
    service.search.return_value = SearchResult(success=True, results=list(HITS))
    return service


def make_coordinator(memory, search, max_iterations: int = 3) -> ResearchCoordinator:
    authority = SourceAuthorityResolver()
    return ResearchCoordinator(
        planner=PlanningAgent(memory=memory),
        state_machine=ResearchStateMachine(),
        executor=ParallelExecutor(max_concurrency=3, base_delay=0.001),
        decision_engine=DecisionEngine(memory=memory),
        memory=memory,
        authority=authority,
        consolidator=DataConsolidator(authority),
        critic=CriticAgent(authority),
        search=search,
        max_iterations=max_iterations,
        task_timeout=5.0,
        task_retries=0,
    )


@pytest.fixture
def coordinator(memory, search):
    return make_coordinator(memory, search)


class TestHelpers:
    def test_search_queries_follow_strategy(self):
        plan = ResearchPlan(
            query=QUERY,
            strategy=ResearchStrategy(
                approach="breadth-first",
                source_types=["news", "financial"],
                verification_level="thorough",
                parallelism=5,
            ),
        )
        assert search_queries(plan) == [
            "Apple revenue",
            "Apple revenue news",
            "Apple revenue financial",
            "Apple revenue official",
        ]

    def test_search_queries_capped_by_parallelism(self):
        plan = ResearchPlan(
            query=QUERY,
            strategy=ResearchStrategy(source_types=["news", "financial", "academic"], parallelism=2),
        )
        assert len(search_queries(plan)) == 2

    def test_strategy_changes(self):
        changes = strategy_changes(Adapt(changes=("broaden_query", "increase_sources", "approach:depth-first", "x")))
        assert changes == {"approach": "depth-first", "max_sources": 20}

    def test_progress_changes_skip_what_already_holds(self):
        adjustments = [{"parallelism": "increase"}, {"verification_level": "thorough"}, {"retry_strategy": "exponential"}]

        assert progress_changes(adjustments, ResearchStrategy(parallelism=3)) == {
            "parallelism": 4,
            "verification_level": "thorough",
        }
        assert progress_changes(adjustments, ResearchStrategy(parallelism=20, verification_level="thorough")) == {}


class TestResearchRun:
    @pytest.mark.asyncio
    async def test_completes_with_data_report(self, coordinator, memory, search):
        states = []
        progress = []
        callbacks = ResearchCallbacks(on_state_change=states.append, on_progress=progress.append)

        outcome = await coordinator.run(QUERY, callbacks=callbacks)

        assert outcome.state == ResearchState.COMPLETED
        assert "Mode: Research (Data Only)" in outcome.report
        assert INSUFFICIENT_DATA_STATUS not in outcome.report
        assert {s.domain for s in outcome.sources} == {"sec.gov", "reuters.com", "someblog.example"}
        assert outcome.sources[0].domain == "sec.gov"
        assert outcome.plan is not None
        assert outcome.success == (outcome.quality.overall >= 0.6)
        assert states[0] == ResearchState.PLANNING
        assert states[-1] == ResearchState.COMPLETED
        assert progress[-1] == 100
        assert len(memory.memories) == 1
        assert not coordinator.is_running

    @pytest.mark.asyncio
    async def test_no_sources_ends_with_insufficient_data(self, coordinator, memory, search):
        search.search.return_value = SearchResult(success=True, results=[])

        outcome = await coordinator.run(QUERY)

        assert outcome.state == ResearchState.FAILED
        assert not outcome.success
        assert outcome.sources == []
        assert INSUFFICIENT_DATA_STATUS in outcome.report
        assert '"Apple revenue"' in outcome.report
        assert "## Key Findings" not in outcome.report
        assert outcome.plan.adaptations
        [stored] = memory.memories
        assert stored.kind == MemoryKind.FAILURE

    @pytest.mark.asyncio
    async def test_search_errors_listed_in_report(self, coordinator, search):
        search.search.side_effect = RuntimeError("connection reset")

        outcome = await coordinator.run(QUERY)

        assert outcome.state == ResearchState.FAILED
        assert "connection reset" in outcome.report

    @pytest.mark.asyncio
    async def test_failed_search_result_listed_in_report(self, coordinator, search):
        search.search.return_value = SearchResult(success=False, error="HTTP 403")

        outcome = await coordinator.run(QUERY)

        assert INSUFFICIENT_DATA_STATUS in outcome.report
        assert "HTTP 403" in outcome.report

    @pytest.mark.asyncio
    async def test_stop_ends_run_with_partial_report(self, coordinator):
        def _stop_when_scraping(state):
            if state == ResearchState.SCRAPING:
                coordinator.stop()

        outcome = await coordinator.run(QUERY, callbacks=ResearchCallbacks(on_state_change=_stop_when_scraping))

        assert outcome.state == ResearchState.FAILED
        assert "Research (incomplete)" in outcome.report
        assert not outcome.success

    @pytest.mark.asyncio
    async def test_disagreeing_sources_cross_referenced(self, coordinator, search):
        search.search.return_value = SearchResult(success=True, results=[HITS[0], REUTERS_FIGURE, HITS[2]])

        outcome = await coordinator.run(QUERY)

        revenue_by_domain = {s.domain: s.fields.get("revenue") for s in outcome.sources}
        assert revenue_by_domain["sec.gov"] == pytest.approx(383e9)
        assert revenue_by_domain["reuters.com"] == pytest.approx(350e9)
        # Authority decides the conflict
        assert outcome.data["revenue"] == pytest.approx(383e9)
        assert any("revenue" in warning for warning in outcome.warnings)
        assert "revenue $383 billion" in {v.claim for v in outcome.verifications}
        assert "## Cross-Referenced Data" in outcome.report
        assert "### Discrepancies" in outcome.report

    @pytest.mark.asyncio
    async def test_step_completion_follows_dependencies(self, coordinator):
        outcome = await coordinator.run(QUERY)

        plan = outcome.plan
        assert outcome.state == ResearchState.COMPLETED
        assert all(step.status == "completed" for step in plan.steps)
        for step in plan.steps:
            assert plan.is_ready(step)


class TestErrorRouting:
    @pytest.mark.asyncio
    async def test_rate_limit_sends_run_back_to_planning(self, coordinator, search):
        search.search.side_effect = status_error(429)
        states = []

        outcome = await coordinator.run(QUERY, callbacks=ResearchCallbacks(on_state_change=states.append))

        first = outcome.errors[0]
        assert first.kind == ErrorKind.RATE_LIMIT
        assert first.context == {"phase": "searching", "query": QUERY}
        searching = states.index(ResearchState.SEARCHING)
        assert states[searching + 1] == ResearchState.PLANNING
        assert any(a.reason.startswith("Rate limited during search") for a in outcome.plan.adaptations)
        assert outcome.plan.strategy.parallelism == 2
        assert outcome.state == ResearchState.FAILED
        assert INSUFFICIENT_DATA_STATUS in outcome.report
        assert "429" in outcome.report

    @pytest.mark.asyncio
    async def test_error_limit_fails_the_run(self, memory, search):
        search.search.side_effect = httpx.ConnectError("connection refused")
        coordinator = make_coordinator(memory, search, max_iterations=10)
        seen = []

        outcome = await coordinator.run(QUERY, callbacks=ResearchCallbacks(on_error=seen.append))

        assert outcome.state == ResearchState.FAILED
        assert len(outcome.errors) > MAX_TOTAL_ERRORS
        assert all(e.kind == ErrorKind.NETWORK and e.recoverable for e in outcome.errors)
        assert seen == outcome.errors
        assert "Too many errors accumulated" in outcome.report

    @pytest.mark.asyncio
    async def test_failed_search_result_is_classified(self, coordinator, search):
        search.search.return_value = SearchResult(success=False, error="HTTP 403")

        outcome = await coordinator.run(QUERY)

        [error] = outcome.errors
        assert error.kind == ErrorKind.NETWORK
        assert not error.recoverable
        assert outcome.state == ResearchState.FAILED

    @pytest.mark.asyncio
    async def test_partial_failure_keeps_sources(self, coordinator, search):
        calls = 0

        async def flaky(query, max_results=8, options=None):
            nonlocal calls
            calls += 1
            if calls == 1:
                raise status_error(503)
            return SearchResult(success=True, results=list(HITS))

        search.search.side_effect = flaky

        outcome = await coordinator.run(QUERY)

        assert outcome.errors[0].kind == ErrorKind.NETWORK
        assert outcome.errors[0].recoverable
        assert outcome.state == ResearchState.COMPLETED
        assert outcome.sources


class TestConcurrentRuns:
    @pytest.mark.asyncio
    async def test_overlapping_runs_are_serialized(self, coordinator, search):
        gate = asyncio.Event()

        async def gated(query, max_results=8, options=None):
            await gate.wait()
            return SearchResult(success=True, results=list(HITS))

        search.search.side_effect = gated

        first = asyncio.create_task(coordinator.run(QUERY))
        await asyncio.sleep(0.05)
        assert coordinator.is_running
        second = asyncio.create_task(coordinator.run("Apple iPhone sales"))
        await asyncio.sleep(0.05)
        gate.set()

        outcomes = await asyncio.wait_for(asyncio.gather(first, second), timeout=10)

        assert [o.query for o in outcomes] == [QUERY, "Apple iPhone sales"]
        assert all(o.state == ResearchState.COMPLETED for o in outcomes)
        assert not coordinator.is_running


class TestProgressReview:
    @pytest.mark.asyncio
    async def test_off_track_evaluation_adapts_plan_once(self, coordinator, monkeypatch):
        reason = "Quality is below threshold at 50% progress"

        def behind(context):
            return ProgressEvaluation(
                on_track=False,
                suggestions=[reason],
                adjustments=[{"verification_level": "thorough"}, {"retry_strategy": "exponential"}],
            )

        monkeypatch.setattr(coordinator.decision_engine, "evaluate_progress", behind)

        outcome = await coordinator.run(QUERY)

        assert outcome.plan.strategy.verification_level == "thorough"
        assert [a.reason for a in outcome.plan.adaptations].count(reason) == 1
        assert any(step.kind == "verify" for step in outcome.plan.steps)
        assert all(step.status == "completed" for step in outcome.plan.steps)

    @pytest.mark.asyncio
    async def test_current_step_tracks_plan(self, coordinator):
        steps = []

        def record(state):
            steps.append(coordinator.state_machine.context.current_step)

        await coordinator.run(QUERY, callbacks=ResearchCallbacks(on_state_change=record))

        assert "step-1" in steps
        assert steps[-1] is None

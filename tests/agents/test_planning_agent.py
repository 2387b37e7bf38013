"""Tests for PlanningAgent query analysis, strategy and step generation."""

from unittest.mock import AsyncMock

import pytest

from research_agent.agents.planning_agent import PlanningAgent
from research_agent.data_management.memory_store import MemoryStore
from research_agent.data_management.schemas.research_schema import QualityScore, ResearchPlan, ResearchStrategy
from research_agent.llm.inference import InferenceResult

LONG_QUERY = "Which Saudi companies listed on Tadawul announced dividends in the past year"


# ── Fixtures ──────────────────────────────────────────────────────────────


@pytest.fixture
def planner():
    return PlanningAgent()


class TestQueryAnalysis:
    @pytest.mark.asyncio
    async def test_simple_financial_query(self, planner):
        analysis = await planner.analyze_query("Apple revenue")
        assert analysis.complexity == "simple"
        assert analysis.intent == "exploratory"
        assert analysis.suggested_sources == ["news", "financial", "official", "regulatory"]
        assert analysis.entities == ["Apple"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "query,intent",
        [
            ("Compare Tesla versus Rivian", "comparative"),
            ("Verify that Acme acquired Beta", "verification"),
            ("How many employees does Acme have", "factual"),
            ("Acme expansion", "exploratory"),
        ],
    )
    async def test_intent(self, planner, query, intent):
        assert (await planner.analyze_query(query)).intent == intent

    @pytest.mark.asyncio
    async def test_complex_query_gets_sub_questions(self, planner):
        analysis = await planner.analyze_query("Saudi and UAE stock listings")
        assert analysis.complexity == "complex"
        assert analysis.region == "SA"
        assert analysis.sub_questions == [
            "Who is Saudi and what is their role?",
            "What are the regional considerations for SA?",
        ]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "query,timeframe",
        [
            ("Apple revenue 2023", "2023"),
            ("latest Apple news", "recent"),
            ("latest Apple quarterly revenue", "quarterly"),
            ("Apple history", None),
        ],
    )
    async def test_timeframe(self, planner, query, timeframe):
        assert (await planner.analyze_query(query)).timeframe == timeframe

    @pytest.mark.asyncio
    async def test_inference_sub_questions_for_long_query(self):
        inference = AsyncMock()
        inference.complete.return_value = InferenceResult(
            success=True, result="1. Which companies listed?\n2) What dividends were paid?"
        )
        planner = PlanningAgent(inference=inference)

        analysis = await planner.analyze_query(LONG_QUERY)

        inference.complete.assert_awaited_once()
        assert analysis.sub_questions == ["Which companies listed?", "What dividends were paid?"]

    @pytest.mark.asyncio
    async def test_inference_failure_keeps_heuristics(self):
        inference = AsyncMock()
        inference.complete.return_value = InferenceResult(success=False, error="quota")
        planner = PlanningAgent(inference=inference)

        analysis = await planner.analyze_query(LONG_QUERY)

        assert analysis.region == "SA"
        assert analysis.intent == "factual"

    @pytest.mark.asyncio
    async def test_short_query_skips_inference(self):
        inference = AsyncMock()
        planner = PlanningAgent(inference=inference)
        await planner.analyze_query("Apple revenue")
        inference.complete.assert_not_awaited()


class TestCreatePlan:
    @pytest.mark.asyncio
    async def test_simple_plan(self, planner):
        plan = await planner.create_plan("Apple revenue")

        assert plan.strategy.approach == "breadth-first"
        assert plan.strategy.verification_level == "basic"
        assert plan.strategy.parallelism == 3
        assert plan.priority == "low"
        assert [s.kind for s in plan.steps] == ["search", "scrape", "analyze"]
        assert plan.steps[1].dependencies == ["step-1"]
        assert plan.estimated_duration == pytest.approx(8.66, abs=0.01)

    @pytest.mark.asyncio
    async def test_deep_verify_adds_verification(self, planner):
        plan = await planner.create_plan("Apple revenue", deep_verify=True)

        assert plan.strategy.verification_level == "thorough"
        assert [s.kind for s in plan.steps] == ["search", "search", "scrape", "analyze", "verify"]

    @pytest.mark.asyncio
    async def test_complex_plan(self, planner):
        plan = await planner.create_plan("Saudi and UAE stock listings")

        assert plan.strategy.approach == "hybrid"
        assert plan.strategy.max_sources == 20
        assert plan.strategy.parallelism == 8
        assert plan.priority == "high"
        assert [s.kind for s in plan.steps] == [
            "search", "search", "search", "scrape", "analyze", "verify", "enrich",
        ]

    @pytest.mark.asyncio
    async def test_failed_approach_avoided(self):
        memory = MemoryStore()
        failed = ResearchPlan(query="Apple revenue", strategy=ResearchStrategy(approach="breadth-first"))
        await memory.record_outcome("Apple revenue", failed, QualityScore(), [], success=False)
        planner = PlanningAgent(memory=memory)

        plan = await planner.create_plan("Apple revenue")

        assert plan.strategy.approach == "depth-first"


class TestPlanMaintenance:
    @pytest.mark.asyncio
    async def test_adapt_plan_returns_copy(self, planner):
        plan = await planner.create_plan("Apple revenue")

        adapted = await planner.adapt_plan(plan, "low quality", {"verification_level": "thorough", "max_sources": 20})

        assert plan.strategy.verification_level == "basic"
        assert plan.adaptations == []
        assert adapted.strategy.verification_level == "thorough"
        assert adapted.strategy.max_sources == 20
        assert adapted.adaptations[0].reason == "low quality"
        assert "max_sources: 20" in adapted.adaptations[0].changes
        assert any(s.kind == "verify" for s in adapted.steps)

    @pytest.mark.asyncio
    async def test_adapt_without_approach_change_keeps_steps(self, planner):
        plan = await planner.create_plan("Apple revenue")
        adapted = await planner.adapt_plan(plan, "more sources", {"max_sources": 15})
        assert [s.id for s in adapted.steps] == [s.id for s in plan.steps]

    @pytest.mark.asyncio
    async def test_step_status_and_next_steps(self, planner):
        plan = await planner.create_plan("Apple revenue")
        assert [s.id for s in planner.get_next_steps(plan)] == ["step-1"]

        assert planner.update_step_status(plan, "step-1", "completed", result=["hit"])
        assert plan.get_step("step-1").result == ["hit"]
        assert [s.id for s in planner.get_next_steps(plan)] == ["step-2"]

        assert not planner.update_step_status(plan, "step-99", "completed")

    @pytest.mark.asyncio
    async def test_step_cannot_complete_before_dependencies(self, planner):
        plan = await planner.create_plan("Apple revenue")
        [analyze] = [s for s in plan.steps if s.kind == "analyze"]

        assert not planner.update_step_status(plan, analyze.id, "completed")
        assert analyze.status == "pending"
        # Other statuses are not gated
        assert planner.update_step_status(plan, analyze.id, "failed")
        assert analyze.status == "failed"

"""Tests for rule-based action selection."""

from datetime import datetime, timedelta, timezone

import pytest

from research_agent.data_management.memory_store import MemoryStore
from research_agent.data_management.schemas.research_schema import (
    AgentError,
    DecisionContext,
    ErrorKind,
    QualityScore,
    ResearchPlan,
    ResearchState,
    ResearchStrategy,
)
from research_agent.orchestration.actions import Adapt, Complete, Continue, Fail, ParallelSearch, Retry
from research_agent.orchestration.decision_engine import DecisionEngine, Rule

QUERY = "Apple quarterly revenue"


# ── Fixtures ──────────────────────────────────────────────────────────────


@pytest.fixture
def engine():
    return DecisionEngine()


def context(**overrides) -> DecisionContext:
    values = {"plan": ResearchPlan(query=QUERY, strategy=ResearchStrategy())}
    values.update(overrides)
    return DecisionContext(**values)


def uniform_quality(value: float) -> QualityScore:
    return QualityScore(
        accuracy=value, completeness=value, freshness=value, source_quality=value, claim_verification=value
    )


class TestRules:
    def test_too_many_errors_fails(self, engine):
        errors = [AgentError(message=f"e{i}") for i in range(6)]
        decision = engine.decide(context(errors=errors))
        assert isinstance(decision.action, Fail)
        assert decision.rule == "too_many_errors"

    def test_frequent_recent_errors_adapt(self, engine):
        errors = [AgentError(message=f"e{i}") for i in range(3)]
        decision = engine.decide(context(errors=errors))
        assert decision.action == Adapt(changes=("reduce_parallelism", "increase_timeout"))

    def test_rate_limit_retries_current_step(self, engine):
        errors = [AgentError(kind=ErrorKind.RATE_LIMIT, message="429", recoverable=True)]
        decision = engine.decide(context(errors=errors, current_step="step-1"))
        assert decision.action == Retry(target="step-1")

    def test_cleared_rate_limit_no_longer_retries(self, engine):
        stale = datetime.now(timezone.utc) - timedelta(minutes=5)
        errors = [AgentError(kind=ErrorKind.RATE_LIMIT, message="429", recoverable=True, timestamp=stale)]
        decision = engine.decide(context(errors=errors, current_step="step-1"))
        assert not isinstance(decision.action, Retry)
        assert decision.rule == "default"

    def test_low_compile_quality_adapts(self, engine):
        decision = engine.decide(context(state=ResearchState.COMPILING, quality=uniform_quality(0.2)))
        assert decision.action == Adapt(changes=("increase_sources", "deeper_verification"))

    def test_weak_verification_searches_more(self, engine):
        quality = uniform_quality(0.7).merged(claim_verification=0.2)
        decision = engine.decide(context(state=ResearchState.VERIFYING, quality=quality))
        assert decision.action == ParallelSearch(
            queries=(f"{QUERY} verification", f"{QUERY} sources", f"{QUERY} official")
        )

    def test_no_results_after_patience_adapts(self, engine):
        decision = engine.decide(context(state=ResearchState.SEARCHING, elapsed_time=20))
        assert decision.action == Adapt(changes=("broaden_query", "change_sources"))

    def test_no_results_before_patience_continues(self, engine):
        decision = engine.decide(context(state=ResearchState.SEARCHING, elapsed_time=5))
        assert decision.action == Continue()
        assert decision.rule == "default"

    def test_quality_met_completes_with_alternatives(self, engine):
        decision = engine.decide(
            context(state=ResearchState.COMPILING, quality=uniform_quality(0.9), progress=100)
        )
        assert decision.action == Complete()
        assert decision.rule == "quality_met"
        assert decision.alternatives == [Complete()]

    def test_full_progress_completes(self, engine):
        decision = engine.decide(context(state=ResearchState.ANALYZING, progress=100))
        assert decision.rule == "progress_full"

    def test_custom_rule_takes_precedence(self, engine):
        engine.add_rule(Rule("always_fail", 200, lambda c: True, lambda c: Fail(reason="custom"), "Custom"))
        assert engine.decide(context()).action == Fail(reason="custom")


class TestConfidence:
    def test_confidence_formula(self, engine):
        decision = engine.decide(context(state=ResearchState.COMPILING, quality=uniform_quality(0.9)))
        # 0.6 * (0.9 * 0.3 + 0.7) * 1.0 * (0.5 + 0.5 * 0.5)
        assert decision.confidence == pytest.approx(0.4365)

    def test_confidence_floor(self, engine):
        assert engine.decide(context()).confidence == pytest.approx(0.1)

    def test_errors_reduce_confidence(self, engine):
        base = engine.decide(context(state=ResearchState.ANALYZING, progress=100)).confidence
        errored = engine.decide(
            context(state=ResearchState.ANALYZING, progress=100, errors=[AgentError(message="e")])
        ).confidence
        assert errored == pytest.approx(base * 0.9)


class TestMemoryIntegration:
    @pytest.mark.asyncio
    async def test_recommended_approach_added_to_adapt(self):
        memory = MemoryStore()
        plan = ResearchPlan(query=QUERY, strategy=ResearchStrategy(approach="depth-first"))
        await memory.record_outcome(QUERY, plan, uniform_quality(0.9), [], success=True)
        engine = DecisionEngine(memory=memory)

        decision = engine.decide(context(state=ResearchState.COMPILING, quality=uniform_quality(0.2)))

        assert decision.action == Adapt(
            changes=("increase_sources", "deeper_verification", "approach:depth-first")
        )


class TestProgressAndHistory:
    def test_lagging_progress(self, engine):
        evaluation = engine.evaluate_progress(context(elapsed_time=120, progress=10))
        assert not evaluation.on_track
        assert {"parallelism": "increase"} in evaluation.adjustments

    def test_low_quality_past_midpoint(self, engine):
        evaluation = engine.evaluate_progress(context(progress=60, quality=uniform_quality(0.2)))
        assert "Quality is below threshold at 50% progress" in evaluation.suggestions

    def test_on_track(self, engine):
        assert engine.evaluate_progress(context(progress=20, elapsed_time=30)).on_track

    def test_history(self, engine):
        engine.decide(context())
        engine.decide(context(state=ResearchState.SEARCHING))
        assert len(engine.get_history()) == 2
        engine.clear_history()
        assert engine.get_history() == []

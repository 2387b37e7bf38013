"""Tests for the research lifecycle state machine."""

import pytest

from research_agent.data_management.schemas.research_schema import (
    AgentError,
    ErrorKind,
    ResearchPlan,
    ResearchState,
    ResearchStrategy,
)
from research_agent.orchestration.state_machine import ResearchStateMachine

S = ResearchState


# ── Fixtures ──────────────────────────────────────────────────────────────


@pytest.fixture
def machine():
    return ResearchStateMachine()


def plan() -> ResearchPlan:
    return ResearchPlan(query="Apple revenue", strategy=ResearchStrategy())


def advance_to_searching(machine: ResearchStateMachine) -> None:
    machine.transition(S.PLANNING)
    machine.update_context(plan=plan())
    assert machine.transition(S.SEARCHING)


class TestTransitions:
    def test_starts_idle(self, machine):
        assert machine.state == S.IDLE
        assert machine.context.progress == 0

    def test_invalid_transition_rejected(self, machine):
        assert not machine.transition(S.COMPLETED)
        assert machine.state == S.IDLE

    def test_planning_to_searching_requires_plan(self, machine):
        assert machine.transition(S.PLANNING)
        assert not machine.transition(S.SEARCHING)
        assert machine.state == S.PLANNING

        machine.update_context(plan=plan())
        assert machine.transition(S.SEARCHING)
        assert machine.context.progress == 15

    def test_searching_routes_on_results(self, machine):
        advance_to_searching(machine)
        assert machine.get_valid_transitions() == [S.PLANNING, S.FAILED]

        machine.add_result({"url": "https://a.example"})
        assert machine.can_transition_to(S.SCRAPING)
        assert not machine.can_transition_to(S.PLANNING)

    def test_scraping_needs_progress(self, machine):
        advance_to_searching(machine)
        machine.add_result({"url": "https://a.example"})
        machine.transition(S.SCRAPING)
        machine.update_context(progress=29)
        assert not machine.transition(S.ANALYZING)

        machine.update_context(progress=30)
        assert machine.transition(S.ANALYZING)

    def test_progress_clamped(self, machine):
        machine.update_context(progress=250)
        assert machine.context.progress == 100

    def test_completed_sets_full_progress_and_idle_resets(self, machine):
        advance_to_searching(machine)
        machine.add_result({"url": "https://a.example"})
        machine.transition(S.SCRAPING)
        machine.update_context(progress=30)
        machine.transition(S.ANALYZING)
        machine.update_context(progress=50)
        machine.transition(S.VERIFYING)
        machine.transition(S.COMPILING)
        assert machine.transition(S.COMPLETED)
        assert machine.context.progress == 100

        assert machine.transition(S.IDLE)
        assert machine.context.progress == 0

    def test_update_quality_recomputes_overall(self, machine):
        quality = machine.update_quality(accuracy=1.0, completeness=1.0)
        assert quality.overall == pytest.approx(0.4)
        assert machine.context.quality.accuracy == 1.0


class TestErrorHandling:
    def test_rate_limit_while_searching_replans(self, machine):
        advance_to_searching(machine)
        state = machine.handle_error(AgentError(kind=ErrorKind.RATE_LIMIT, message="429", recoverable=True))
        assert state == S.PLANNING
        assert len(machine.context.errors) == 1

    def test_unrecoverable_search_error_fails(self, machine):
        advance_to_searching(machine)
        assert machine.handle_error(AgentError(message="boom")) == S.FAILED

    def test_recoverable_search_error_stays(self, machine):
        advance_to_searching(machine)
        error = AgentError(kind=ErrorKind.NETWORK, message="reset", recoverable=True)
        assert machine.handle_error(error) == S.SEARCHING

    def test_planning_failure_blocked_until_error_limit(self, machine):
        machine.transition(S.PLANNING)
        for _ in range(3):
            assert machine.handle_error(AgentError(message="bad")) == S.PLANNING
        assert machine.handle_error(AgentError(message="bad")) == S.FAILED

    def test_idle_unrecoverable_without_edge_stays(self, machine):
        assert machine.handle_error(AgentError(message="bad")) == S.IDLE
        assert machine.context.errors


class TestSubscribers:
    def test_listener_called_synchronously(self, machine):
        seen = []
        unsubscribe = machine.subscribe(lambda state, context: seen.append((state, context.progress)))

        machine.transition(S.PLANNING)
        assert seen == [(S.PLANNING, 5)]

        unsubscribe()
        machine.update_context(progress=10)
        assert len(seen) == 1

    def test_reset_notifies(self, machine):
        seen = []
        machine.transition(S.PLANNING)
        machine.subscribe(lambda state, context: seen.append(state))
        machine.reset()
        assert seen == [S.IDLE]
        assert machine.state == S.IDLE

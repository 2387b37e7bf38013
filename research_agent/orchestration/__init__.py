"""Orchestration: executor, lifecycle state machine, decisions and the run coordinator."""

from research_agent.orchestration.actions import ActionType, AgentAction
from research_agent.orchestration.coordinator import ResearchCallbacks, ResearchCoordinator, ResearchOutcome
from research_agent.orchestration.decision_engine import Decision, DecisionEngine, Rule
from research_agent.orchestration.state_machine import ResearchStateMachine
from research_agent.orchestration.task_executor import (
    ExecutionResult,
    ParallelExecutor,
    TaskFailedError,
    TaskTimeoutError,
)

__all__ = [
    "ActionType",
    "AgentAction",
    "Decision",
    "DecisionEngine",
    "ExecutionResult",
    "ParallelExecutor",
    "ResearchCallbacks",
    "ResearchCoordinator",
    "ResearchOutcome",
    "ResearchStateMachine",
    "Rule",
    "TaskFailedError",
    "TaskTimeoutError",
]

"""Research agents."""

from research_agent.agents.planning_agent import PlanningAgent, QueryAnalysis

__all__ = ["PlanningAgent", "QueryAnalysis"]

"""Wide research: decompose, fan out, aggregate, report."""

from research_agent.agents.wide_research.decomposer import decompose, extract_entities
from research_agent.agents.wide_research.wide_research_agent import (
    WideResearchAgent,
    WideResearchCallbacks,
)

__all__ = [
    "WideResearchAgent",
    "WideResearchCallbacks",
    "decompose",
    "extract_entities",
]

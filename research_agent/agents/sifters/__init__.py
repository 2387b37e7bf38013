"""Sifters that turn raw, untrusted source material into trusted evidence.

- SourceAuthorityResolver: Domain -> authority profile
- CrossReferenceValidator: Per-field agreement across sources
- DataConsolidator: Per-source extractions -> one record with quality metrics
- CriticAgent: Claims -> verification verdicts
"""

from research_agent.agents.sifters.critic_agent import CriticAgent
from research_agent.agents.sifters.cross_reference_validator import (
    CrossReferenceValidator,
    FuzzyMatchConfig,
)
from research_agent.agents.sifters.data_consolidator import ConsolidatedResult, DataConsolidator
from research_agent.agents.sifters.source_authority import SourceAuthority, SourceAuthorityResolver

__all__ = [
    "ConsolidatedResult",
    "CriticAgent",
    "CrossReferenceValidator",
    "DataConsolidator",
    "FuzzyMatchConfig",
    "SourceAuthority",
    "SourceAuthorityResolver",
]

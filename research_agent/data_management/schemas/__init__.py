"""Pydantic schemas for research plans, validation, verification, memory, and wide research.

Usage:
    from research_agent.data_management.schemas import QualityScore, ResearchPlan
    quality = QualityScore(accuracy=0.8, completeness=0.6)
"""

from research_agent.data_management.schemas.research_schema import (
    AgentError,
    DecisionContext,
    ErrorKind,
    PlanAdaptation,
    PlanStep,
    QualityScore,
    ResearchPlan,
    ResearchState,
    ResearchStrategy,
    SourceRecord,
    extract_domain,
)
from research_agent.data_management.schemas.validation_schema import (
    DiscrepancyDetail,
    FieldValidation,
    ValidationMethod,
    ValidationResult,
)
from research_agent.data_management.schemas.verification_schema import (
    Claim,
    ClaimStatus,
    ClaimVerification,
    FieldConfidence,
    SupportLevel,
    VerificationSource,
)
from research_agent.data_management.schemas.memory_schema import (
    AgentMemory,
    MemoryKind,
    PatternStats,
    SourceUsage,
    SourceUsefulness,
    StrategyRecommendation,
)

__all__ = [
    "AgentError",
    "DecisionContext",
    "ErrorKind",
    "PlanAdaptation",
    "PlanStep",
    "QualityScore",
    "ResearchPlan",
    "ResearchState",
    "ResearchStrategy",
    "SourceRecord",
    "extract_domain",
    "DiscrepancyDetail",
    "FieldValidation",
    "ValidationMethod",
    "ValidationResult",
    "Claim",
    "ClaimStatus",
    "ClaimVerification",
    "FieldConfidence",
    "SupportLevel",
    "VerificationSource",
    "AgentMemory",
    "MemoryKind",
    "PatternStats",
    "SourceUsage",
    "SourceUsefulness",
    "StrategyRecommendation",
]

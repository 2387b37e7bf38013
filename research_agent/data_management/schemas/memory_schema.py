"""Agent memory schemas for outcome learning."""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class MemoryKind(str, Enum):
    """Kinds of recorded memories."""

    SUCCESS = "success"
    FAILURE = "failure"
    PATTERN = "pattern"
    PREFERENCE = "preference"


class AgentMemory(BaseModel):
    """One recorded research outcome."""

    id: str = Field(default_factory=lambda: f"mem-{uuid.uuid4().hex[:8]}")
    kind: MemoryKind
    query: str
    query_pattern: str
    approach: str | None = None
    strategy: dict[str, Any] = Field(default_factory=dict)
    outcome: str = ""
    learnings: list[str] = Field(default_factory=list)
    quality: float = Field(default=0.0, ge=0.0, le=1.0)
    relevance_score: float = Field(default=0.0, ge=0.0, le=1.0)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class SourceUsefulness(BaseModel):
    """Running usefulness estimate for a domain."""

    domain: str
    score: float = Field(default=0.5, ge=0.0, le=1.0)
    samples: int = Field(default=0, ge=0)


class PatternStats(BaseModel):
    """Success counters for a query pattern."""

    pattern: str
    success: int = Field(default=0, ge=0)
    total: int = Field(default=0, ge=0)
    approaches: dict[str, int] = Field(
        default_factory=dict, description="Successful runs per approach"
    )


class SourceUsage(BaseModel):
    """How useful a source turned out to be in a finished run."""

    url: str
    domain: str
    useful: bool


class StrategyRecommendation(BaseModel):
    """Memory-derived advice for a new query."""

    query_pattern: str
    recommended_approach: str | None = None
    prioritize_sources: list[str] = Field(default_factory=list)
    avoid_sources: list[str] = Field(default_factory=list)
    expected_quality: float = Field(default=0.5, ge=0.0, le=1.0)
    similar_queries: list[str] = Field(default_factory=list)
    learnings: list[str] = Field(default_factory=list)

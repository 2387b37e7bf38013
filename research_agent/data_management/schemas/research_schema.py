"""Research lifecycle schemas: plans, quality scores, sources, errors, and run context.

These models are shared by the planner, the state machine, the decision
engine and the coordinator. Quality sub-scores are clamped to [0, 1] and the
overall score is always derived as their arithmetic mean, so it can never
drift out of sync with the components.
"""

import asyncio
import json
import re
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, Optional
from urllib.parse import urlparse

import httpx
from pydantic import BaseModel, Field, ValidationError, model_validator


class ResearchState(str, Enum):
    """Lifecycle states of a research run."""

    IDLE = "idle"
    PLANNING = "planning"
    SEARCHING = "searching"
    SCRAPING = "scraping"
    ANALYZING = "analyzing"
    VERIFYING = "verifying"
    COMPILING = "compiling"
    COMPLETED = "completed"
    FAILED = "failed"


class ErrorKind(str, Enum):
    """Error categories used for recovery routing."""

    NETWORK = "network"
    PARSING = "parsing"
    TIMEOUT = "timeout"
    RATE_LIMIT = "rate_limit"
    QUALITY = "quality"
    UNKNOWN = "unknown"


StepKind = Literal["search", "scrape", "analyze", "verify", "enrich"]
StepStatus = Literal["pending", "running", "completed", "failed", "skipped"]
Approach = Literal["breadth-first", "depth-first", "hybrid"]
VerificationLevel = Literal["basic", "standard", "thorough"]
PlanPriority = Literal["low", "medium", "high", "critical"]

QUALITY_COMPONENTS = (
    "accuracy",
    "completeness",
    "freshness",
    "source_quality",
    "claim_verification",
)


def _clamp(value: Any) -> float:
    return max(0.0, min(1.0, float(value)))


class QualityScore(BaseModel):
    """Composite confidence for a research run.

    Every component is clamped to [0, 1]. ``overall`` is recomputed from the
    five components on construction; any supplied value is ignored.
    """

    overall: float = Field(default=0.0, ge=0.0, le=1.0)
    accuracy: float = Field(default=0.0, ge=0.0, le=1.0)
    completeness: float = Field(default=0.0, ge=0.0, le=1.0)
    freshness: float = Field(default=0.0, ge=0.0, le=1.0)
    source_quality: float = Field(default=0.0, ge=0.0, le=1.0)
    claim_verification: float = Field(default=0.0, ge=0.0, le=1.0)

    @model_validator(mode="before")
    @classmethod
    def clamp_and_average(cls, data: Any) -> Any:
        """Clamp components and derive overall as their mean."""
        if not isinstance(data, dict):
            return data
        data = dict(data)
        for name in QUALITY_COMPONENTS:
            data[name] = _clamp(data.get(name, 0.0))
        data["overall"] = sum(data[name] for name in QUALITY_COMPONENTS) / len(QUALITY_COMPONENTS)
        return data

    def merged(self, **updates: float) -> "QualityScore":
        """Return a copy with the given components replaced."""
        values = self.model_dump(exclude={"overall"})
        values.update({k: v for k, v in updates.items() if k in QUALITY_COMPONENTS})
        return QualityScore(**values)


class ResearchStrategy(BaseModel):
    """How a query will be researched."""

    approach: Approach = "hybrid"
    source_types: list[str] = Field(default_factory=list)
    verification_level: VerificationLevel = "standard"
    max_sources: int = Field(default=12, ge=1)
    parallelism: int = Field(default=5, ge=1, le=20)


class PlanStep(BaseModel):
    """One unit of planned work."""

    id: str
    kind: StepKind
    description: str
    status: StepStatus = "pending"
    dependencies: list[str] = Field(default_factory=list)
    result: Any = None
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    duration: Optional[float] = Field(default=None, ge=0.0)


class PlanAdaptation(BaseModel):
    """A recorded change to a plan during execution."""

    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    reason: str
    changes: list[str] = Field(default_factory=list)


class ResearchPlan(BaseModel):
    """A query's strategy and ordered steps."""

    id: str = Field(default_factory=lambda: f"plan-{uuid.uuid4().hex[:8]}")
    query: str
    strategy: ResearchStrategy
    steps: list[PlanStep] = Field(default_factory=list)
    estimated_duration: float = Field(default=0.0, ge=0.0, description="Estimated seconds")
    priority: PlanPriority = "medium"
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    adaptations: list[PlanAdaptation] = Field(default_factory=list)

    def get_step(self, step_id: str) -> Optional[PlanStep]:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def is_ready(self, step: PlanStep) -> bool:
        """True when every dependency of ``step`` has completed."""
        for dep_id in step.dependencies:
            dep = self.get_step(dep_id)
            if dep is None or dep.status != "completed":
                return False
        return True


class SourceRecord(BaseModel):
    """One found or scraped source."""

    url: str
    domain: str = ""
    title: str = ""
    content: str = ""
    reliability: float = Field(default=0.5, ge=0.0, le=1.0)
    relevance_score: float = Field(default=0.0, ge=0.0, le=1.0)
    fetched_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    source: str = Field(default="web-search", description="Engine or method that found this source")
    fields: dict[str, Any] = Field(
        default_factory=dict, description="Structured values extracted from this source"
    )
    metadata: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def fill_domain(cls, data: Any) -> Any:
        """Derive domain from url when missing."""
        if isinstance(data, dict) and not data.get("domain") and data.get("url"):
            data = dict(data)
            data["domain"] = extract_domain(data["url"])
        return data


def extract_domain(url: str) -> str:
    """Host of ``url`` in lower case with any ``www.`` prefix removed."""
    candidate = url if "://" in url else f"http://{url}"
    try:
        host = urlparse(candidate).hostname or ""
    except ValueError:
        host = ""
    host = host.lower()
    if host.startswith("www."):
        host = host[4:]
    return host or url.lower()


_RATE_LIMIT_TEXT = re.compile(r"\b429\b|rate.?limit|too many requests")
_TIMEOUT_TEXT = re.compile(r"timed? ?out")
_CLIENT_ERROR_TEXT = re.compile(r"\b4\d\d\b")


class AgentError(BaseModel):
    """An error raised during a research run."""

    id: str = Field(default_factory=lambda: f"error-{uuid.uuid4().hex[:8]}")
    kind: ErrorKind = ErrorKind.UNKNOWN
    message: str
    recoverable: bool = False
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    context: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_exception(
        cls,
        exc: BaseException,
        context: Optional[dict[str, Any]] = None,
    ) -> "AgentError":
        """Classify an exception into an AgentError.

        Args:
            exc: The exception to classify.
            context: Optional extra context (phase, query, step id).

        Returns:
            AgentError with kind and recoverability set.
        """
        kind = ErrorKind.UNKNOWN
        recoverable = False
        if isinstance(exc, (TimeoutError, asyncio.TimeoutError, httpx.TimeoutException)):
            kind, recoverable = ErrorKind.TIMEOUT, True
        elif isinstance(exc, httpx.HTTPStatusError):
            if exc.response.status_code == 429:
                kind, recoverable = ErrorKind.RATE_LIMIT, True
            else:
                kind, recoverable = ErrorKind.NETWORK, exc.response.status_code >= 500
        elif isinstance(exc, httpx.HTTPError):
            kind, recoverable = ErrorKind.NETWORK, True
        elif isinstance(exc, (json.JSONDecodeError, ValidationError)):
            kind, recoverable = ErrorKind.PARSING, True

        return cls(
            kind=kind,
            message=str(exc) or exc.__class__.__name__,
            recoverable=recoverable,
            context=context or {},
        )

    @classmethod
    def from_message(
        cls,
        message: str,
        context: Optional[dict[str, Any]] = None,
    ) -> "AgentError":
        """Classify an error reported as text, e.g. ``SearchResult.error``.

        Text that names no rate limit, timeout, 4xx status or missing
        configuration is a recoverable network error.
        """
        kind, recoverable = ErrorKind.NETWORK, True
        lowered = message.lower()
        if _RATE_LIMIT_TEXT.search(lowered):
            kind = ErrorKind.RATE_LIMIT
        elif _TIMEOUT_TEXT.search(lowered):
            kind = ErrorKind.TIMEOUT
        elif "not configured" in lowered:
            kind, recoverable = ErrorKind.UNKNOWN, False
        elif _CLIENT_ERROR_TEXT.search(lowered):
            recoverable = False
        return cls(kind=kind, message=message or "Unknown error", recoverable=recoverable, context=context or {})


class DecisionContext(BaseModel):
    """Live snapshot of a research run, mutated by the state machine."""

    state: ResearchState = ResearchState.IDLE
    plan: Optional[ResearchPlan] = None
    progress: float = Field(default=0.0, ge=0.0, le=100.0)
    results: list[Any] = Field(default_factory=list)
    quality: QualityScore = Field(default_factory=QualityScore)
    elapsed_time: float = Field(default=0.0, ge=0.0, description="Seconds since the run started")
    errors: list[AgentError] = Field(default_factory=list)
    current_step: Optional[str] = None
    memory: dict[str, Any] = Field(default_factory=dict)

    model_config = {"validate_assignment": True}

"""Wide research schemas: sub-agent results, extracted content, and reports."""

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

from research_agent.data_management.schemas.research_schema import QualityScore, SourceRecord
from research_agent.data_management.schemas.verification_schema import ClaimVerification


class CompanyItem(BaseModel):
    name: str
    ticker: Optional[str] = None
    market: Optional[str] = None
    action: Optional[str] = None
    date: Optional[str] = None
    value: Optional[str] = None
    source_url: Optional[str] = None


class FactItem(BaseModel):
    fact: str
    confidence: Literal["high", "medium", "low"] = "medium"
    source: Optional[str] = None


class DateItem(BaseModel):
    date: str
    event: str
    entity: Optional[str] = None


class NumericItem(BaseModel):
    metric: str
    value: str
    unit: Optional[str] = None
    context: Optional[str] = None


class ExtractedContent(BaseModel):
    """Structured items extracted from source content."""

    companies: list[CompanyItem] = Field(default_factory=list)
    key_facts: list[FactItem] = Field(default_factory=list)
    key_dates: list[DateItem] = Field(default_factory=list)
    numeric_data: list[NumericItem] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.companies or self.key_facts or self.key_dates or self.numeric_data)


class WideResearchConfig(BaseModel):
    """Tuning for one wide research run."""

    max_sub_agents: int = Field(default=8, ge=1, le=20)
    scrape_depth: Literal["shallow", "medium", "deep"] = "medium"
    verification_level: Literal["basic", "standard", "thorough"] = "standard"
    min_sources_per_item: int = Field(default=2, ge=0)
    timeout: float = Field(default=30.0, gt=0, description="Per sub-agent timeout in seconds")
    max_results_per_query: int = Field(default=8, ge=1)
    country: Optional[str] = None


class SubAgentResult(BaseModel):
    """Outcome of one sub-query."""

    id: str
    query: str
    status: Literal["pending", "running", "completed", "failed"] = "pending"
    sources: list[SourceRecord] = Field(default_factory=list)
    extracted_data: ExtractedContent = Field(default_factory=ExtractedContent)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    error: Optional[str] = None


class PhaseTiming(BaseModel):
    """Seconds spent per phase."""

    total: float = 0.0
    planning: float = 0.0
    searching: float = 0.0
    extraction: float = 0.0
    synthesis: float = 0.0


class WideResearchMetadata(BaseModel):
    total_sources: int = 0
    unique_domains: int = 0
    sub_queries_executed: int = 0
    successful_sub_queries: int = 0
    failed_sub_queries: int = 0


class WideResearchResult(BaseModel):
    """Aggregated outcome of a wide research run."""

    id: str
    query: str
    sub_results: list[SubAgentResult] = Field(default_factory=list)
    aggregated_sources: list[SourceRecord] = Field(default_factory=list)
    aggregated_data: ExtractedContent = Field(default_factory=ExtractedContent)
    report: str
    quality: QualityScore = Field(default_factory=QualityScore)
    verifications: list[ClaimVerification] = Field(default_factory=list)
    consolidated_data: dict[str, Any] = Field(
        default_factory=dict, description="Fields resolved by cross-referencing sources"
    )
    warnings: list[str] = Field(default_factory=list, description="Cross-reference conflicts and gaps")
    timing: PhaseTiming = Field(default_factory=PhaseTiming)
    metadata: WideResearchMetadata = Field(default_factory=WideResearchMetadata)
    no_data: bool = Field(default=False, description="True when no sources were found")

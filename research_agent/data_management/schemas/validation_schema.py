"""Cross-reference validation schemas."""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class ValidationMethod(str, Enum):
    """How a field's value was resolved across sources."""

    EXACT_MATCH = "exact_match"
    FUZZY_MATCH = "fuzzy_match"
    AUTHORITY_BASED = "authority_based"
    NO_DATA = "no_data"


class DiscrepancyDetail(BaseModel):
    """One source's value and its distance from the resolved value."""

    source: str
    value: Any
    authority: float = Field(..., ge=0.0, le=1.0)
    deviation_percent: Optional[float] = Field(
        default=None, description="Distance from the mean in percent (numeric fields only)"
    )


class FieldValidation(BaseModel):
    """Cross-source agreement for one field."""

    field: str
    value: Any = None
    confidence: float = Field(..., ge=0.0, le=100.0)
    method: ValidationMethod
    verified: bool = False
    sources: list[str] = Field(default_factory=list)
    matched_sources: list[str] = Field(default_factory=list)
    conflicting_sources: list[str] = Field(default_factory=list)
    discrepancies: list[DiscrepancyDetail] = Field(default_factory=list)
    warning: Optional[str] = None

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "field": "market_cap",
                    "value": 2950000000000,
                    "confidence": 90.0,
                    "method": "fuzzy_match",
                    "verified": True,
                    "sources": ["bloomberg.com", "reuters.com"],
                    "matched_sources": ["bloomberg.com", "reuters.com"],
                    "conflicting_sources": [],
                    "discrepancies": [],
                }
            ]
        }
    }


class ValidationResult(BaseModel):
    """Outcome of validating every field across a source map."""

    success: bool
    field_validations: dict[str, FieldValidation] = Field(default_factory=dict)
    overall_confidence: float = Field(default=0.0, ge=0.0, le=100.0)
    issues: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    consolidated_data: dict[str, Any] = Field(default_factory=dict)

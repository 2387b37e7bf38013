"""Claim verification schemas.

A claim is checked against candidate source texts. Each source that
addresses the claim contributes a support level; the verdict combines them
into a status and a confidence in [0, 1].
"""

import uuid
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, model_validator


class SupportLevel(str, Enum):
    """Strength with which a source backs a claim."""

    STRONG = "strong"
    MODERATE = "moderate"
    WEAK = "weak"
    CONTRADICTS = "contradicts"
    NONE = "none"


class ClaimStatus(str, Enum):
    """Verdict on a factual claim.

    VERIFIED: confidence >= 0.8 with at least one strong support.
    PARTIALLY_VERIFIED: confidence >= 0.5.
    CONTRADICTED: a source contradicts the claim and confidence < 0.5.
    UNVERIFIED: none of the above.
    """

    VERIFIED = "verified"
    PARTIALLY_VERIFIED = "partially_verified"
    UNVERIFIED = "unverified"
    CONTRADICTED = "contradicted"


class Claim(BaseModel):
    """A claim to verify and the identifiers of its candidate sources."""

    text: str
    sources: list[str] = Field(default_factory=list, description="Candidate source URLs")
    field: str | None = None


class VerificationSource(BaseModel):
    """One source's support for a claim."""

    url: str
    domain: str
    support_level: SupportLevel
    excerpt: str = ""
    authority: float = Field(default=0.3, ge=0.0, le=1.0)


class ClaimVerification(BaseModel):
    """Verdict on one claim."""

    id: str = Field(default_factory=lambda: f"verify-{uuid.uuid4().hex[:8]}")
    claim: str
    status: ClaimStatus = ClaimStatus.UNVERIFIED
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    sources: list[VerificationSource] = Field(default_factory=list)
    explanation: str = ""

    @model_validator(mode="after")
    def check_verified_has_strong_support(self) -> "ClaimVerification":
        """A verified verdict needs strong support and confidence >= 0.8."""
        if self.status == ClaimStatus.VERIFIED:
            has_strong = any(s.support_level == SupportLevel.STRONG for s in self.sources)
            if not has_strong or self.confidence < 0.8:
                raise ValueError("verified status requires a strong source and confidence >= 0.8")
        return self

    @property
    def supporting_sources(self) -> list[VerificationSource]:
        return [s for s in self.sources if s.support_level not in (SupportLevel.CONTRADICTS, SupportLevel.NONE)]

    @property
    def contradicting_sources(self) -> list[VerificationSource]:
        return [s for s in self.sources if s.support_level == SupportLevel.CONTRADICTS]


class FieldConfidence(BaseModel):
    """Confidence attached to an extracted field value."""

    field: str
    value: Any = None
    confidence: float = Field(..., ge=0.0, le=1.0)
    sources: list[str] = Field(default_factory=list)
    verification_status: ClaimStatus = ClaimStatus.UNVERIFIED

"""Claim verification against candidate source texts.

Each claim is checked against the highest-authority candidate sources in
parallel. A lexical-overlap heuristic settles clear cases; only the ambiguous
middle band is escalated to the inference service. Verdicts are cached by a
fingerprint of the claim text and its candidate source URLs.
"""

import functools
import re
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional, Sequence

import aiometer
import structlog

from research_agent.agents.sifters.source_authority import SourceAuthorityResolver
from research_agent.data_management.schemas.research_schema import SourceRecord
from research_agent.data_management.schemas.verification_schema import (
    Claim,
    ClaimStatus,
    ClaimVerification,
    FieldConfidence,
    SupportLevel,
    VerificationSource,
)
from research_agent.llm.inference import InferenceService, parse_json_payload

DEFAULT_MAX_SOURCES = 5
CACHE_KEY_CLAIM_LENGTH = 100
EXCERPT_MAX_LENGTH = 500
SIGNIFICANT_WORD_LENGTH = 3

# Lexical overlap bands
NO_SUPPORT_RATIO = 0.3
STRONG_RATIO = 0.8
MODERATE_RATIO = 0.6
WEAK_RATIO = 0.4

SUPPORT_WEIGHTS = {
    SupportLevel.STRONG: 1.0,
    SupportLevel.MODERATE: 0.6,
    SupportLevel.WEAK: 0.3,
    SupportLevel.CONTRADICTS: -0.5,
}

VERIFIED_CONFIDENCE = 0.8
PARTIAL_CONFIDENCE = 0.5

_SENTENCE_SPLIT = re.compile(r"[.!?]+")

SUPPORT_PROMPT = """Verify this claim against the provided content.

Claim: "{claim}"

Content excerpt: "{excerpt}"

Analyze whether the content supports, contradicts, or does not address the claim.
Respond with ONLY a JSON object (no markdown): {{"support": "strong|moderate|weak|contradicts|none", "reason": "brief explanation"}}"""


@dataclass
class SupportCheck:
    level: SupportLevel
    excerpt: str = ""


def _significant_words(text: str) -> list[str]:
    return [w for w in text.lower().split() if len(w) > SIGNIFICANT_WORD_LENGTH]


def _match_ratio(claim: str, content: str) -> float:
    words = _significant_words(claim)
    if not words:
        return 0.0
    content_lower = content.lower()
    return sum(1 for w in words if w in content_lower) / len(words)


def _heuristic_level(ratio: float) -> SupportLevel:
    if ratio > STRONG_RATIO:
        return SupportLevel.STRONG
    if ratio > MODERATE_RATIO:
        return SupportLevel.MODERATE
    if ratio > WEAK_RATIO:
        return SupportLevel.WEAK
    return SupportLevel.NONE


def find_relevant_excerpt(claim: str, content: str) -> str:
    """Best-matching sentence of ``content`` with one sentence of context each side."""
    words = _significant_words(claim)
    sentences = [s.strip() for s in _SENTENCE_SPLIT.split(content)]
    best_index, best_score = -1, 0
    for index, sentence in enumerate(sentences):
        lowered = sentence.lower()
        score = sum(1 for w in words if w in lowered)
        if score > best_score:
            best_index, best_score = index, score
    if best_index < 0:
        return ""
    start = max(0, best_index - 1)
    end = min(len(sentences), best_index + 2)
    return ". ".join(s for s in sentences[start:end] if s)[:EXCERPT_MAX_LENGTH]


class CriticAgent:
    """
    Verifies factual claims and scores per-field confidence.

    Attributes:
        authority: Shared authority resolver used to rank and weight sources
        inference: Optional inference service for ambiguous support checks
        max_sources: Number of top-authority sources checked per claim
    """

    def __init__(
        self,
        authority: SourceAuthorityResolver,
        inference: Optional[InferenceService] = None,
        max_sources: int = DEFAULT_MAX_SOURCES,
    ) -> None:
        self.authority = authority
        self.inference = inference
        self.max_sources = max(1, max_sources)
        self._cache: dict[str, ClaimVerification] = {}
        self._hits = 0
        self._misses = 0
        self._logger = structlog.get_logger().bind(component="CriticAgent")

    async def verify_claims(
        self,
        claims: Iterable[Claim],
        sources: Sequence[SourceRecord],
    ) -> list[ClaimVerification]:
        """
        Verify each claim against the available sources.

        Args:
            claims: Claims to verify; ``Claim.sources`` narrows the candidates
            sources: Sources with content to check against

        Returns:
            One ClaimVerification per claim, in input order
        """
        verifications = []
        for claim in claims:
            key = self._cache_key(claim)
            cached = self._cache.get(key)
            if cached is not None:
                self._hits += 1
                verifications.append(cached)
                continue

            self._misses += 1
            verification = await self._verify_single(claim, self._candidates(claim, sources))
            self._cache[key] = verification
            verifications.append(verification)

        self._logger.info(
            "claims_verified",
            claims=len(verifications),
            verified=sum(1 for v in verifications if v.status == ClaimStatus.VERIFIED),
            cache_hits=self._hits,
        )
        return verifications

    def _candidates(self, claim: Claim, sources: Sequence[SourceRecord]) -> list[SourceRecord]:
        if claim.sources:
            wanted = set(claim.sources)
            narrowed = [s for s in sources if s.url in wanted]
            if narrowed:
                return narrowed
        return list(sources)

    async def _verify_single(self, claim: Claim, sources: Sequence[SourceRecord]) -> ClaimVerification:
        ranked = self.authority.rank_sources(sources)[: self.max_sources]
        checks = await aiometer.run_all(
            [functools.partial(self.check_source_support, claim.text, s.content) for s in ranked],
            max_at_once=self.max_sources,
        )

        verification_sources = []
        for source, check in zip(ranked, checks):
            if check.level == SupportLevel.NONE:
                continue
            verification_sources.append(
                VerificationSource(
                    url=source.url,
                    domain=source.domain,
                    support_level=check.level,
                    excerpt=check.excerpt,
                    authority=self.authority.authority_of(source.url),
                )
            )

        confidence = self._confidence(verification_sources)
        status = self._status(confidence, verification_sources)
        return ClaimVerification(
            claim=claim.text,
            status=status,
            confidence=confidence,
            sources=verification_sources,
            explanation=self._explanation(status, confidence, verification_sources),
        )

    async def check_source_support(self, claim: str, content: str) -> SupportCheck:
        """
        Support level of ``content`` for ``claim``.

        Overlap below NO_SUPPORT_RATIO is ``none`` and above MODERATE_RATIO is
        settled lexically. The band in between asks the inference service and
        falls back to the lexical bands on any failure.
        """
        ratio = _match_ratio(claim, content)
        if ratio < NO_SUPPORT_RATIO:
            return SupportCheck(SupportLevel.NONE)

        excerpt = find_relevant_excerpt(claim, content)
        if ratio > MODERATE_RATIO:
            return SupportCheck(_heuristic_level(ratio), excerpt)

        level = await self._infer_support(claim, excerpt)
        if level is None:
            level = _heuristic_level(ratio)
        return SupportCheck(level, excerpt if level != SupportLevel.NONE else "")

    async def _infer_support(self, claim: str, excerpt: str) -> Optional[SupportLevel]:
        if self.inference is None or not excerpt:
            return None
        result = await self.inference.complete(SUPPORT_PROMPT.format(claim=claim, excerpt=excerpt))
        if not result.success:
            self._logger.debug("support_inference_failed", error=result.error)
            return None
        parsed = parse_json_payload(result.result)
        if not isinstance(parsed, dict):
            return None
        try:
            return SupportLevel(str(parsed.get("support", "")).lower())
        except ValueError:
            return None

    @staticmethod
    def _confidence(sources: Sequence[VerificationSource]) -> float:
        """Authority-weighted support rescaled from [-1, 1] to [0, 1].

        The weight sum is floored at 1, so a lone low-authority source cannot
        reach full confidence.
        """
        if not sources:
            return 0.0
        weighted = sum(SUPPORT_WEIGHTS.get(s.support_level, 0.0) * s.authority for s in sources)
        total_authority = sum(s.authority for s in sources)
        score = (weighted / max(total_authority, 1.0) + 1.0) / 2.0
        return max(0.0, min(1.0, score))

    @staticmethod
    def _status(confidence: float, sources: Sequence[VerificationSource]) -> ClaimStatus:
        has_strong = any(s.support_level == SupportLevel.STRONG for s in sources)
        if confidence >= VERIFIED_CONFIDENCE and has_strong:
            return ClaimStatus.VERIFIED
        if confidence >= PARTIAL_CONFIDENCE:
            return ClaimStatus.PARTIALLY_VERIFIED
        if any(s.support_level == SupportLevel.CONTRADICTS for s in sources):
            return ClaimStatus.CONTRADICTED
        return ClaimStatus.UNVERIFIED

    @staticmethod
    def _explanation(
        status: ClaimStatus,
        confidence: float,
        sources: Sequence[VerificationSource],
    ) -> str:
        strong = sum(1 for s in sources if s.support_level == SupportLevel.STRONG)
        moderate = sum(1 for s in sources if s.support_level == SupportLevel.MODERATE)
        contradicting = sum(1 for s in sources if s.support_level == SupportLevel.CONTRADICTS)

        if status == ClaimStatus.VERIFIED:
            return f"Verified with {confidence:.0%} confidence. {strong} strong source(s) confirm this claim."
        if status == ClaimStatus.PARTIALLY_VERIFIED:
            return f"Partially verified ({confidence:.0%} confidence). {moderate} source(s) provide moderate support."
        if status == ClaimStatus.CONTRADICTED:
            return f"Contradicted by {contradicting} source(s). This claim may be inaccurate."
        return "Unable to verify. No reliable sources found to support or contradict this claim."

    async def generate_field_confidences(
        self,
        fields: Mapping[str, Any],
        sources: Sequence[SourceRecord],
    ) -> list[FieldConfidence]:
        """
        Verify each non-null field as a ``"field: value"`` claim.

        Args:
            fields: Field name -> value
            sources: Sources to check against

        Returns:
            FieldConfidence per non-null field
        """
        confidences = []
        for name, value in fields.items():
            if value is None:
                continue
            verification = await self._verify_single(Claim(text=f"{name}: {value}", field=name), sources)
            confidences.append(
                FieldConfidence(
                    field=name,
                    value=value,
                    confidence=verification.confidence,
                    sources=[s.url for s in verification.sources],
                    verification_status=verification.status,
                )
            )
        return confidences

    @staticmethod
    def _cache_key(claim: Claim) -> str:
        return f"{claim.text[:CACHE_KEY_CLAIM_LENGTH]}-{','.join(claim.sources)}".lower()

    def get_cache_stats(self) -> dict[str, int]:
        return {"size": len(self._cache), "hits": self._hits, "misses": self._misses}

    def clear_cache(self) -> None:
        self._cache.clear()
        self._hits = 0
        self._misses = 0

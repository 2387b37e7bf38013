"""Consolidation of per-source extractions into one trusted record.

Pipeline:
1. Organize structured fields by source domain
2. Cross-reference every field via CrossReferenceValidator
3. Build per-field confidences and a discrepancy list
4. Compute quality metrics and source coverage

Also merges loosely-typed entities and removes near-duplicate sources.
"""

import hashlib
import re
from dataclasses import dataclass, field, asdict
from typing import Any, Iterable, Mapping, Optional

import structlog

from research_agent.agents.sifters.cross_reference_validator import CrossReferenceValidator
from research_agent.agents.sifters.source_authority import SourceAuthorityResolver
from research_agent.config.source_authority import (
    HIGH_AUTHORITY_THRESHOLD,
    MEDIUM_AUTHORITY_THRESHOLD,
)
from research_agent.data_management.schemas.research_schema import SourceRecord
from research_agent.data_management.schemas.validation_schema import ValidationResult

# QualityMetrics weights
COMPLETENESS_WEIGHT = 0.2
CONSISTENCY_WEIGHT = 0.3
AUTHORITY_WEIGHT = 0.25
CROSS_VALIDATION_WEIGHT = 0.25

CONTENT_HASH_PREFIX = 200
ENTITY_KEY_LENGTH = 50

_WHITESPACE = re.compile(r"\s+")


@dataclass
class FieldConfidenceScore:
    value: Any
    confidence: float
    verification_method: str
    sources: list[str]
    verified: bool


@dataclass
class QualityMetrics:
    """Weighted quality of a consolidation pass, every component in [0, 1]."""

    overall_score: float = 0.0
    completeness: float = 0.0
    consistency: float = 0.0
    source_authority: float = 0.0
    cross_validation: float = 0.0


@dataclass
class AuthorityDistribution:
    high: int = 0
    medium: int = 0
    low: int = 0


@dataclass
class SourceCoverage:
    total_sources: int = 0
    unique_domains: int = 0
    category_breakdown: dict[str, int] = field(default_factory=dict)
    authority_distribution: AuthorityDistribution = field(default_factory=AuthorityDistribution)


@dataclass
class Discrepancy:
    """A field whose sources disagree, and how it was resolved."""

    field: str
    values: list[dict[str, Any]]
    selected_value: Any
    selected_source: str
    reason: str


@dataclass
class ConsolidatedResult:
    data: dict[str, Any]
    field_confidences: dict[str, FieldConfidenceScore]
    quality_metrics: QualityMetrics
    source_coverage: SourceCoverage
    warnings: list[str]
    discrepancies: list[Discrepancy]
    data_by_source: dict[str, dict[str, Any]] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class DataConsolidator:
    """
    Merges per-source data into one result with confidences and quality metrics.

    Authority and validation are injected so every pass in a run shares the
    same authority cache and fuzzy-match configuration.
    """

    def __init__(
        self,
        authority: SourceAuthorityResolver,
        validator: Optional[CrossReferenceValidator] = None,
    ) -> None:
        """
        Initialize the consolidator.

        Args:
            authority: Shared authority resolver
            validator: Cross-reference validator, built on ``authority`` if omitted
        """
        self.authority = authority
        self.validator = validator or CrossReferenceValidator(authority)
        self._logger = structlog.get_logger().bind(component="DataConsolidator")

    def consolidate(self, results: Iterable[SourceRecord]) -> ConsolidatedResult:
        """
        Consolidate structured fields reported by many sources.

        Args:
            results: Source records, each with extracted ``fields``

        Returns:
            ConsolidatedResult with resolved data, confidences, and metrics
        """
        results = list(results)
        data_by_source = self._organize_by_source(results)
        # Bookkeeping keys (_title, _url, ...) are carried along but not cross-validated
        field_data = {
            domain: {k: v for k, v in record.items() if not k.startswith("_")}
            for domain, record in data_by_source.items()
        }
        validation = self.validator.validate(field_data)

        field_confidences: dict[str, FieldConfidenceScore] = {}
        discrepancies: list[Discrepancy] = []
        for name, fv in validation.field_validations.items():
            field_confidences[name] = FieldConfidenceScore(
                value=fv.value,
                confidence=fv.confidence,
                verification_method=fv.method.value,
                sources=list(fv.matched_sources),
                verified=fv.verified,
            )
            if not fv.verified and len(fv.discrepancies) > 1:
                discrepancies.append(
                    Discrepancy(
                        field=name,
                        values=[d.model_dump() for d in fv.discrepancies],
                        selected_value=fv.value,
                        selected_source=fv.matched_sources[0] if fv.matched_sources else "unknown",
                        reason=f"Selected based on {fv.method.value}",
                    )
                )

        metrics = self.calculate_quality_metrics(results, validation)
        coverage = self.calculate_source_coverage(results)

        self._logger.info(
            "consolidation_complete",
            sources=len(results),
            fields=len(field_confidences),
            discrepancies=len(discrepancies),
            quality=round(metrics.overall_score, 3),
        )

        return ConsolidatedResult(
            data=validation.consolidated_data,
            field_confidences=field_confidences,
            quality_metrics=metrics,
            source_coverage=coverage,
            warnings=list(validation.warnings),
            discrepancies=discrepancies,
            data_by_source=data_by_source,
        )

    def _organize_by_source(self, results: list[SourceRecord]) -> dict[str, dict[str, Any]]:
        data_by_source: dict[str, dict[str, Any]] = {}
        for result in results:
            record = data_by_source.setdefault(result.domain, {})
            for name, value in result.fields.items():
                if value is not None:
                    record[name] = value
            record["_title"] = result.title
            record["_url"] = result.url
            record["_relevance_score"] = result.relevance_score
        return data_by_source

    def calculate_quality_metrics(
        self,
        results: list[SourceRecord],
        validation: ValidationResult,
    ) -> QualityMetrics:
        """
        Weighted quality of one consolidation pass.

        Components:
        - completeness: share of fields with a resolved value
        - consistency: share of fields marked verified
        - source_authority: mean authority of the sources
        - cross_validation: mean field confidence rescaled to [0, 1]
        """
        validations = list(validation.field_validations.values())
        total = len(validations)
        completeness = sum(1 for v in validations if v.value is not None) / total if total else 0.0
        consistency = sum(1 for v in validations if v.verified) / total if total else 0.0

        authorities = [self.authority.authority_of(r.url) for r in results]
        source_authority = sum(authorities) / len(authorities) if authorities else 0.0
        cross_validation = validation.overall_confidence / 100.0

        overall = (
            completeness * COMPLETENESS_WEIGHT
            + consistency * CONSISTENCY_WEIGHT
            + source_authority * AUTHORITY_WEIGHT
            + cross_validation * CROSS_VALIDATION_WEIGHT
        )
        return QualityMetrics(
            overall_score=overall,
            completeness=completeness,
            consistency=consistency,
            source_authority=source_authority,
            cross_validation=cross_validation,
        )

    def calculate_source_coverage(self, results: list[SourceRecord]) -> SourceCoverage:
        coverage = SourceCoverage(total_sources=len(results))
        domains: set[str] = set()
        for result in results:
            domains.add(result.domain)
            profile = self.authority.get_authority(result.url)
            coverage.category_breakdown[profile.category] = (
                coverage.category_breakdown.get(profile.category, 0) + 1
            )
            if profile.authority > HIGH_AUTHORITY_THRESHOLD:
                coverage.authority_distribution.high += 1
            elif profile.authority >= MEDIUM_AUTHORITY_THRESHOLD:
                coverage.authority_distribution.medium += 1
            else:
                coverage.authority_distribution.low += 1
        coverage.unique_domains = len(domains)
        return coverage

    def consolidate_entities(self, entities: Iterable[Mapping[str, Any]]) -> list[dict[str, Any]]:
        """
        Group entities by normalized key and merge each group.

        Args:
            entities: Dicts with ``name`` (or ``title``), optional ``type`` and ``source_url``

        Returns:
            Merged entities with ``confidence`` and ``source_count``, highest confidence first
        """
        groups: dict[str, list[Mapping[str, Any]]] = {}
        for entity in entities:
            groups.setdefault(self._entity_key(entity), []).append(entity)

        consolidated = []
        for group in groups.values():
            confidences: dict[str, float] = {}
            for entity in group:
                url = str(entity.get("source_url") or "")
                confidences[url] = self.authority.authority_of(url) if url else self.authority.authority_of("unknown")
            merged = self._merge_entities(group)
            merged["confidence"] = self.authority.calculate_weighted_confidence(confidences)
            merged["source_count"] = len(group)
            consolidated.append(merged)

        consolidated.sort(key=lambda e: e["confidence"], reverse=True)
        return consolidated

    @staticmethod
    def _entity_key(entity: Mapping[str, Any]) -> str:
        name = str(entity.get("name") or entity.get("title") or "").lower().strip()
        kind = entity.get("type") or "unknown"
        return f"{kind}:{name[:ENTITY_KEY_LENGTH]}"

    def _merge_entities(self, group: list[Mapping[str, Any]]) -> dict[str, Any]:
        """Start from the highest-authority member and fill its empty fields from the rest."""
        ranked = sorted(
            group,
            key=lambda e: self.authority.authority_of(str(e.get("source_url") or "unknown")),
            reverse=True,
        )
        merged = dict(ranked[0])
        for entity in ranked[1:]:
            for key, value in entity.items():
                if merged.get(key) in (None, ""):
                    merged[key] = value
        return merged

    def deduplicate_results(self, results: Iterable[SourceRecord]) -> list[SourceRecord]:
        """
        Remove duplicates by exact URL, then by normalized content hash.

        On collision the record with the higher relevance score is kept.
        Order of first appearance is preserved.
        """
        results = list(results)
        by_url: dict[str, SourceRecord] = {}
        by_hash: dict[str, str] = {}

        for result in results:
            existing = by_url.get(result.url)
            if existing is not None:
                if result.relevance_score > existing.relevance_score:
                    by_url[result.url] = result
                continue

            content_key = self._content_hash(result.content)
            if content_key in by_hash:
                kept_url = by_hash[content_key]
                if result.relevance_score > by_url[kept_url].relevance_score:
                    del by_url[kept_url]
                    by_url[result.url] = result
                    by_hash[content_key] = result.url
                continue

            by_url[result.url] = result
            by_hash[content_key] = result.url

        deduped = list(by_url.values())
        self._logger.debug("deduplicated", kept=len(deduped), removed=len(results) - len(deduped))
        return deduped

    @staticmethod
    def _content_hash(content: str) -> str:
        normalized = _WHITESPACE.sub(" ", content.lower()).strip()[:CONTENT_HASH_PREFIX]
        return hashlib.sha256(normalized.encode("utf-8")).hexdigest()

    def generate_summary(self, result: ConsolidatedResult) -> str:
        """Plain-text summary of a consolidation pass."""
        metrics = result.quality_metrics
        coverage = result.source_coverage
        dist = coverage.authority_distribution
        lines = [
            f"Sources: {coverage.total_sources} ({coverage.unique_domains} unique domains)",
            f"Authority: {dist.high} high, {dist.medium} medium, {dist.low} low",
            (
                f"Quality: {metrics.overall_score:.0%} (completeness {metrics.completeness:.0%}, "
                f"consistency {metrics.consistency:.0%}, cross-validation {metrics.cross_validation:.0%})"
            ),
        ]
        verified = [name for name, fc in result.field_confidences.items() if fc.verified]
        if verified:
            lines.append(f"Verified fields: {', '.join(verified)}")
        for discrepancy in result.discrepancies:
            lines.append(
                f"Discrepancy in '{discrepancy.field}': selected {discrepancy.selected_value!r} "
                f"from {discrepancy.selected_source} ({discrepancy.reason})"
            )
        return "\n".join(lines)

"""Aggregation of sub-agent results into one source list, dataset and verdict set."""

from typing import Any, Iterable, Optional

from research_agent.agents.sifters.data_consolidator import ConsolidatedResult, DataConsolidator
from research_agent.agents.wide_research.extraction import with_fields
from research_agent.data_management.schemas.research_schema import QualityScore, SourceRecord
from research_agent.data_management.schemas.verification_schema import (
    ClaimStatus,
    ClaimVerification,
    SupportLevel,
    VerificationSource,
)
from research_agent.data_management.schemas.wide_research_schema import (
    ExtractedContent,
    SubAgentResult,
)

# Search results are fetched live, so freshness is fixed
REALTIME_FRESHNESS = 0.9

FACT_KEY_LENGTH = 50
FACT_MATCH_LENGTH = 30
EVENT_KEY_LENGTH = 30
EXCERPT_LENGTH = 100
MAX_FACT_SOURCES = 3
MAX_COMPANY_SOURCES = 2
MIN_VERIFYING_SOURCES = 2

FACT_CONFIDENCE = {"high": 0.9, "medium": 0.7, "low": 0.5}
COMPANY_CONFIDENCE = 0.85
VERIFIED_MIN_CONFIDENCE = 0.8

COMPLETENESS_TARGET_SOURCES = 15
DOMAIN_DIVERSITY_TARGET = 10


def aggregate_sources(
    sub_results: Iterable[SubAgentResult],
    consolidator: Optional[DataConsolidator] = None,
) -> list[SourceRecord]:
    """
    Unique sources across sub-agents, most reliable first, with comparable
    fields extracted so they can be cross-referenced.

    Duplicates are removed by URL; with a consolidator, near-duplicate
    content is removed too.
    """
    seen: set[str] = set()
    sources: list[SourceRecord] = []
    for result in sub_results:
        for source in result.sources:
            if source.url not in seen:
                seen.add(source.url)
                sources.append(source)

    sources = with_fields(sources)
    if consolidator is not None:
        sources = consolidator.deduplicate_results(sources)
    return sorted(sources, key=lambda s: s.reliability, reverse=True)


def aggregate_extracted_data(sub_results: Iterable[SubAgentResult]) -> ExtractedContent:
    """
    Merge extracted items, de-duplicated by normalized key.

    The first record per key wins, except that a company record with a
    ticker replaces one without.
    """
    companies = {}
    facts = {}
    dates = {}
    numbers = {}

    for result in sub_results:
        data = result.extracted_data
        for company in data.companies:
            key = company.name.lower()
            if key not in companies or (company.ticker and not companies[key].ticker):
                companies[key] = company
        for fact in data.key_facts:
            facts.setdefault(fact.fact[:FACT_KEY_LENGTH].lower(), fact)
        for date in data.key_dates:
            dates.setdefault(f"{date.date}-{date.event[:EVENT_KEY_LENGTH]}".lower(), date)
        for number in data.numeric_data:
            numbers.setdefault(f"{number.metric}-{number.value}".lower(), number)

    return ExtractedContent(
        companies=list(companies.values()),
        key_facts=list(facts.values()),
        key_dates=list(dates.values()),
        numeric_data=list(numbers.values()),
    )


def create_verifications(
    sources: list[SourceRecord],
    data: ExtractedContent,
) -> list[ClaimVerification]:
    """
    Source-count verdicts for extracted facts and companies.

    A fact is verified when at least two sources contain its opening words
    and its extraction confidence is high enough; one source makes it
    partially verified. A company is verified when any source mentions it.
    """
    verifications = []

    for fact in data.key_facts:
        needle = fact.fact[:FACT_MATCH_LENGTH].lower()
        matching = [s for s in sources if needle in s.content.lower()]
        confidence = FACT_CONFIDENCE[fact.confidence]
        corroborated = len(matching) >= MIN_VERIFYING_SOURCES

        if corroborated and confidence >= VERIFIED_MIN_CONFIDENCE:
            status = ClaimStatus.VERIFIED
        elif matching:
            status = ClaimStatus.PARTIALLY_VERIFIED
        else:
            status = ClaimStatus.UNVERIFIED

        level = SupportLevel.STRONG if corroborated else SupportLevel.MODERATE
        verifications.append(
            ClaimVerification(
                claim=fact.fact,
                status=status,
                confidence=confidence,
                explanation=f"Found in {len(matching)} source(s)",
                sources=[_verification_source(s, level) for s in matching[:MAX_FACT_SOURCES]],
            )
        )

    for company in data.companies:
        name = company.name.lower()
        matching = [s for s in sources if name in s.content.lower()]
        claim = f"{company.name}: {company.action}" if company.action else company.name
        verifications.append(
            ClaimVerification(
                claim=claim,
                status=ClaimStatus.VERIFIED if matching else ClaimStatus.UNVERIFIED,
                confidence=COMPANY_CONFIDENCE if matching else 0.0,
                explanation=f"Company mentioned in {len(matching)} source(s)",
                sources=[_verification_source(s, SupportLevel.STRONG) for s in matching[:MAX_COMPANY_SOURCES]],
            )
        )

    return verifications


def _verification_source(source: SourceRecord, level: SupportLevel) -> VerificationSource:
    return VerificationSource(
        url=source.url,
        domain=source.domain,
        support_level=level,
        excerpt=source.content[:EXCERPT_LENGTH],
        authority=source.reliability,
    )


def calculate_quality(
    sources: list[SourceRecord],
    verifications: list[ClaimVerification],
) -> QualityScore:
    """Quality of a wide research run, computed from the retrieved data only.

    A run without sources scores zero on every component.
    """
    if not sources:
        return QualityScore()

    unique_domains = len({s.domain for s in sources})
    total_claims = len(verifications)
    verified = sum(1 for v in verifications if v.status == ClaimStatus.VERIFIED)
    verified_share = verified / total_claims if total_claims else None

    return QualityScore(
        completeness=min(1.0, len(sources) / COMPLETENESS_TARGET_SOURCES),
        source_quality=min(1.0, 0.5 + (unique_domains / DOMAIN_DIVERSITY_TARGET) * 0.5),
        accuracy=verified_share if verified_share is not None else 0.5,
        freshness=REALTIME_FRESHNESS,
        claim_verification=verified_share or 0.0,
    )


def cross_reference(
    sources: list[SourceRecord],
    consolidator: Optional[DataConsolidator],
) -> Optional[ConsolidatedResult]:
    """Validate and merge the fields of ``sources``. None without a consolidator or sources."""
    if consolidator is None or not sources:
        return None
    return consolidator.consolidate(sources)


def field_display_value(consolidated: ConsolidatedResult, name: str, domain: Optional[str] = None) -> str:
    """
    Wording of a field's value as it appeared in a source.

    Uses ``domain``'s text when given, otherwise that of the source the
    resolved value came from. Falls back to the normalized value.
    """
    if domain is None:
        confidence = consolidated.field_confidences.get(name)
        backing = confidence.sources if confidence else []
        resolved = consolidated.data.get(name)
        domain = next(
            (d for d in backing if consolidated.data_by_source.get(d, {}).get(name) == resolved),
            backing[0] if backing else None,
        )
    record = consolidated.data_by_source.get(domain or "", {})
    text = record.get(f"_{name}_text")
    if text:
        return str(text)
    value: Any = record.get(name, consolidated.data.get(name))
    return "N/A" if value is None else str(value)


def field_claim_text(consolidated: ConsolidatedResult, name: str) -> str:
    """Claim wording for a resolved field, e.g. ``"revenue $383 billion"``."""
    shown = field_display_value(consolidated, name)
    value = consolidated.data.get(name)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return f"{name.replace('_', ' ')} {shown}"
    return shown


def create_field_verifications(
    consolidated: Optional[ConsolidatedResult],
    sources: list[SourceRecord],
) -> list[ClaimVerification]:
    """
    Verdicts for cross-referenced fields.

    A field agreed on by two or more sources is verified; a field trusted
    on one authoritative source is partially verified; a field whose sources
    conflict stays unverified and names the sources it was taken from.
    """
    if consolidated is None:
        return []

    verifications = []
    for name, confidence in consolidated.field_confidences.items():
        if confidence.value is None:
            continue
        backing = [s for s in sources if s.domain in confidence.sources]
        corroborated = confidence.verified and len(confidence.sources) >= MIN_VERIFYING_SOURCES
        score = min(1.0, confidence.confidence / 100.0)
        if corroborated and score >= VERIFIED_MIN_CONFIDENCE:
            status = ClaimStatus.VERIFIED
        elif confidence.verified:
            status = ClaimStatus.PARTIALLY_VERIFIED
        else:
            status = ClaimStatus.UNVERIFIED
        level = SupportLevel.STRONG if corroborated else SupportLevel.MODERATE
        verifications.append(
            ClaimVerification(
                claim=field_claim_text(consolidated, name),
                status=status,
                confidence=score,
                explanation=(
                    f"{confidence.verification_method} across {len(confidence.sources)} source(s)"
                ),
                sources=[_verification_source(s, level) for s in backing[:MAX_FACT_SOURCES]],
            )
        )
    return verifications

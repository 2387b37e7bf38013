"""Markdown reports built strictly from retrieved data.

Nothing here synthesizes content: every row comes from an extracted item or
a retrieved source. With no sources the report says so explicitly.
"""

from datetime import datetime, timezone
from typing import Optional

from research_agent.agents.sifters.data_consolidator import ConsolidatedResult
from research_agent.agents.wide_research.aggregator import field_display_value
from research_agent.agents.wide_research.decomposer import COMPANY_PATTERN, IPO_PATTERN
from research_agent.data_management.schemas.research_schema import SourceRecord
from research_agent.data_management.schemas.verification_schema import ClaimStatus, ClaimVerification
from research_agent.data_management.schemas.wide_research_schema import (
    CompanyItem,
    ExtractedContent,
    SubAgentResult,
)

NO_DATA_STATUS = "NO DATA FOUND"
INSUFFICIENT_DATA_STATUS = "INSUFFICIENT DATA"
NO_COMPANIES_NOTICE = "**No specific company names were identified in the retrieved sources.**"
MAX_REPORT_SOURCES = 15


def is_entity_query(query: str) -> bool:
    return bool(IPO_PATTERN.search(query) or COMPANY_PATTERN.search(query))


def _generated(now: Optional[datetime] = None) -> str:
    return (now or datetime.now(timezone.utc)).strftime("%A, %B %d, %Y")


def _cell(value: Optional[str]) -> str:
    return (value or "N/A").replace("|", "/")


def generate_companies_table(companies: list[CompanyItem]) -> str:
    if not companies:
        return ""
    lines = [
        "## Companies Identified",
        "",
        "| Company | Ticker | Market | Action | Date | Value |",
        "|---------|--------|--------|--------|------|-------|",
    ]
    for c in companies:
        lines.append(
            f"| {_cell(c.name)} | {_cell(c.ticker)} | {_cell(c.market)} | "
            f"{_cell(c.action)} | {_cell(c.date)} | {_cell(c.value)} |"
        )
    return "\n".join(lines)


def generate_cross_reference_section(consolidated: ConsolidatedResult) -> str:
    """Table of fields resolved across sources, then any discrepancies between them."""
    rows = [
        (name, score) for name, score in consolidated.field_confidences.items() if score.value is not None
    ]
    if not rows:
        return ""
    lines = [
        "## Cross-Referenced Data",
        "",
        "| Field | Value | Method | Sources | Status |",
        "|-------|-------|--------|---------|--------|",
    ]
    for name, score in rows:
        lines.append(
            f"| {name} | {_cell(field_display_value(consolidated, name))} | {score.verification_method} | "
            f"{', '.join(score.sources) or '-'} | {'agreed' if score.verified else 'unconfirmed'} |"
        )
    if consolidated.discrepancies:
        lines += ["", "### Discrepancies", ""]
        for d in consolidated.discrepancies:
            reported = ", ".join(
                f"{v['source']}: {field_display_value(consolidated, d.field, v['source'])}" for v in d.values
            )
            lines.append(f"- **{d.field}**: {reported} (kept {d.selected_source}, {d.reason.lower()})")
    return "\n".join(lines)


def generate_data_report(
    query: str,
    sources: list[SourceRecord],
    data: ExtractedContent,
    verifications: list[ClaimVerification],
    mode: str = "Wide Research",
    consolidated: Optional[ConsolidatedResult] = None,
) -> str:
    """
    Report listing extracted items, cross-referenced fields, verdicts and sources.

    Entity queries always get a companies section, stating explicitly when
    no company names were found.
    """
    domains = {s.domain for s in sources}
    parts = [
        f"# Research Report: {query}",
        "",
        f"> Generated {_generated()} | Mode: {mode} (Data Only) | Sources: {len(sources)}",
        "",
        "---",
        "",
    ]

    if data.companies:
        parts += [generate_companies_table(data.companies), ""]
    elif is_entity_query(query):
        parts += ["## Companies Identified", "", NO_COMPANIES_NOTICE, ""]

    if data.key_facts:
        parts += ["## Key Findings", ""]
        parts += [
            f"{i}. **{f.confidence.upper()} confidence**: {f.fact}"
            for i, f in enumerate(data.key_facts, start=1)
        ]
        parts.append("")

    if data.key_dates:
        parts += ["## Key Dates", ""]
        parts += [f"- **{d.date}**: {d.event}" + (f" ({d.entity})" if d.entity else "") for d in data.key_dates]
        parts.append("")

    if data.numeric_data:
        parts += ["## Numeric Data", "", "| Metric | Value | Unit | Context |", "|--------|-------|------|---------|"]
        parts += [
            f"| {_cell(n.metric)} | {_cell(n.value)} | {n.unit or '-'} | {n.context or '-'} |"
            for n in data.numeric_data
        ]
        parts.append("")

    if consolidated is not None:
        section = generate_cross_reference_section(consolidated)
        if section:
            parts += [section, ""]

    verified = [v for v in verifications if v.status == ClaimStatus.VERIFIED]
    unverified = [v for v in verifications if v.status != ClaimStatus.VERIFIED]
    if verified:
        parts += ["## Verified Information", ""] + [f"- [verified] {v.claim}" for v in verified] + [""]
    if unverified:
        parts += ["## Needs Further Verification", ""]
        parts += [f"- [{v.status.value}] {v.claim}" for v in unverified] + [""]

    parts += ["## Sources", ""]
    parts += [
        f"{i}. [{s.title or s.url}]({s.url}) - {s.domain} ({s.source})"
        for i, s in enumerate(sources[:MAX_REPORT_SOURCES], start=1)
    ]
    parts += [
        "",
        "---",
        "",
        "**Research Metadata:**",
        f"- Mode: {mode}",
        f"- Sources retrieved: {len(sources)}",
        f"- Unique domains: {len(domains)}",
        f"- Companies extracted: {len(data.companies)}",
        f"- Verified claims: {len(verified)}/{len(verifications)}",
        f"- Generated: {datetime.now(timezone.utc).isoformat()}",
    ]
    return "\n".join(parts)


def generate_no_data_report(query: str, sub_results: list[SubAgentResult]) -> str:
    """Explicit empty-state report. Contains no companies, facts or dates."""
    attempted = [
        f'{i}. "{r.query}" - {len(r.sources)} sources found' + (f" (Error: {r.error})" if r.error else "")
        for i, r in enumerate(sub_results, start=1)
    ]
    return "\n".join(
        [
            f"# Research Report: {query}",
            "",
            f"> Generated {_generated()} | Mode: Wide Research | Status: **{NO_DATA_STATUS}**",
            "",
            "---",
            "",
            "## Research Could Not Complete",
            "",
            "No data could be retrieved from web sources for this query.",
            "",
            "### Sub-Queries Attempted",
            *(attempted or ["(none)"]),
            "",
            "### Possible Causes",
            "- Target websites may be blocking automated access",
            "- Network connectivity issues",
            "- Query terms may not match available content",
            "- Sources may require authentication",
            "",
            "### Recommended Actions",
            "1. **Try more specific search terms** - Use exact company names or stock tickers",
            "2. **Check source accessibility** - Some financial sources require subscriptions",
            "3. **Retry later** - Temporary blocks may expire",
            "",
            "---",
            "",
            "**Research Metadata:**",
            "- Mode: Wide Research",
            f"- Sub-queries attempted: {len(sub_results)}",
            "- Sources found: 0",
            f"- Generated: {datetime.now(timezone.utc).isoformat()}",
            "",
            "This report contains no synthesized content. Findings are only reported from retrieved sources.",
        ]
    )


def generate_insufficient_data_report(
    query: str,
    attempted_queries: list[str],
    errors: list[str],
    reason: str = "No sources could be retrieved for this query.",
) -> str:
    """Labeled fallback for a run that ended without usable sources."""
    return "\n".join(
        [
            f"# Research Report: {query}",
            "",
            f"> Generated {_generated()} | Mode: Research | Status: **{INSUFFICIENT_DATA_STATUS}**",
            "",
            "---",
            "",
            "## Insufficient Data",
            "",
            reason,
            "",
            "### Searches Attempted",
            *([f'{i}. "{q}"' for i, q in enumerate(attempted_queries, start=1)] or ["(none)"]),
            "",
            "### Errors",
            *([f"- {e}" for e in errors] or ["- None reported"]),
            "",
            "---",
            "",
            "**Research Metadata:**",
            "- Mode: Research",
            f"- Searches attempted: {len(attempted_queries)}",
            "- Sources found: 0",
            f"- Generated: {datetime.now(timezone.utc).isoformat()}",
            "",
            "This report contains no synthesized content. Findings are only reported from retrieved sources.",
        ]
    )

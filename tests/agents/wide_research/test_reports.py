"""Tests for data-only report generation."""

from research_agent.agents.sifters.data_consolidator import DataConsolidator
from research_agent.agents.sifters.source_authority import SourceAuthorityResolver
from research_agent.agents.wide_research.extraction import with_fields
from research_agent.agents.wide_research.reports import (
    INSUFFICIENT_DATA_STATUS,
    NO_COMPANIES_NOTICE,
    NO_DATA_STATUS,
    generate_companies_table,
    generate_data_report,
    generate_insufficient_data_report,
    generate_no_data_report,
)
from research_agent.data_management.schemas.research_schema import SourceRecord
from research_agent.data_management.schemas.verification_schema import ClaimStatus, ClaimVerification
from research_agent.data_management.schemas.wide_research_schema import (
    CompanyItem,
    ExtractedContent,
    FactItem,
    SubAgentResult,
)


class TestNoDataReport:
    def test_states_no_data_and_lists_attempts(self):
        sub_results = [
            SubAgentResult(id="subagent-0", query="Saudi IPO companies", status="completed"),
            SubAgentResult(id="subagent-1", query="TASI listings", status="failed", error="HTTP 500"),
        ]

        report = generate_no_data_report("Saudi IPO companies", sub_results)

        assert NO_DATA_STATUS in report
        assert '1. "Saudi IPO companies" - 0 sources found' in report
        assert "(Error: HTTP 500)" in report
        assert "- Sources found: 0" in report

    def test_contains_no_findings(self):
        report = generate_no_data_report("Saudi IPO companies", [])

        assert "## Companies Identified" not in report
        assert "## Key Findings" not in report
        assert "## Key Dates" not in report
        assert "(none)" in report


class TestInsufficientDataReport:
    def test_lists_searches_and_errors(self):
        report = generate_insufficient_data_report("Acme revenue", ["Acme revenue", "Acme revenue news"], ["timeout"])

        assert INSUFFICIENT_DATA_STATUS in report
        assert '2. "Acme revenue news"' in report
        assert "- timeout" in report
        assert "## Key Findings" not in report

    def test_no_errors(self):
        report = generate_insufficient_data_report("q", [], [])
        assert "- None reported" in report


class TestDataReport:
    def test_sections_from_data(self):
        sources = [SourceRecord(url="https://reuters.com/a", title="Acme files", content="Acme")]
        data = ExtractedContent(
            companies=[CompanyItem(name="Acme", ticker="ACM")],
            key_facts=[FactItem(fact="Acme filed for listing", confidence="high")],
        )
        verifications = [
            ClaimVerification(claim="Acme filed for listing", status=ClaimStatus.PARTIALLY_VERIFIED, confidence=0.6)
        ]

        report = generate_data_report("Acme IPO", sources, data, verifications, mode="Research")

        assert "Mode: Research (Data Only)" in report
        assert "| Acme | ACM | N/A | N/A | N/A | N/A |" in report
        assert "1. **HIGH confidence**: Acme filed for listing" in report
        assert "- [partially_verified] Acme filed for listing" in report
        assert "1. [Acme files](https://reuters.com/a) - reuters.com (web-search)" in report

    def test_entity_query_without_companies(self):
        sources = [SourceRecord(url="https://reuters.com/a")]
        report = generate_data_report("upcoming IPO companies", sources, ExtractedContent(), [])
        assert NO_COMPANIES_NOTICE in report

    def test_table_escapes_pipes(self):
        table = generate_companies_table([CompanyItem(name="A|B")])
        assert "| A/B |" in table

    def test_empty_table(self):
        assert generate_companies_table([]) == ""

    def test_cross_referenced_fields_and_discrepancies(self):
        sources = with_fields(
            [
                SourceRecord(url="https://www.sec.gov/f", content="Apple reported annual revenue of $383 billion."),
                SourceRecord(url="https://www.reuters.com/a", content="Apple revenue reached $350 billion."),
            ]
        )
        consolidated = DataConsolidator(SourceAuthorityResolver()).consolidate(sources)

        report = generate_data_report("Apple revenue", sources, ExtractedContent(), [], consolidated=consolidated)

        assert "## Cross-Referenced Data" in report
        assert "| revenue | $383 billion | authority_based | sec.gov | unconfirmed |" in report
        assert "- **revenue**: sec.gov: $383 billion, reuters.com: $350 billion (kept sec.gov" in report
        assert report.index("## Cross-Referenced Data") < report.index("## Sources")

    def test_no_cross_reference_section_without_fields(self):
        sources = [SourceRecord(url="https://reuters.com/a", content="nothing comparable")]
        consolidated = DataConsolidator(SourceAuthorityResolver()).consolidate(sources)

        report = generate_data_report("q", sources, ExtractedContent(), [], consolidated=consolidated)

        assert "Cross-Referenced Data" not in report

"""Tests for DataConsolidator."""

import pytest

from research_agent.agents.sifters.data_consolidator import DataConsolidator
from research_agent.agents.sifters.source_authority import SourceAuthorityResolver
from research_agent.data_management.schemas.research_schema import SourceRecord


# ── Fixtures ──────────────────────────────────────────────────────────────


@pytest.fixture
def consolidator():
    return DataConsolidator(SourceAuthorityResolver())


@pytest.fixture
def agreeing_sources():
    return [
        SourceRecord(
            url="https://www.reuters.com/acme",
            title="Acme results",
            content="Acme reported revenue of 5 billion.",
            fields={"company": "Acme Corp", "revenue": 5_000_000_000},
        ),
        SourceRecord(
            url="https://www.bloomberg.com/acme",
            title="Acme quarterly",
            content="Acme Corp revenue came in at 5.1 billion.",
            fields={"company": "ACME CORP.", "revenue": 5_100_000_000},
        ),
    ]


class TestConsolidate:
    """Field consolidation across sources."""

    def test_agreeing_fields_are_verified(self, consolidator, agreeing_sources):
        result = consolidator.consolidate(agreeing_sources)

        assert result.field_confidences["company"].verified is True
        assert result.field_confidences["revenue"].verified is True
        assert result.discrepancies == []
        assert result.quality_metrics.consistency == 1.0
        assert 0.0 < result.quality_metrics.overall_score <= 1.0

    def test_bookkeeping_keys_not_validated(self, consolidator, agreeing_sources):
        result = consolidator.consolidate(agreeing_sources)

        assert not any(name.startswith("_") for name in result.field_confidences)
        assert result.data_by_source["reuters.com"]["_url"] == "https://www.reuters.com/acme"

    def test_conflict_recorded_as_discrepancy(self, consolidator):
        sources = [
            SourceRecord(url="https://www.sec.gov/acme", fields={"price": 100}),
            SourceRecord(url="https://reddit.com/r/acme", fields={"price": 150}),
        ]
        result = consolidator.consolidate(sources)

        assert len(result.discrepancies) == 1
        discrepancy = result.discrepancies[0]
        assert discrepancy.field == "price"
        assert discrepancy.selected_value == 100
        assert discrepancy.selected_source == "sec.gov"
        assert result.warnings

    def test_verified_fields_have_no_discrepancy(self, consolidator):
        sources = [
            SourceRecord(url="https://reuters.com/a", fields={"price": 100}),
            SourceRecord(url="https://bloomberg.com/b", fields={"price": 101}),
        ]
        assert consolidator.consolidate(sources).discrepancies == []

    def test_empty_input(self, consolidator):
        result = consolidator.consolidate([])
        assert result.data == {}
        assert result.quality_metrics.overall_score == 0.0
        assert result.source_coverage.total_sources == 0


class TestSourceCoverage:
    """Coverage and authority distribution."""

    def test_distribution(self, consolidator):
        sources = [
            SourceRecord(url="https://irs.gov/a"),
            SourceRecord(url="https://cnn.com/b"),
            SourceRecord(url="https://reddit.com/c"),
            SourceRecord(url="https://cnn.com/d"),
        ]
        coverage = consolidator.calculate_source_coverage(sources)

        assert coverage.total_sources == 4
        assert coverage.unique_domains == 3
        assert coverage.authority_distribution.high == 1
        assert coverage.authority_distribution.medium == 2
        assert coverage.authority_distribution.low == 1
        assert coverage.category_breakdown["news_major"] == 2


class TestEntities:
    """Entity grouping and merging."""

    def test_entities_grouped_and_merged(self, consolidator):
        merged = consolidator.consolidate_entities(
            [
                {"name": "Acme Corp", "type": "company", "source_url": "https://reddit.com/x", "ticker": "ACME"},
                {"name": "acme corp", "type": "company", "source_url": "https://sec.gov/y", "ticker": None},
                {"name": "Globex", "type": "company", "source_url": "https://cnn.com/z"},
            ]
        )

        assert len(merged) == 2
        acme = next(e for e in merged if e["source_count"] == 2)
        assert acme["source_url"] == "https://sec.gov/y"
        assert acme["ticker"] == "ACME"
        assert merged[0]["confidence"] >= merged[1]["confidence"]


class TestDeduplication:
    """URL and content-hash deduplication."""

    def test_duplicate_url_keeps_higher_relevance(self, consolidator):
        results = consolidator.deduplicate_results(
            [
                SourceRecord(url="https://a.example/1", content="one", relevance_score=0.2),
                SourceRecord(url="https://a.example/1", content="one", relevance_score=0.9),
            ]
        )
        assert len(results) == 1
        assert results[0].relevance_score == 0.9

    def test_duplicate_content_removed(self, consolidator):
        results = consolidator.deduplicate_results(
            [
                SourceRecord(url="https://a.example/1", content="Same   Story text", relevance_score=0.5),
                SourceRecord(url="https://b.example/2", content="same story TEXT", relevance_score=0.4),
                SourceRecord(url="https://c.example/3", content="Different story", relevance_score=0.1),
            ]
        )
        assert [r.url for r in results] == ["https://a.example/1", "https://c.example/3"]


class TestSummary:
    def test_summary_mentions_discrepancies(self, consolidator):
        result = consolidator.consolidate(
            [
                SourceRecord(url="https://www.sec.gov/acme", fields={"price": 100}),
                SourceRecord(url="https://reddit.com/r/acme", fields={"price": 150}),
            ]
        )
        summary = consolidator.generate_summary(result)
        assert "Sources: 2" in summary
        assert "Discrepancy in 'price'" in summary

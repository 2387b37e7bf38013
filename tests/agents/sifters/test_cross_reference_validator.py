"""Tests for CrossReferenceValidator."""

import pytest

from research_agent.agents.sifters.cross_reference_validator import (
    CrossReferenceValidator,
    FuzzyMatchConfig,
    levenshtein_distance,
)
from research_agent.agents.sifters.source_authority import SourceAuthorityResolver
from research_agent.data_management.schemas.validation_schema import ValidationMethod


@pytest.fixture
def validator():
    return CrossReferenceValidator(SourceAuthorityResolver())


class TestLevenshtein:
    """Edit distance."""

    @pytest.mark.parametrize(
        "a,b,expected",
        [("", "", 0), ("abc", "", 3), ("kitten", "sitting", 3), ("flaw", "lawn", 2), ("same", "same", 0)],
    )
    def test_distance(self, a, b, expected):
        assert levenshtein_distance(a, b) == expected

    def test_symmetric(self):
        assert levenshtein_distance("saturday", "sunday") == levenshtein_distance("sunday", "saturday")


class TestFieldDispatch:
    """validate_field picks the method by source count and value type."""

    def test_no_sources(self, validator):
        result = validator.validate_field("price", {})
        assert result.method == ValidationMethod.NO_DATA
        assert result.confidence == 0.0
        assert result.verified is False

    def test_empty_values_count_as_missing(self, validator):
        result = validator.validate_field("price", {"https://a.example": None, "https://b.example": ""})
        assert result.method == ValidationMethod.NO_DATA

    def test_single_high_authority_source(self, validator):
        result = validator.validate_field("price", {"https://www.sec.gov/x": 10})
        assert result.method == ValidationMethod.AUTHORITY_BASED
        assert result.verified is True
        assert result.confidence == pytest.approx(80.0)

    def test_single_low_authority_source(self, validator):
        result = validator.validate_field("price", {"https://reddit.com/x": 10})
        assert result.verified is False
        assert result.confidence <= 80.0

    def test_exact_match(self, validator):
        result = validator.validate_field(
            "ceo", {"https://reuters.com/a": "Jane Doe", "https://bloomberg.com/b": "Jane Doe"}
        )
        assert result.method == ValidationMethod.EXACT_MATCH
        assert result.confidence == 100.0
        assert result.verified is True

    def test_numeric_within_tolerance(self, validator):
        result = validator.validate_field("price", {"https://reuters.com/a": 100, "https://bloomberg.com/b": 102})
        assert result.verified is True
        assert result.confidence == pytest.approx(90.0)
        assert result.warning is None

    def test_numeric_outside_tolerance(self, validator):
        result = validator.validate_field("price", {"https://reuters.com/a": 100, "https://bloomberg.com/b": 120})
        assert result.verified is False
        assert result.method == ValidationMethod.AUTHORITY_BASED
        assert "exceeds" in result.warning
        assert len(result.discrepancies) == 2
        assert all(d.deviation_percent is not None for d in result.discrepancies)

    def test_unknown_field_uses_default_tolerance(self, validator):
        # 4.5% spread passes the 5% default
        result = validator.validate_field("headcount", {"https://a.example": 100, "https://b.example": 104.6})
        assert result.verified is True

    def test_fuzzy_text_match(self, validator):
        result = validator.validate_field(
            "name", {"https://reuters.com/a": "Acme Corp", "https://bloomberg.com/b": "ACME CORP."}
        )
        assert result.method == ValidationMethod.FUZZY_MATCH
        assert result.confidence == pytest.approx(95.0)
        assert result.verified is True

    def test_text_conflict_falls_back_to_authority(self, validator):
        result = validator.validate_field(
            "ceo", {"https://reddit.com/a": "John Smith", "https://www.sec.gov/b": "Jane Doe"}
        )
        assert result.value == "Jane Doe"
        assert result.verified is False
        assert result.conflicting_sources == ["https://reddit.com/a"]
        assert result.warning is not None

    def test_mixed_types_use_authority(self, validator):
        result = validator.validate_field("value", {"https://a.example": 1, "https://irs.gov/x": "one"})
        assert result.value == "one"
        assert result.method == ValidationMethod.AUTHORITY_BASED


class TestFuzzyMatch:
    """Normalized similarity."""

    def test_normalized_equivalents(self, validator):
        assert validator.fuzzy_match("Acme Corp", "ACME CORP.") >= 0.85

    def test_whitespace_collapsed(self, validator):
        assert validator.fuzzy_match("Acme   Corp", " acme corp ") == 1.0

    def test_dissimilar(self, validator):
        assert validator.fuzzy_match("Acme Corp", "Globex Industries") < 0.5

    def test_empty_string(self, validator):
        assert validator.fuzzy_match("", "Acme") == 0.0

    def test_case_sensitive_config(self):
        strict = CrossReferenceValidator(
            SourceAuthorityResolver(), FuzzyMatchConfig(normalize_case=False, remove_special_chars=False)
        )
        assert strict.fuzzy_match("ACME", "acme") < 1.0


class TestValidate:
    """validate() covers every field across the source map."""

    def test_consolidated_record_and_overall_confidence(self, validator):
        result = validator.validate(
            {
                "reuters.com": {"price": 100, "ceo": "Jane Doe"},
                "bloomberg.com": {"price": 101, "ceo": "Jane Doe"},
            }
        )
        assert result.success is True
        assert result.consolidated_data["ceo"] == "Jane Doe"
        assert set(result.field_validations) == {"price", "ceo"}
        assert result.overall_confidence == pytest.approx((90.0 + 100.0) / 2)

    def test_conflict_recorded_as_issue(self, validator):
        result = validator.validate(
            {"reuters.com": {"price": 100}, "bloomberg.com": {"price": 150}}
        )
        assert result.success is False
        assert result.issues
        assert result.warnings

    def test_empty_map(self, validator):
        result = validator.validate({})
        assert result.success is True
        assert result.overall_confidence == 0.0

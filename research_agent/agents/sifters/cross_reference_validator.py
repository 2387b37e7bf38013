"""Cross-reference validation of field values reported by several sources.

Dispatch per field:
- 0 sources: no_data
- 1 source: authority_based, trusted only above SINGLE_SOURCE_TRUST_THRESHOLD
- identical values: exact_match
- numeric values: spread against a per-field percent tolerance
- text values: greedy clustering on normalized Levenshtein similarity
- anything else, or unresolved conflicts: highest-authority source wins
"""

import json
import re
from dataclasses import dataclass
from typing import Any, Mapping, Optional

import structlog

from research_agent.agents.sifters.source_authority import SourceAuthorityResolver
from research_agent.config.validation_rules import (
    AUTHORITY_FALLBACK_CONFIDENCE_CAP,
    DEFAULT_FUZZY_THRESHOLD,
    EXACT_MATCH_CONFIDENCE,
    FUZZY_TEXT_CONFIDENCE,
    NUMERIC_CONFLICT_CONFIDENCE,
    NUMERIC_MATCH_CONFIDENCE,
    NUMERIC_TOLERANCES,
    SINGLE_SOURCE_CONFIDENCE_CAP,
    SINGLE_SOURCE_TRUST_THRESHOLD,
)
from research_agent.data_management.schemas.validation_schema import (
    DiscrepancyDetail,
    FieldValidation,
    ValidationMethod,
    ValidationResult,
)

_WHITESPACE = re.compile(r"\s+")
_SPECIAL_CHARS = re.compile(r"[^\w\s]")


@dataclass
class FuzzyMatchConfig:
    """Normalization applied before comparing strings."""

    threshold: float = DEFAULT_FUZZY_THRESHOLD
    normalize_case: bool = True
    normalize_whitespace: bool = True
    remove_special_chars: bool = True


def levenshtein_distance(a: str, b: str) -> int:
    """Edit distance between two strings (two-row dynamic programming)."""
    if a == b:
        return 0
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            if char_a == char_b:
                current.append(previous[j - 1])
            else:
                current.append(1 + min(previous[j], current[j - 1], previous[j - 1]))
        previous = current
    return previous[-1]


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_present(value: Any) -> bool:
    return value is not None and value != ""


def _fingerprint(value: Any) -> str:
    try:
        return json.dumps(value, sort_keys=True, default=str)
    except (TypeError, ValueError):
        return repr(value)


class CrossReferenceValidator:
    """
    Checks per-field agreement across sources and resolves one value per field.

    Confidence values are on a 0-100 scale.
    """

    def __init__(
        self,
        authority: SourceAuthorityResolver,
        fuzzy_config: Optional[FuzzyMatchConfig] = None,
        tolerances: Optional[Mapping[str, float]] = None,
    ) -> None:
        """
        Initialize the validator.

        Args:
            authority: Resolver used for single-source trust and tie-breaking
            fuzzy_config: Text normalization and similarity threshold
            tolerances: Field -> allowed percent spread; must contain "default"
        """
        self.authority = authority
        self.fuzzy_config = fuzzy_config or FuzzyMatchConfig()
        self.tolerances = dict(tolerances or NUMERIC_TOLERANCES)
        self.tolerances.setdefault("default", NUMERIC_TOLERANCES["default"])
        self._logger = structlog.get_logger().bind(component="CrossReferenceValidator")

    def validate(self, data_by_source: Mapping[str, Mapping[str, Any]]) -> ValidationResult:
        """
        Validate every field that appears in any source.

        Args:
            data_by_source: Source URL/domain -> {field: value}

        Returns:
            ValidationResult with per-field validations, mean confidence, issues,
            warnings, and the consolidated record
        """
        fields: list[str] = []
        for record in data_by_source.values():
            for name in record:
                if name not in fields:
                    fields.append(name)

        validations: dict[str, FieldValidation] = {}
        issues: list[str] = []
        warnings: list[str] = []
        consolidated: dict[str, Any] = {}

        for name in fields:
            values_by_source = {
                source: record[name]
                for source, record in data_by_source.items()
                if name in record and _is_present(record[name])
            }
            validation = self.validate_field(name, values_by_source)
            validations[name] = validation

            if validation.verified or validation.value is not None:
                consolidated[name] = validation.value
            if validation.warning:
                warnings.append(validation.warning)
            if not validation.verified and len(validation.sources) > 1:
                issues.append(
                    f"Field '{name}' has conflicting values across {len(validation.sources)} sources"
                )

        overall = (
            sum(v.confidence for v in validations.values()) / len(validations)
            if validations else 0.0
        )

        self._logger.debug(
            "validation_complete",
            fields=len(validations),
            issues=len(issues),
            overall_confidence=round(overall, 2),
        )

        return ValidationResult(
            success=not issues,
            field_validations=validations,
            overall_confidence=overall,
            issues=issues,
            warnings=warnings,
            consolidated_data=consolidated,
        )

    def validate_field(self, name: str, values_by_source: Mapping[str, Any]) -> FieldValidation:
        """
        Resolve one field across sources.

        Args:
            name: Field name (selects the numeric tolerance)
            values_by_source: Source URL/domain -> value

        Returns:
            FieldValidation describing the resolved value and agreement
        """
        values_by_source = {s: v for s, v in values_by_source.items() if _is_present(v)}
        sources = list(values_by_source)

        if not values_by_source:
            return FieldValidation(
                field=name,
                value=None,
                confidence=0.0,
                method=ValidationMethod.NO_DATA,
                verified=False,
                warning=f"No data available for '{name}'",
            )

        if len(values_by_source) == 1:
            source, value = next(iter(values_by_source.items()))
            authority = self.authority.authority_of(source)
            return FieldValidation(
                field=name,
                value=value,
                confidence=authority * SINGLE_SOURCE_CONFIDENCE_CAP,
                method=ValidationMethod.AUTHORITY_BASED,
                verified=authority > SINGLE_SOURCE_TRUST_THRESHOLD,
                sources=sources,
                matched_sources=sources,
            )

        values = list(values_by_source.values())
        if len({_fingerprint(v) for v in values}) == 1:
            return FieldValidation(
                field=name,
                value=values[0],
                confidence=EXACT_MATCH_CONFIDENCE,
                method=ValidationMethod.EXACT_MATCH,
                verified=True,
                sources=sources,
                matched_sources=sources,
            )

        if all(_is_number(v) for v in values):
            return self._validate_numeric(name, values_by_source)

        if all(isinstance(v, str) for v in values):
            return self._validate_text(name, values_by_source)

        return self._select_by_authority(name, values_by_source)

    def _validate_numeric(self, name: str, values_by_source: Mapping[str, float]) -> FieldValidation:
        values = [float(v) for v in values_by_source.values()]
        mean = sum(values) / len(values)
        spread = ((max(values) - min(values)) / abs(mean) * 100) if mean != 0 else 0.0
        tolerance = self.tolerances.get(name, self.tolerances["default"])
        within = spread <= tolerance

        resolved = self.authority.resolve_conflict(values_by_source)
        value = resolved.value if resolved else mean
        discrepancies = [
            DiscrepancyDetail(
                source=source,
                value=raw,
                authority=self.authority.authority_of(source),
                deviation_percent=(abs(float(raw) - mean) / abs(mean) * 100) if mean != 0 else 0.0,
            )
            for source, raw in values_by_source.items()
        ]

        warning = None
        if not within:
            warning = f"Variance {spread:.2f}% for '{name}' exceeds {tolerance}% tolerance"
            self._logger.info("numeric_conflict", field=name, variance=round(spread, 2), tolerance=tolerance)

        return FieldValidation(
            field=name,
            value=value,
            confidence=NUMERIC_MATCH_CONFIDENCE if within else NUMERIC_CONFLICT_CONFIDENCE,
            method=ValidationMethod.FUZZY_MATCH if within else ValidationMethod.AUTHORITY_BASED,
            verified=within,
            sources=list(values_by_source),
            matched_sources=list(values_by_source) if within else ([resolved.source] if resolved else []),
            conflicting_sources=[] if within else [
                s for s, v in values_by_source.items() if resolved and s != resolved.source and v != value
            ],
            discrepancies=discrepancies,
            warning=warning,
        )

    def _validate_text(self, name: str, values_by_source: Mapping[str, str]) -> FieldValidation:
        groups = self._group_by_similarity(list(values_by_source.values()))
        if len(groups) == 1:
            return FieldValidation(
                field=name,
                value=groups[0][0],
                confidence=FUZZY_TEXT_CONFIDENCE,
                method=ValidationMethod.FUZZY_MATCH,
                verified=True,
                sources=list(values_by_source),
                matched_sources=list(values_by_source),
            )
        return self._select_by_authority(name, values_by_source)

    def _select_by_authority(self, name: str, values_by_source: Mapping[str, Any]) -> FieldValidation:
        resolved = self.authority.resolve_conflict(values_by_source)
        if resolved is None:
            return FieldValidation(
                field=name,
                value=None,
                confidence=0.0,
                method=ValidationMethod.NO_DATA,
            )

        winner = _fingerprint(resolved.value)
        return FieldValidation(
            field=name,
            value=resolved.value,
            confidence=resolved.authority * AUTHORITY_FALLBACK_CONFIDENCE_CAP,
            method=ValidationMethod.AUTHORITY_BASED,
            verified=False,
            sources=list(values_by_source),
            matched_sources=[s for s, v in values_by_source.items() if _fingerprint(v) == winner],
            conflicting_sources=[s for s, v in values_by_source.items() if _fingerprint(v) != winner],
            discrepancies=[
                DiscrepancyDetail(source=s, value=v, authority=self.authority.authority_of(s))
                for s, v in values_by_source.items()
            ],
            warning=f"Multiple different values found for '{name}', selected from {resolved.source}",
        )

    def _group_by_similarity(self, items: list[str]) -> list[list[str]]:
        """Greedy clustering: each unused item seeds a group of items similar to it."""
        groups: list[list[str]] = []
        used: set[int] = set()
        for i, seed in enumerate(items):
            if i in used:
                continue
            group = [seed]
            used.add(i)
            for j in range(i + 1, len(items)):
                if j not in used and self.fuzzy_match(seed, items[j]) >= self.fuzzy_config.threshold:
                    group.append(items[j])
                    used.add(j)
            groups.append(group)
        return groups

    def fuzzy_match(self, first: str, second: str) -> float:
        """
        Similarity in [0, 1] after normalization.

        Args:
            first: First string
            second: Second string

        Returns:
            1 - levenshtein / max_len, 1.0 for equal normalized strings
        """
        a = self._normalize(first)
        b = self._normalize(second)
        if a == b:
            return 1.0
        if not a or not b:
            return 0.0
        return 1.0 - levenshtein_distance(a, b) / max(len(a), len(b))

    def _normalize(self, text: str) -> str:
        result = str(text)
        if self.fuzzy_config.normalize_case:
            result = result.lower()
        if self.fuzzy_config.normalize_whitespace:
            result = _WHITESPACE.sub(" ", result).strip()
        if self.fuzzy_config.remove_special_chars:
            result = _SPECIAL_CHARS.sub("", result)
        return result

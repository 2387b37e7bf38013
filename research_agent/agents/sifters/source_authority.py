"""Authority resolution for source domains.

Classifies a URL's domain against an ordered list of regex rules into a
category and a base authority in [0, 1]. Results are cached per domain.
Used by the validator to break ties, by the consolidator to weight fields,
and by the critic to rank candidate sources.
"""

import re
from dataclasses import dataclass, asdict
from typing import Any, Iterable, Mapping, Optional, Sequence, TypeVar

import structlog

from research_agent.config.source_authority import (
    CATEGORY_FRESHNESS,
    CATEGORY_RELIABILITY,
    CUSTOM_CATEGORY,
    CUSTOM_FRESHNESS,
    CUSTOM_RELIABILITY,
    DEFAULT_AUTHORITY,
    DEFAULT_CATEGORY,
    DOMAIN_PATTERNS,
)
from research_agent.data_management.schemas.research_schema import extract_domain

T = TypeVar("T")


@dataclass
class SourceAuthority:
    """Authority profile of a domain."""

    domain: str
    authority: float
    category: str
    reliability: float
    freshness: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ConflictResolution:
    """Value chosen from the highest-authority source."""

    value: Any
    authority: float
    source: str
    all_sources: list[dict[str, Any]]


class SourceAuthorityResolver:
    """
    Resolves domain authority and arbitrates between conflicting sources.

    Rules are (pattern, category, authority) tuples matched against the bare
    domain in order; the first match wins. Unmatched domains get the
    "unknown" profile. Per-deployment overrides take precedence over rules.
    """

    def __init__(
        self,
        patterns: Optional[Sequence[tuple[str, str, float]]] = None,
        default_authority: float = DEFAULT_AUTHORITY,
    ) -> None:
        """
        Initialize the resolver.

        Args:
            patterns: Ordered domain rules, defaults to DOMAIN_PATTERNS
            default_authority: Authority for domains no rule matches
        """
        self._rules = [
            (re.compile(pattern, re.IGNORECASE), category, authority)
            for pattern, category, authority in (patterns or DOMAIN_PATTERNS)
        ]
        self._default_authority = _clamp(default_authority)
        self._cache: dict[str, SourceAuthority] = {}
        self._custom: dict[str, float] = {}
        self._logger = structlog.get_logger().bind(component="SourceAuthorityResolver")

    def get_authority(self, url_or_domain: str) -> SourceAuthority:
        """
        Authority profile for a URL or bare domain.

        Args:
            url_or_domain: Full URL or domain

        Returns:
            Cached SourceAuthority for the extracted domain
        """
        domain = extract_domain(url_or_domain)
        cached = self._cache.get(domain)
        if cached is not None:
            return cached

        profile = self._classify(domain)
        self._cache[domain] = profile
        self._logger.debug(
            "authority_resolved",
            domain=domain,
            category=profile.category,
            authority=profile.authority,
        )
        return profile

    def _classify(self, domain: str) -> SourceAuthority:
        if domain in self._custom:
            return SourceAuthority(
                domain=domain,
                authority=self._custom[domain],
                category=CUSTOM_CATEGORY,
                reliability=CUSTOM_RELIABILITY,
                freshness=CUSTOM_FRESHNESS,
            )

        for regex, category, authority in self._rules:
            if regex.search(domain):
                return SourceAuthority(
                    domain=domain,
                    authority=_clamp(authority),
                    category=category,
                    reliability=CATEGORY_RELIABILITY.get(category, 0.5),
                    freshness=CATEGORY_FRESHNESS.get(category, 0.5),
                )

        return SourceAuthority(
            domain=domain,
            authority=self._default_authority,
            category=DEFAULT_CATEGORY,
            reliability=CATEGORY_RELIABILITY[DEFAULT_CATEGORY],
            freshness=CATEGORY_FRESHNESS[DEFAULT_CATEGORY],
        )

    def authority_of(self, url_or_domain: str) -> float:
        """Shortcut for ``get_authority(url).authority``."""
        return self.get_authority(url_or_domain).authority

    def resolve_conflict(self, values_by_source: Mapping[str, Any]) -> Optional[ConflictResolution]:
        """
        Pick the value reported by the highest-authority source.

        Args:
            values_by_source: Source URL/domain -> reported value

        Returns:
            ConflictResolution, or None when no sources were given
        """
        if not values_by_source:
            return None

        ranked = sorted(
            (
                {"source": source, "value": value, "authority": self.authority_of(source)}
                for source, value in values_by_source.items()
            ),
            key=lambda entry: entry["authority"],
            reverse=True,
        )
        best = ranked[0]
        return ConflictResolution(
            value=best["value"],
            authority=best["authority"],
            source=best["source"],
            all_sources=ranked,
        )

    def rank_sources(self, sources: Iterable[T], key: str = "url") -> list[T]:
        """
        Sort sources by authority, highest first.

        Args:
            sources: Strings, dicts, or objects carrying a URL
            key: Attribute or dict key holding the URL for non-string items

        Returns:
            New list in descending authority order (stable for ties)
        """
        def _url(item: Any) -> str:
            if isinstance(item, str):
                return item
            if isinstance(item, Mapping):
                return str(item.get(key, ""))
            return str(getattr(item, key, ""))

        return sorted(sources, key=lambda item: self.authority_of(_url(item)), reverse=True)

    def calculate_weighted_confidence(self, confidences_by_source: Mapping[str, float]) -> float:
        """
        Authority-weighted mean of per-source confidences.

        Args:
            confidences_by_source: Source URL/domain -> confidence

        Returns:
            Sum(confidence * authority) / Sum(authority), 0.0 when empty
        """
        total_weight = 0.0
        weighted = 0.0
        for source, confidence in confidences_by_source.items():
            authority = self.authority_of(source)
            weighted += confidence * authority
            total_weight += authority
        return weighted / total_weight if total_weight > 0 else 0.0

    def set_custom_authority(self, domain: str, authority: float) -> None:
        """
        Override the authority of a domain for this deployment.

        Args:
            domain: Domain or URL to override
            authority: New authority, clamped to [0, 1]
        """
        domain = extract_domain(domain)
        self._custom[domain] = _clamp(authority)
        self._cache.pop(domain, None)
        self._logger.info("custom_authority_set", domain=domain, authority=self._custom[domain])

    def remove_custom_authority(self, domain: str) -> bool:
        domain = extract_domain(domain)
        self._cache.pop(domain, None)
        return self._custom.pop(domain, None) is not None

    def clear_cache(self) -> None:
        self._cache.clear()

    @property
    def cache_size(self) -> int:
        return len(self._cache)


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, float(value)))

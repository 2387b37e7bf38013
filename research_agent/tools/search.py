"""Search service contract.

Adapters never raise into the research core: transport and API failures come
back as ``SearchResult(success=False, error=...)``.
"""

from dataclasses import dataclass, field
from typing import Any, Optional, Protocol


@dataclass
class SearchHit:
    """One organic search result."""

    url: str
    title: str = ""
    snippet: str = ""
    position: int = 0
    date: Optional[str] = None


@dataclass
class SearchResult:
    """Outcome of one search call."""

    success: bool
    results: list[SearchHit] = field(default_factory=list)
    error: Optional[str] = None


class SearchService(Protocol):
    """Web search capability."""

    async def search(
        self,
        query: str,
        max_results: int = 8,
        options: Optional[dict[str, Any]] = None,
    ) -> SearchResult:
        ...

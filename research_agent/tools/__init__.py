"""Search service boundary and adapters."""

from research_agent.tools.search import SearchHit, SearchResult, SearchService

__all__ = ["SearchHit", "SearchResult", "SearchService"]

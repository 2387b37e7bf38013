"""Serper (Google Search) adapter over httpx."""

from typing import Any, Optional

import httpx
from loguru import logger
from tenacity import (
    RetryError,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from research_agent.tools.search import SearchHit, SearchResult

DEFAULT_ENDPOINT = "https://google.serper.dev/search"


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code == 429 or exc.response.status_code >= 500
    return isinstance(exc, httpx.TransportError)


class SerperSearchService:
    """
    Web search through the Serper JSON API.

    Retries transient failures (timeouts, connection errors, 429 and 5xx)
    with exponential backoff. Everything else is reported through
    ``SearchResult.error``.
    """

    def __init__(
        self,
        api_key: str,
        endpoint: str = DEFAULT_ENDPOINT,
        timeout: float = 15.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize the adapter.

        Args:
            api_key: Serper API key
            endpoint: Search endpoint URL
            timeout: Request timeout in seconds
            client: Optional shared AsyncClient; one is created per call otherwise
        """
        self.api_key = api_key
        self.endpoint = endpoint
        self.timeout = timeout
        self._client = client
        self.logger = logger.bind(component="SerperSearchService")

    async def search(
        self,
        query: str,
        max_results: int = 8,
        options: Optional[dict[str, Any]] = None,
    ) -> SearchResult:
        """
        Search the web.

        Args:
            query: Search query
            max_results: Maximum organic results to return
            options: Extra request fields, e.g. {"gl": "sa"} for country

        Returns:
            SearchResult with hits in rank order
        """
        if not self.api_key:
            return SearchResult(success=False, error="SERPER_API_KEY not configured")

        payload: dict[str, Any] = {"q": query, "num": max_results}
        payload.update(options or {})

        try:
            data = await self._post(payload)
        except (httpx.HTTPError, RetryError, ValueError) as e:
            self.logger.warning(f"Search failed for '{query[:60]}': {e}")
            return SearchResult(success=False, error=str(e))

        hits = [
            SearchHit(
                url=item.get("link", ""),
                title=item.get("title", ""),
                snippet=item.get("snippet", ""),
                position=item.get("position", index + 1),
                date=item.get("date"),
            )
            for index, item in enumerate(data.get("organic", [])[:max_results])
            if item.get("link")
        ]
        self.logger.debug(f"Search '{query[:60]}' returned {len(hits)} results")
        return SearchResult(success=True, results=hits)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception(_is_retryable),
        reraise=True,
    )
    async def _post(self, payload: dict[str, Any]) -> dict[str, Any]:
        headers = {"X-API-KEY": self.api_key, "Content-Type": "application/json"}
        if self._client is not None:
            response = await self._client.post(self.endpoint, json=payload, headers=headers, timeout=self.timeout)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.endpoint, json=payload, headers=headers)
        response.raise_for_status()
        return response.json()

from __future__ import annotations

from typing import Any

from loguru import logger
from tavily import AsyncTavilyClient

from researchloop.config import settings
from researchloop.models.research import SearchResult, SearchSource
from researchloop.tools.search_provider import ProviderError


class TavilySearchProvider:
    """General web search through Tavily."""

    name = "tavily"
    source = SearchSource.WEB

    def __init__(
        self,
        api_key: str | None = None,
        *,
        result_share: float = 0.7,
        search_depth: str = "basic",
        client: Any | None = None,
    ) -> None:
        self.api_key = api_key if api_key is not None else settings.tavily_api_key
        self.result_share = result_share
        self.search_depth = search_depth
        self._client = client

    def _get_client(self) -> Any:
        if self._client is None:
            self._client = AsyncTavilyClient(api_key=self.api_key)
        return self._client

    async def search(
        self, query: str, *, max_results: int = 10, language: str = "en"
    ) -> list[SearchResult]:
        """Execute a Tavily web search and return structured results."""
        if not self.api_key and self._client is None:
            raise ProviderError(self.name, "TAVILY_API_KEY is not configured")

        logger.info(f"Tavily search: {query!r} (max {max_results})")
        try:
            response = await self._get_client().search(
                query=query,
                search_depth=self.search_depth,
                max_results=max_results,
                topic="general",
                timeout=int(settings.search_timeout_seconds),
            )
        except Exception as exc:
            raise ProviderError(self.name, str(exc) or type(exc).__name__) from exc

        results: list[SearchResult] = []
        for r in response.get("results", []):
            url = r.get("url", "")
            if not url:
                continue
            results.append(
                SearchResult(
                    source=self.source,
                    title=r.get("title", "") or "Untitled",
                    url=url,
                    snippet=r.get("content", "") or "",
                )
            )
        return results[:max_results]

    async def health_check(self) -> bool:
        if not self.api_key:
            return False
        try:
            await self.search("test", max_results=1)
        except ProviderError as exc:
            logger.warning(f"Tavily health check failed: {exc}")
            return False
        return True

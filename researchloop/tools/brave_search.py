from __future__ import annotations

from typing import Any

import httpx
from loguru import logger

from researchloop.config import settings
from researchloop.models.research import SearchResult, SearchSource
from researchloop.tools.search_provider import ProviderError

BRAVE_SEARCH_URL = "https://api.search.brave.com/res/v1/web/search"

LANGUAGE_MAP = {
    "zh": "zh-hans",
    "en": "en",
}


class BraveSearchProvider:
    """General web search through the Brave Search API."""

    name = "brave"
    source = SearchSource.WEB

    def __init__(
        self,
        api_key: str | None = None,
        *,
        result_share: float = 0.7,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key if api_key is not None else settings.brave_api_key
        self.result_share = result_share
        self.timeout = timeout or settings.search_timeout_seconds
        self._transport = transport

    async def search(
        self, query: str, *, max_results: int = 10, language: str = "en"
    ) -> list[SearchResult]:
        """Execute a Brave web search and normalize results."""
        if not self.api_key:
            raise ProviderError(self.name, "BRAVE_API_KEY is not configured")

        params: dict[str, Any] = {
            "q": query,
            # Brave caps a single page at 20 results
            "count": max(1, min(max_results, 20)),
        }
        if language in LANGUAGE_MAP:
            params["search_lang"] = LANGUAGE_MAP[language]

        logger.info(f"Brave search: {query!r} (max {params['count']})")
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(
                    BRAVE_SEARCH_URL,
                    params=params,
                    headers={
                        "Accept": "application/json",
                        "X-Subscription-Token": self.api_key,
                    },
                )
                response.raise_for_status()
                payload = response.json()
        except httpx.HTTPStatusError as exc:
            if exc.response.status_code == 429:
                raise ProviderError(self.name, "rate limit exceeded") from exc
            raise ProviderError(self.name, f"HTTP {exc.response.status_code}") from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise ProviderError(self.name, str(exc) or type(exc).__name__) from exc

        raw_results = payload.get("web", {}).get("results", []) if isinstance(payload, dict) else []
        mapped: list[SearchResult] = []
        for item in raw_results[:max_results]:
            url = item.get("url", "")
            if not url:
                continue
            snippets = item.get("extra_snippets", []) or []
            description = item.get("description", "") or ""
            mapped.append(
                SearchResult(
                    source=self.source,
                    title=item.get("title", "") or "Untitled",
                    url=url,
                    snippet=description.strip() or " ".join(snippets).strip(),
                )
            )
        return mapped

    async def health_check(self) -> bool:
        if not self.api_key:
            return False
        try:
            await self.search("test", max_results=1)
        except ProviderError as exc:
            logger.warning(f"Brave health check failed: {exc}")
            return False
        return True

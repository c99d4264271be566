from __future__ import annotations

import re
from typing import Any
from urllib.parse import quote

import httpx
from loguru import logger

from researchloop.config import settings
from researchloop.models.research import SearchResult, SearchSource
from researchloop.tools.search_provider import ProviderError

API_URLS = {
    "zh": "https://zh.wikipedia.org/w/api.php",
    "en": "https://en.wikipedia.org/w/api.php",
}
USER_AGENT = "researchloop/0.1 (multi-round research service)"

_TAG_RE = re.compile(r"<[^>]*>")


def api_url_for(language: str) -> str:
    return API_URLS.get(language, API_URLS["en"])


def _strip_tags(text: str) -> str:
    return _TAG_RE.sub("", text or "")


class WikipediaSearchProvider:
    """Encyclopedic search against the MediaWiki API.

    Two calls per query: a full-text title search, then one batched
    ``extracts|info`` lookup for the intro text and canonical URL of
    every hit.
    """

    name = "wikipedia"
    source = SearchSource.WIKIPEDIA

    def __init__(
        self,
        *,
        result_share: float = 0.3,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.result_share = result_share
        self.timeout = timeout or settings.search_timeout_seconds
        self._transport = transport

    async def search(
        self, query: str, *, max_results: int = 5, language: str = "en"
    ) -> list[SearchResult]:
        base_url = api_url_for(language)
        logger.info(f"Wikipedia search: {query!r} (max {max_results}, {base_url})")
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                transport=self._transport,
                headers={"User-Agent": USER_AGENT},
            ) as client:
                pages = await self._search_pages(client, base_url, query, max_results)
                if not pages:
                    return []
                details = await self._page_details(client, base_url, [p["pageid"] for p in pages])
        except httpx.HTTPStatusError as exc:
            raise ProviderError(self.name, f"HTTP {exc.response.status_code}") from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise ProviderError(self.name, str(exc) or type(exc).__name__) from exc

        results: list[SearchResult] = []
        for page in pages:
            detail = details.get(str(page["pageid"]))
            if not detail or not detail.get("extract"):
                continue
            title = detail.get("title") or page["title"]
            extract = detail["extract"]
            url = detail.get("fullurl") or (
                base_url.replace("/w/api.php", "") + "/wiki/" + quote(title.replace(" ", "_"))
            )
            results.append(
                SearchResult(
                    source=self.source,
                    title=title,
                    url=url,
                    snippet=page["snippet"] or extract[:200],
                    content=extract,
                )
            )
        return results

    async def _search_pages(
        self, client: httpx.AsyncClient, base_url: str, query: str, limit: int
    ) -> list[dict[str, Any]]:
        response = await client.get(
            base_url,
            params={
                "action": "query",
                "list": "search",
                "srsearch": query,
                "srlimit": max(1, limit),
                "format": "json",
            },
        )
        response.raise_for_status()
        hits = response.json().get("query", {}).get("search", [])
        return [
            {
                "title": item.get("title", ""),
                "pageid": item.get("pageid"),
                "snippet": _strip_tags(item.get("snippet", "")),
            }
            for item in hits
            if item.get("pageid") is not None
        ]

    async def _page_details(
        self, client: httpx.AsyncClient, base_url: str, page_ids: list[int]
    ) -> dict[str, dict[str, Any]]:
        response = await client.get(
            base_url,
            params={
                "action": "query",
                "prop": "extracts|info",
                "pageids": "|".join(str(pid) for pid in page_ids),
                "exintro": 1,
                "explaintext": 1,
                "exsectionformat": "plain",
                "exlimit": "max",
                "inprop": "url",
                "format": "json",
            },
        )
        response.raise_for_status()
        pages = response.json().get("query", {}).get("pages", {})
        return pages if isinstance(pages, dict) else {}

    async def health_check(self) -> bool:
        try:
            await self.search("test", max_results=1)
        except ProviderError as exc:
            logger.warning(f"Wikipedia health check failed: {exc}")
            return False
        return True

from __future__ import annotations

from typing import Protocol, runtime_checkable

from researchloop.config import settings
from researchloop.models.research import SearchResult, SearchSource


class ProviderError(RuntimeError):
    """A search provider could not answer (auth, quota, network, bad payload)."""

    def __init__(self, provider: str, message: str):
        super().__init__(f"{provider}: {message}")
        self.provider = provider


@runtime_checkable
class SearchProvider(Protocol):
    """Interface shared by every search source."""

    name: str
    source: SearchSource
    result_share: float

    async def search(
        self, query: str, *, max_results: int, language: str
    ) -> list[SearchResult]:
        """Return normalized results; raise ProviderError on failure."""
        ...

    async def health_check(self) -> bool: ...


def build_providers() -> list[SearchProvider]:
    """Instantiate the configured providers, web first."""
    from researchloop.tools.brave_search import BraveSearchProvider
    from researchloop.tools.tavily_search import TavilySearchProvider
    from researchloop.tools.wikipedia_search import WikipediaSearchProvider

    web_share = min(max(float(settings.web_result_share), 0.0), 1.0)
    providers: list[SearchProvider] = []

    web = settings.web_search_provider.lower().strip()
    if web == "brave":
        providers.append(BraveSearchProvider(result_share=web_share))
    elif web == "tavily":
        providers.append(TavilySearchProvider(result_share=web_share))
    elif web not in ("", "none"):
        raise ValueError(f"Unsupported WEB_SEARCH_PROVIDER: {settings.web_search_provider}")

    if settings.wikipedia_enabled:
        providers.append(WikipediaSearchProvider(result_share=1.0 - web_share))
    return providers

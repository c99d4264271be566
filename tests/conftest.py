from __future__ import annotations

from typing import Callable

import pytest

from researchloop.models.research import (
    AnalysisResult,
    RoundAnalysis,
    SearchResult,
    SearchSource,
)


class FakeProvider:
    def __init__(
        self,
        name: str,
        source: SearchSource,
        results: list[SearchResult] | None = None,
        *,
        error: Exception | None = None,
        result_share: float = 0.7,
    ) -> None:
        self.name = name
        self.source = source
        self.results = results or []
        self.error = error
        self.result_share = result_share
        self.calls: list[tuple[str, int, str]] = []

    async def search(self, query: str, *, max_results: int, language: str) -> list[SearchResult]:
        self.calls.append((query, max_results, language))
        if self.error is not None:
            raise self.error
        return list(self.results[:max_results])

    async def health_check(self) -> bool:
        return self.error is None


class FakeFetcher:
    def __init__(self, pages: dict[str, str] | None = None) -> None:
        self.pages = pages or {}
        self.fetched: list[str] = []

    async def fetch(self, url: str) -> str:
        self.fetched.append(url)
        return self.pages.get(url, "")


class FakeSummarizer:
    """Returns scripted round analyses in order, then ``next_query=None``."""

    model = "fake-model"

    def __init__(self, next_queries: list[str | None] | None = None) -> None:
        self.next_queries = list(next_queries or [])
        self.round_calls: list[tuple[int, int]] = []
        self.synthesized: list[SearchResult] = []
        self.rendered_templates: list[str] = []
        self.languages: list[str] = []

    async def analyze_round_results(self, results, topic, round_number, *, language="en"):
        self.round_calls.append((round_number, len(results)))
        next_query = self.next_queries.pop(0) if self.next_queries else None
        return RoundAnalysis(key_findings=f"findings {round_number}", next_query=next_query)

    async def synthesize(self, all_results, topic, *, language="en"):
        self.synthesized = list(all_results)
        self.languages.append(language)
        return AnalysisResult(
            summary=f"Summary of {topic}",
            key_points=["point one"],
            confidence=0.8,
        )

    async def render_document(
        self, analysis, template_name, screenshots, *, topic="", language="en"
    ):
        self.rendered_templates.append(template_name)
        self.languages.append(language)
        return f"<!DOCTYPE html><html><body>{analysis.summary}</body></html>"

    async def health_check(self) -> bool:
        return True


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def make_result(
    url: str,
    title: str = "",
    *,
    source: SearchSource = SearchSource.WEB,
    snippet: str = "",
    content: str = "",
) -> SearchResult:
    return SearchResult(
        source=source,
        title=title or url,
        url=url,
        snippet=snippet,
        content=content,
    )


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def result_factory() -> Callable[..., SearchResult]:
    return make_result


@pytest.fixture
def fakes():
    """Fake collaborators for wiring orchestrators without network access."""

    class Fakes:
        Provider = FakeProvider
        Fetcher = FakeFetcher
        Summarizer = FakeSummarizer
        Sleep = RecordingSleep

    return Fakes


@pytest.fixture(autouse=True)
def isolate_output_dirs(tmp_path, monkeypatch):
    from researchloop.config import settings

    monkeypatch.setattr(settings, "artifacts_dir", str(tmp_path / "screenshots"))
    monkeypatch.setattr(settings, "markdown_output_dir", str(tmp_path / "reports"))
    monkeypatch.setattr(settings, "log_dir", str(tmp_path / "logs"))

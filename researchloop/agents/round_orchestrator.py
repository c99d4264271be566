from __future__ import annotations

import asyncio
import math
import time
from dataclasses import replace
from typing import Sequence

from loguru import logger

from researchloop.agents.summarizer import Summarizer
from researchloop.config import settings
from researchloop.models.research import (
    JobOptions,
    ScreenshotRef,
    SearchResult,
    SearchRound,
    SearchSource,
    utc_now,
)
from researchloop.services.artifact_store import ArtifactStore, StorageError
from researchloop.services.concurrency import Sleep, run_in_batches
from researchloop.tools.content_fetcher import ContentFetcher
from researchloop.tools.screenshot import ScreenshotCapturer
from researchloop.tools.search_provider import ProviderError, SearchProvider
from researchloop.tools.web_utils import extract_domain, screenshot_name_hint

SOURCE_WEIGHTS = {
    SearchSource.WIKIPEDIA: 1.2,
    SearchSource.WEB: 1.0,
    SearchSource.OTHER: 0.8,
}


def provider_quota(max_results: int, share: float) -> int:
    # round() first so 10 * 0.7 does not ceil to 8
    return math.ceil(round(max_results * share, 6))


def dedupe_by_url(results: Sequence[SearchResult]) -> list[SearchResult]:
    """One entry per URL; the longer ``content`` wins, ties keep the first."""
    kept: dict[str, SearchResult] = {}
    for result in results:
        current = kept.get(result.url)
        if current is None or len(result.content or "") > len(current.content or ""):
            kept[result.url] = result
    return list(kept.values())


def score_result(result: SearchResult, query: str) -> float:
    title = result.title.lower()
    haystack = f"{title} {result.snippet.lower()}"
    score = 0.0
    for token in query.lower().split():
        if token in title:
            score += 2
        if token in haystack:
            score += 1
    return score * SOURCE_WEIGHTS.get(result.source, SOURCE_WEIGHTS[SearchSource.OTHER])


def rank_results(results: Sequence[SearchResult], query: str) -> list[SearchResult]:
    scored = [replace(r, relevance_score=score_result(r, query)) for r in results]
    # sorted() is stable, equal scores keep merge order
    return sorted(scored, key=lambda r: r.relevance_score, reverse=True)


class RoundOrchestrator:
    """Runs one search round: fan out, merge, rank, enrich, analyze.

    Produces a ``SearchRound`` and has no persistence side effects.
    """

    def __init__(
        self,
        providers: Sequence[SearchProvider],
        fetcher: ContentFetcher,
        capturer: ScreenshotCapturer,
        artifact_store: ArtifactStore,
        summarizer: Summarizer,
        *,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.providers = list(providers)
        self.fetcher = fetcher
        self.capturer = capturer
        self.artifact_store = artifact_store
        self.summarizer = summarizer
        self._sleep = sleep

    async def run_round(
        self,
        query: str,
        round_number: int,
        options: JobOptions,
        topic: str,
    ) -> SearchRound:
        started_at = utc_now()
        t0 = time.monotonic()
        logger.info(f"Round {round_number} started: '{query}'")

        merged = await self._search_all(query, options)
        results = rank_results(dedupe_by_url(merged), query)[: options.max_results_per_round]

        if options.enhance_content and results:
            results = await self._enhance(results)

        screenshots: list[ScreenshotRef] = []
        if options.include_screenshots and results:
            screenshots = await self._capture(results[: settings.screenshot_top_n])

        analysis = await self.summarizer.analyze_round_results(
            results, topic, round_number, language=options.language
        )

        elapsed_ms = int((time.monotonic() - t0) * 1000)
        logger.info(
            f"Round {round_number} finished: {len(results)} results, "
            f"{len(screenshots)} screenshots in {elapsed_ms}ms"
        )
        return SearchRound(
            round_number=round_number,
            query=query,
            results=results,
            screenshots=screenshots,
            key_findings=analysis.key_findings,
            next_query=analysis.next_query,
            started_at=started_at,
            processing_time_ms=elapsed_ms,
        )

    async def _search_all(self, query: str, options: JobOptions) -> list[SearchResult]:
        calls = []
        active: list[SearchProvider] = []
        for provider in self.providers:
            quota = provider_quota(options.max_results_per_round, provider.result_share)
            if quota <= 0:
                continue
            active.append(provider)
            calls.append(provider.search(query, max_results=quota, language=options.language))

        outcomes = await asyncio.gather(*calls, return_exceptions=True)
        merged: list[SearchResult] = []
        for provider, outcome in zip(active, outcomes):
            if isinstance(outcome, ProviderError):
                logger.warning(f"Search provider {provider.name} failed for '{query}': {outcome}")
                continue
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                logger.warning(
                    f"Search provider {provider.name} raised unexpectedly for '{query}': {outcome!r}"
                )
                continue
            logger.debug(f"{provider.name} returned {len(outcome)} results for '{query}'")
            merged.extend(outcome)
        return merged

    async def _enhance(self, results: list[SearchResult]) -> list[SearchResult]:
        async def enhance_one(result: SearchResult) -> SearchResult:
            content = await self.fetcher.fetch(result.url)
            if not content:
                return result
            return replace(result, content=content)

        return await run_in_batches(
            results,
            enhance_one,
            batch_size=settings.content_batch_size,
            pause=settings.content_batch_pause_seconds,
            sleep=self._sleep,
        )

    async def _capture(self, results: Sequence[SearchResult]) -> list[ScreenshotRef]:
        by_url = {r.url: r for r in results}
        outcomes = await self.capturer.capture_many([r.url for r in results])

        refs: list[ScreenshotRef] = []
        for outcome in outcomes:
            if not outcome.success or not outcome.data:
                logger.warning(f"Dropping screenshot for {outcome.url}: {outcome.error}")
                continue
            result = by_url[outcome.url]
            try:
                artifact = await self.artifact_store.store(
                    outcome.data,
                    screenshot_name_hint(outcome.url),
                    {"url": outcome.url, "title": result.title},
                )
            except StorageError as exc:
                logger.warning(f"Dropping screenshot for {outcome.url}: {exc}")
                continue
            refs.append(
                ScreenshotRef(
                    source_url=outcome.url,
                    image_locator=artifact.image_locator,
                    thumbnail_locator=artifact.thumbnail_locator,
                    width=artifact.width,
                    height=artifact.height,
                    byte_size=artifact.byte_size,
                    captured_at=artifact.stored_at,
                    title=result.title,
                    source_domain=extract_domain(outcome.url),
                )
            )
        return refs

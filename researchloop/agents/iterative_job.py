from __future__ import annotations

import asyncio
import math
import re
import time
from typing import Any

from loguru import logger

from researchloop.agents.round_orchestrator import RoundOrchestrator, dedupe_by_url
from researchloop.agents.summarizer import Summarizer
from researchloop.models.research import (
    EmptyRoundPolicy,
    Job,
    JobError,
    JobOptions,
    JobResult,
    JobStatus,
    ScreenshotRef,
    SearchResult,
    SearchRound,
)
from researchloop.services import logger as log_service
from researchloop.services.job_store import JobStore
from researchloop.services.markdown_report import MarkdownReportRenderer

SEARCH_FAILED = "SEARCH_FAILED"
STORAGE_FAILED = "STORAGE_FAILED"
CANCELLED = "CANCELLED"

WORDS_PER_MINUTE = 200
_TAG_RE = re.compile(r"<[^>]+>")


def document_metadata(
    rendered_document: str, markdown_document: str | None, generation_ms: int
) -> dict[str, Any]:
    text = markdown_document or _TAG_RE.sub(" ", rendered_document)
    word_count = len(text.split())
    return {
        "word_count": word_count,
        "reading_time_minutes": max(1, math.ceil(word_count / WORDS_PER_MINUTE)),
        "generation_time_ms": generation_ms,
        "document_bytes": len(rendered_document.encode("utf-8")),
        "markdown_bytes": len(markdown_document.encode("utf-8")) if markdown_document else 0,
    }


class IterativeSearchJob:
    """Drives the multi-round loop for one job and owns its record.

    The job record is written only from here, after each round and once at
    the end, so pollers always see a consistent snapshot.
    """

    def __init__(
        self,
        orchestrator: RoundOrchestrator,
        summarizer: Summarizer,
        job_store: JobStore,
        markdown_renderer: MarkdownReportRenderer,
    ) -> None:
        self.orchestrator = orchestrator
        self.summarizer = summarizer
        self.job_store = job_store
        self.markdown_renderer = markdown_renderer

    async def run(
        self, topic: str, options: JobOptions | None = None, *, job_id: str | None = None
    ) -> JobResult:
        options = options or JobOptions()
        if job_id is None:
            job = await self.job_store.create(Job(topic=topic, options=options))
            job_id = job.id

        t0 = time.monotonic()
        rounds: list[SearchRound] = []
        screenshots: list[ScreenshotRef] = []
        all_results: list[SearchResult] = []

        try:
            await self.job_store.update(job_id, status=JobStatus.RUNNING)
            log_service.log_research_step(job_id, "job", "running", {"topic": topic})

            current_query = topic
            for round_number in range(1, options.max_rounds + 1):
                search_round = await self.orchestrator.run_round(
                    current_query, round_number, options, topic
                )
                rounds.append(search_round)
                screenshots.extend(search_round.screenshots)
                all_results.extend(search_round.results)
                await self.job_store.update(
                    job_id, rounds=list(rounds), screenshots=list(screenshots)
                )
                log_service.log_research_step(
                    job_id,
                    "round",
                    "completed",
                    {
                        "round": round_number,
                        "query": current_query,
                        "results": len(search_round.results),
                        "screenshots": len(search_round.screenshots),
                    },
                )

                if (
                    not search_round.results
                    and options.empty_round_policy == EmptyRoundPolicy.STOP
                ):
                    logger.info(f"Job {job_id}: round {round_number} empty, stopping early")
                    break
                if search_round.next_query is None:
                    logger.info(f"Job {job_id}: no follow-up query after round {round_number}")
                    break
                current_query = search_round.next_query

            analysis = await self.summarizer.synthesize(
                dedupe_by_url(all_results), topic, language=options.language
            )
            log_service.log_research_step(
                job_id,
                "synthesis",
                "fallback" if analysis.is_fallback else "completed",
                {"confidence": analysis.confidence},
            )

            markdown_document = None
            markdown_path = None
            if options.generate_markdown:
                unique_results = dedupe_by_url(all_results)
                try:
                    report = await self.markdown_renderer.render(
                        topic, rounds, analysis, screenshots, results=unique_results
                    )
                except OSError as exc:
                    # Keep the report on the record even when the file write fails
                    logger.warning(f"Job {job_id}: markdown file not written: {exc}")
                    markdown_document = self.markdown_renderer.build(
                        topic, rounds, analysis, screenshots, results=unique_results
                    )
                else:
                    markdown_document = report.content
                    markdown_path = report.path

            rendered = await self.summarizer.render_document(
                analysis, options.template, screenshots, topic=topic, language=options.language
            )
        except asyncio.CancelledError:
            await self._fail(job_id, JobError("Job cancelled", CANCELLED), rounds, screenshots, t0)
            raise
        except Exception as exc:
            logger.exception(f"Job {job_id} failed: {exc}")
            return await self._fail(
                job_id,
                JobError(str(exc) or type(exc).__name__, SEARCH_FAILED),
                rounds,
                screenshots,
                t0,
            )

        elapsed_ms = int((time.monotonic() - t0) * 1000)
        try:
            await self.job_store.update(
                job_id,
                status=JobStatus.COMPLETED,
                analysis=analysis,
                rendered_document=rendered,
                markdown_document=markdown_document,
                markdown_path=markdown_path,
                metadata=document_metadata(rendered, markdown_document, elapsed_ms),
            )
        except Exception as exc:
            logger.exception(f"Job {job_id}: final persistence failed: {exc}")
            return await self._fail(
                job_id,
                JobError(f"Failed to persist result: {exc}", STORAGE_FAILED),
                rounds,
                screenshots,
                t0,
            )

        log_service.log_research_step(
            job_id, "job", "completed", {"rounds": len(rounds), "duration_ms": elapsed_ms}
        )
        return JobResult(
            job_id=job_id,
            status=JobStatus.COMPLETED,
            rounds=rounds,
            screenshots=screenshots,
            analysis=analysis,
            rendered_document=rendered,
            markdown_document=markdown_document,
            markdown_path=markdown_path,
            processing_time_ms=elapsed_ms,
        )

    async def _fail(
        self,
        job_id: str,
        error: JobError,
        rounds: list[SearchRound],
        screenshots: list[ScreenshotRef],
        t0: float,
    ) -> JobResult:
        try:
            await self.job_store.update(job_id, status=JobStatus.FAILED, error=error)
        except Exception as exc:
            logger.error(f"Job {job_id}: could not record failure: {exc}")
        log_service.log_research_step(
            job_id, "job", "failed", {"code": error.code, "message": error.message}
        )
        return JobResult(
            job_id=job_id,
            status=JobStatus.FAILED,
            rounds=rounds,
            screenshots=screenshots,
            error=error,
            processing_time_ms=int((time.monotonic() - t0) * 1000),
        )

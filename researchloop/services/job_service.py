"""Submission, polling and result retrieval for research jobs.

``build_services`` wires every collaborator once. ``JobService`` is the
boundary the API and CLI talk to: it creates the pending record, hands the
run to ``JobRunner`` and answers polls straight from the job store.
"""

from __future__ import annotations

import asyncio
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Coroutine, Literal, Sequence

from loguru import logger

from researchloop.agents.iterative_job import IterativeSearchJob
from researchloop.agents.round_orchestrator import RoundOrchestrator, dedupe_by_url
from researchloop.agents.summarizer import Summarizer
from researchloop.models.research import Job, JobOptions, JobStatus
from researchloop.models.schemas import (
    JobErrorResponse,
    JobListResponse,
    JobStatusResponse,
    JobSummary,
    NotReadyResponse,
    ResearchStartResponse,
)
from researchloop.services.artifact_store import ArtifactStore
from researchloop.services.concurrency import Sleep
from researchloop.services.job_store import JobStore, get_job_store
from researchloop.services.markdown_report import MarkdownReportRenderer
from researchloop.tools.content_fetcher import ContentFetcher
from researchloop.tools.screenshot import ScreenshotCapturer
from researchloop.tools.search_provider import SearchProvider, build_providers

ResultFormat = Literal["html", "json", "markdown"]

MIN_TOPIC_LENGTH = 2
MAX_TOPIC_LENGTH = 500

MEDIA_TYPES = {
    "html": "text/html; charset=utf-8",
    "json": "application/json",
    "markdown": "text/markdown; charset=utf-8",
}


@dataclass
class Services:
    providers: list[SearchProvider]
    fetcher: ContentFetcher
    capturer: ScreenshotCapturer
    artifact_store: ArtifactStore
    summarizer: Summarizer
    job_store: JobStore
    markdown_renderer: MarkdownReportRenderer
    orchestrator: RoundOrchestrator
    job: IterativeSearchJob


def build_services(
    *,
    providers: Sequence[SearchProvider] | None = None,
    fetcher: ContentFetcher | None = None,
    capturer: ScreenshotCapturer | None = None,
    artifact_store: ArtifactStore | None = None,
    summarizer: Summarizer | None = None,
    job_store: JobStore | None = None,
    markdown_renderer: MarkdownReportRenderer | None = None,
    sleep: Sleep = asyncio.sleep,
) -> Services:
    """Construct the pipeline once; any collaborator can be swapped in."""
    providers = list(providers) if providers is not None else build_providers()
    fetcher = fetcher or ContentFetcher()
    capturer = capturer or ScreenshotCapturer(sleep=sleep)
    artifact_store = artifact_store or ArtifactStore()
    summarizer = summarizer or Summarizer()
    job_store = job_store or get_job_store()
    markdown_renderer = markdown_renderer or MarkdownReportRenderer()

    orchestrator = RoundOrchestrator(
        providers, fetcher, capturer, artifact_store, summarizer, sleep=sleep
    )
    job = IterativeSearchJob(orchestrator, summarizer, job_store, markdown_renderer)
    return Services(
        providers=providers,
        fetcher=fetcher,
        capturer=capturer,
        artifact_store=artifact_store,
        summarizer=summarizer,
        job_store=job_store,
        markdown_renderer=markdown_renderer,
        orchestrator=orchestrator,
        job=job,
    )


class JobRunner:
    """Keeps references to background job tasks until they finish."""

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()

    def schedule(self, coro: Coroutine[Any, Any, Any], *, name: str | None = None) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def active(self) -> int:
        return len(self._tasks)

    async def wait(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await self.wait()


@dataclass(frozen=True)
class JobDocument:
    job_id: str
    format: ResultFormat
    content: str | dict[str, Any]
    media_type: str


def _latest_round(job: Job) -> dict[str, Any] | None:
    if not job.rounds:
        return None
    last = job.rounds[-1]
    return {
        "round_number": last.round_number,
        "query": last.query,
        "result_count": len(last.results),
        "screenshot_count": len(last.screenshots),
        "key_findings": last.key_findings,
        "next_query": last.next_query,
    }


class JobService:
    def __init__(self, services: Services, runner: JobRunner | None = None):
        self.services = services
        self.job_store = services.job_store
        self.runner = runner or JobRunner()

    async def submit(self, topic: str, options: JobOptions | None = None) -> ResearchStartResponse:
        topic = topic.strip()
        if not MIN_TOPIC_LENGTH <= len(topic) <= MAX_TOPIC_LENGTH:
            raise ValueError(
                f"Topic must be between {MIN_TOPIC_LENGTH} and {MAX_TOPIC_LENGTH} characters"
            )
        options = options or JobOptions()
        if options.max_rounds < 1 or options.max_results_per_round < 1:
            raise ValueError("max_rounds and max_results_per_round must be positive")

        job = await self.job_store.create(Job(topic=topic, options=options))
        self.runner.schedule(
            self.services.job.run(topic, options, job_id=job.id), name=f"research-{job.id}"
        )
        logger.info(f"Research job {job.id} queued for '{topic[:100]}'")
        return ResearchStartResponse(job_id=job.id)

    async def status(self, job_id: str) -> JobStatusResponse:
        job = await self.job_store.get(job_id)
        return JobStatusResponse(
            job_id=job.id,
            status=job.status.value,
            rounds_completed=len(job.rounds),
            total_rounds_budget=job.options.max_rounds,
            latest_round=_latest_round(job),
            error=JobErrorResponse(message=job.error.message, code=job.error.code)
            if job.error
            else None,
            updated_at=job.updated_at,
        )

    async def result(
        self, job_id: str, format: ResultFormat = "html"
    ) -> JobDocument | NotReadyResponse:
        if format not in MEDIA_TYPES:
            raise ValueError(f"Unsupported result format: {format}")
        job = await self.job_store.get(job_id)
        if job.status != JobStatus.COMPLETED:
            message = job.error.message if job.error else "Report is not ready yet"
            return NotReadyResponse(job_id=job.id, status=job.status.value, message=message)

        if format == "html":
            content: str | dict[str, Any] = job.rendered_document or ""
        elif format == "markdown":
            content = job.markdown_document or self._markdown_from_record(job)
        else:
            content = self._json_document(job)
        return JobDocument(job_id=job.id, format=format, content=content, media_type=MEDIA_TYPES[format])

    async def list_jobs(
        self, *, page: int = 1, limit: int = 10, status: JobStatus | None = None
    ) -> JobListResponse:
        page = max(page, 1)
        limit = max(limit, 1)
        jobs, total = await self.job_store.list(
            status=status, offset=(page - 1) * limit, limit=limit
        )
        return JobListResponse(
            jobs=[
                JobSummary(
                    job_id=j.id,
                    topic=j.topic,
                    status=j.status.value,
                    rounds_completed=len(j.rounds),
                    created_at=j.created_at,
                    updated_at=j.updated_at,
                )
                for j in jobs
            ],
            page=page,
            limit=limit,
            total=total,
            pages=math.ceil(total / limit) if total else 0,
        )

    async def delete(self, job_id: str) -> Job:
        """Drop a finished job and its markdown file."""
        job = await self.job_store.delete(job_id)
        if job.markdown_path:
            try:
                await asyncio.to_thread(Path(job.markdown_path).unlink, missing_ok=True)
            except OSError as exc:
                logger.warning(f"Could not remove markdown report {job.markdown_path}: {exc}")
        logger.info(f"Research job {job_id} deleted")
        return job

    def _markdown_from_record(self, job: Job) -> str:
        # Markdown was not requested at run time; build it without writing a file
        results = dedupe_by_url([r for rnd in job.rounds for r in rnd.results])
        return self.services.markdown_renderer.build(
            job.topic, job.rounds, job.analysis, job.screenshots, results=results
        )

    @staticmethod
    def _json_document(job: Job) -> dict[str, Any]:
        record = job.to_dict()
        return {
            "job_id": record["id"],
            "topic": record["topic"],
            "status": record["status"],
            "options": record["options"],
            "rounds": record["rounds"],
            "screenshots": record["screenshots"],
            "analysis": record["analysis"],
            "markdown_path": record["markdown_path"],
            "metadata": record["metadata"],
            "created_at": record["created_at"],
            "updated_at": record["updated_at"],
        }

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from researchloop.agents.iterative_job import (
    SEARCH_FAILED,
    STORAGE_FAILED,
    IterativeSearchJob,
    document_metadata,
)
from researchloop.agents.round_orchestrator import RoundOrchestrator
from researchloop.models.research import EmptyRoundPolicy, JobOptions, JobStatus, SearchSource
from researchloop.services.artifact_store import ArtifactStore
from researchloop.services.job_store import InMemoryJobStore
from researchloop.services.markdown_report import MarkdownReportRenderer
from researchloop.tools.screenshot import ScreenshotCapturer


def _build(fakes, tmp_path: Path, providers, summarizer, store=None):
    sleep = fakes.Sleep()

    async def no_capture(_url, _options):
        raise AssertionError("screenshots disabled in these tests")

    orchestrator = RoundOrchestrator(
        providers,
        fakes.Fetcher(),
        ScreenshotCapturer(backend=no_capture, sleep=sleep),
        ArtifactStore(str(tmp_path / "shots")),
        summarizer,
        sleep=sleep,
    )
    store = store or InMemoryJobStore()
    job = IterativeSearchJob(
        orchestrator, summarizer, store, MarkdownReportRenderer(str(tmp_path / "md"))
    )
    return job, store


def _options(**overrides) -> JobOptions:
    values = {"include_screenshots": False, "enhance_content": False, "max_rounds": 3}
    values.update(overrides)
    return JobOptions(**values)


def _web(fakes, result_factory, count=3):
    return fakes.Provider(
        "web",
        SearchSource.WEB,
        [result_factory(f"https://{i}.example.com", f"result {i}") for i in range(count)],
        result_share=1.0,
    )


@pytest.mark.asyncio
async def test_job_stops_when_round_analysis_has_no_next_query(fakes, result_factory, tmp_path):
    summarizer = fakes.Summarizer(next_queries=["follow up", None, "never used"])
    web = _web(fakes, result_factory)
    job, store = _build(fakes, tmp_path, [web], summarizer)

    result = await job.run("topic", _options())

    assert result.status == JobStatus.COMPLETED
    assert [r.round_number for r in result.rounds] == [1, 2]
    assert [call[0] for call in web.calls] == ["topic", "follow up"]
    record = await store.get(result.job_id)
    assert record.status == JobStatus.COMPLETED
    assert record.analysis is not None
    assert record.rendered_document.startswith("<!DOCTYPE html>")
    assert len(record.rounds) == 2


@pytest.mark.asyncio
async def test_job_runs_full_budget_when_queries_keep_coming(fakes, result_factory, tmp_path):
    summarizer = fakes.Summarizer(next_queries=["q2", "q3", "q4", "q5"])
    job, store = _build(fakes, tmp_path, [_web(fakes, result_factory)], summarizer)

    result = await job.run("topic", _options(max_rounds=3))

    assert len(result.rounds) == 3
    record = await store.get(result.job_id)
    assert len(record.rounds) <= record.options.max_rounds


@pytest.mark.asyncio
async def test_cross_round_duplicates_removed_before_synthesis(fakes, result_factory, tmp_path):
    summarizer = fakes.Summarizer(next_queries=["again", None])
    job, _store = _build(fakes, tmp_path, [_web(fakes, result_factory, count=2)], summarizer)

    result = await job.run("topic", _options())

    assert sum(len(r.results) for r in result.rounds) == 4
    assert len(summarizer.synthesized) == 2


@pytest.mark.asyncio
async def test_empty_round_policy_stop_ends_job_early(fakes, tmp_path):
    summarizer = fakes.Summarizer(next_queries=["more", "more"])
    empty = fakes.Provider("web", SearchSource.WEB, [], result_share=1.0)
    job, _store = _build(fakes, tmp_path, [empty], summarizer)

    stopped = await job.run("topic", _options(empty_round_policy=EmptyRoundPolicy.STOP))

    assert stopped.status == JobStatus.COMPLETED
    assert len(stopped.rounds) == 1


@pytest.mark.asyncio
async def test_empty_round_policy_continue_keeps_searching(fakes, tmp_path):
    summarizer = fakes.Summarizer(next_queries=["more", "more"])
    empty = fakes.Provider("web", SearchSource.WEB, [], result_share=1.0)
    job, _store = _build(fakes, tmp_path, [empty], summarizer)

    continued = await job.run("topic", _options(empty_round_policy=EmptyRoundPolicy.CONTINUE))

    assert continued.status == JobStatus.COMPLETED
    assert len(continued.rounds) == 3


@pytest.mark.asyncio
async def test_progress_is_persisted_after_each_round(fakes, result_factory, tmp_path):
    summarizer = fakes.Summarizer(next_queries=["second", None])
    store = InMemoryJobStore()
    job, _ = _build(fakes, tmp_path, [_web(fakes, result_factory)], summarizer, store=store)
    snapshots: list[tuple[str, int]] = []
    original_update = store.update

    async def recording_update(job_id, **partial):
        updated = await original_update(job_id, **partial)
        snapshots.append((updated.status.value, len(updated.rounds)))
        return updated

    store.update = recording_update

    await job.run("topic", _options())

    assert snapshots == [("running", 0), ("running", 1), ("running", 2), ("completed", 2)]


@pytest.mark.asyncio
async def test_markdown_report_written_when_requested(fakes, result_factory, tmp_path):
    summarizer = fakes.Summarizer(next_queries=[None])
    job, store = _build(fakes, tmp_path, [_web(fakes, result_factory)], summarizer)

    result = await job.run("Rust lang", _options(generate_markdown=True, template="classic"))

    assert result.markdown_path is not None
    assert Path(result.markdown_path).read_text(encoding="utf-8") == result.markdown_document
    assert "# Rust lang - Research report" in result.markdown_document
    assert summarizer.rendered_templates == ["classic"]
    record = await store.get(result.job_id)
    assert record.metadata["word_count"] > 0
    assert record.metadata["reading_time_minutes"] >= 1


@pytest.mark.asyncio
async def test_unexpected_failure_marks_job_failed(fakes, result_factory, tmp_path):
    summarizer = fakes.Summarizer(next_queries=["second", None])
    summarizer.synthesize = AsyncMock(side_effect=RuntimeError("synthesis exploded"))
    job, store = _build(fakes, tmp_path, [_web(fakes, result_factory)], summarizer)

    result = await job.run("topic", _options())

    assert result.status == JobStatus.FAILED
    record = await store.get(result.job_id)
    assert record.status == JobStatus.FAILED
    assert record.error.code == SEARCH_FAILED
    assert "synthesis exploded" in record.error.message
    assert record.analysis is None
    assert len(record.rounds) == 2


@pytest.mark.asyncio
async def test_final_persistence_failure_is_reported_as_storage_failure(
    fakes, result_factory, tmp_path
):
    summarizer = fakes.Summarizer(next_queries=[None])
    store = InMemoryJobStore()
    job, _ = _build(fakes, tmp_path, [_web(fakes, result_factory)], summarizer, store=store)
    original_update = store.update

    async def failing_completion(job_id, **partial):
        if partial.get("status") == JobStatus.COMPLETED:
            raise OSError("disk full")
        return await original_update(job_id, **partial)

    store.update = failing_completion

    result = await job.run("topic", _options())

    assert result.status == JobStatus.FAILED
    assert result.error.code == STORAGE_FAILED
    record = await store.get(result.job_id)
    assert record.status == JobStatus.FAILED
    assert record.error.code == STORAGE_FAILED


def test_document_metadata_counts_words_and_bytes():
    metadata = document_metadata("<html><body>one two three</body></html>", None, 1500)

    assert metadata["word_count"] == 3
    assert metadata["reading_time_minutes"] == 1
    assert metadata["generation_time_ms"] == 1500
    assert metadata["document_bytes"] == len("<html><body>one two three</body></html>")
    assert metadata["markdown_bytes"] == 0


@pytest.mark.asyncio
async def test_long_topic_still_writes_markdown_report(fakes, result_factory, tmp_path):
    summarizer = fakes.Summarizer(next_queries=[None])
    job, _store = _build(fakes, tmp_path, [_web(fakes, result_factory)], summarizer)
    topic = "quantum computing " * 20

    result = await job.run(topic, _options(generate_markdown=True))

    assert result.status == JobStatus.COMPLETED
    assert Path(result.markdown_path).exists()


@pytest.mark.asyncio
async def test_markdown_write_failure_keeps_job_completed(fakes, result_factory, tmp_path):
    summarizer = fakes.Summarizer(next_queries=[None])
    job, store = _build(fakes, tmp_path, [_web(fakes, result_factory)], summarizer)
    job.markdown_renderer.render = AsyncMock(side_effect=OSError("read-only file system"))

    result = await job.run("topic", _options(generate_markdown=True))

    assert result.status == JobStatus.COMPLETED
    assert result.markdown_path is None
    assert result.markdown_document.startswith("# topic - Research report")
    record = await store.get(result.job_id)
    assert record.markdown_document == result.markdown_document


@pytest.mark.asyncio
async def test_job_language_reaches_synthesis_and_rendering(fakes, result_factory, tmp_path):
    summarizer = fakes.Summarizer(next_queries=[None])
    job, _store = _build(fakes, tmp_path, [_web(fakes, result_factory)], summarizer)

    await job.run("topic", _options(language="zh"))

    assert summarizer.languages == ["zh", "zh"]

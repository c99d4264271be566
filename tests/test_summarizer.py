from __future__ import annotations

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from researchloop.agents.summarizer import (
    FALLBACK_CONFIDENCE,
    FALLBACK_FINDING,
    Fallback,
    ModelError,
    Parsed,
    Summarizer,
    ensure_document_root,
    parse_analysis,
    parse_round_analysis,
)
from researchloop.models.research import AnalysisResult, ScreenshotRef


def _response(text: str):
    return SimpleNamespace(
        content=[SimpleNamespace(type="text", text=text)],
        usage=SimpleNamespace(input_tokens=12, output_tokens=34),
    )


def _summarizer(reply=None, error: Exception | None = None) -> tuple[Summarizer, MagicMock]:
    client = MagicMock()
    client.messages.create = AsyncMock(
        return_value=_response(reply) if reply is not None else None,
        side_effect=error,
    )
    return Summarizer(client=client, model="test-model"), client


def test_parse_round_analysis_accepts_fenced_camel_case_json():
    text = '```json\n{"keyFindings": "Rust is memory safe.", "nextQuery": "rust borrow checker"}\n```'

    outcome = parse_round_analysis(text, "rust")

    assert isinstance(outcome, Parsed)
    assert outcome.value.key_findings == "Rust is memory safe."
    assert outcome.value.next_query == "rust borrow checker"


def test_parse_round_analysis_treats_blank_next_query_as_done():
    outcome = parse_round_analysis('{"key_findings": "Covered.", "next_query": "  "}', "rust")
    assert isinstance(outcome, Parsed)
    assert outcome.value.next_query is None


def test_parse_round_analysis_falls_back_with_topic_qualifier():
    outcome = parse_round_analysis("I could not decide, sorry.", "quantum computing")

    assert isinstance(outcome, Fallback)
    assert outcome.value.key_findings == FALLBACK_FINDING
    assert outcome.value.next_query.startswith("quantum computing ")
    assert outcome.value.next_query != "quantum computing"


def test_parse_analysis_clamps_and_defaults_confidence():
    payload = {
        "summary": "A summary.",
        "keyPoints": ["one", "two"],
        "categories": [{"name": "History", "points": ["p1"]}],
        "sources": [{"title": "Wiki", "url": "https://en.wikipedia.org/wiki/X", "reliability": 1.4}],
        "confidence": 3,
    }
    outcome = parse_analysis(json.dumps(payload))

    assert isinstance(outcome, Parsed)
    assert outcome.value.confidence == 1.0
    assert outcome.value.sources[0].reliability == 1.0
    assert outcome.value.categories[0].name == "History"
    assert outcome.value.is_fallback is False

    del payload["confidence"]
    assert parse_analysis(json.dumps(payload)).value.confidence == 0.7


def test_parse_analysis_requires_key_points():
    outcome = parse_analysis('{"summary": "only a summary"}')

    assert isinstance(outcome, Fallback)
    assert outcome.value.confidence == FALLBACK_CONFIDENCE
    assert outcome.value.is_fallback is True
    assert outcome.value.key_points


@pytest.mark.parametrize(
    "raw",
    [
        "<h1>Report</h1><p>Body</p>",
        "```html\n<div>fenced fragment</div>\n```",
        "",
    ],
)
def test_ensure_document_root_wraps_fragments(raw):
    document = ensure_document_root(raw, title="Topic")
    assert document.startswith("<!DOCTYPE html>")
    assert "<html" in document
    assert "```" not in document


def test_ensure_document_root_keeps_complete_documents():
    raw = "```html\n<!DOCTYPE html>\n<html><body>ok</body></html>\n```"
    assert ensure_document_root(raw) == "<!DOCTYPE html>\n<html><body>ok</body></html>"


def test_ensure_document_root_drops_prose_around_the_document():
    raw = "Here is your report:\n<!DOCTYPE html>\n<html><body>ok</body></html>\nHope this helps!"

    document = ensure_document_root(raw)

    assert document == "<!DOCTYPE html>\n<html><body>ok</body></html>"


def test_ensure_document_root_starts_at_html_tag_without_doctype():
    document = ensure_document_root("Sure.\n<HTML lang=\"en\"><body>x</body></HTML>")
    assert document.startswith("<HTML")


@pytest.mark.asyncio
async def test_complete_wraps_transport_errors_in_model_error():
    summarizer, _client = _summarizer(error=RuntimeError("connection reset"))

    with pytest.raises(ModelError, match="connection reset"):
        await summarizer.complete("prompt")


@pytest.mark.asyncio
async def test_complete_rejects_empty_text():
    summarizer, _client = _summarizer(reply="   ")

    with pytest.raises(ModelError):
        await summarizer.complete("prompt")


@pytest.mark.asyncio
async def test_analyze_round_results_parses_model_reply(result_factory):
    reply = json.dumps({"key_findings": "Found things.", "next_query": "deeper query"})
    summarizer, client = _summarizer(reply=reply)

    analysis = await summarizer.analyze_round_results(
        [result_factory("https://a.example.com", "A", snippet="alpha")], "topic", 1
    )

    assert analysis.key_findings == "Found things."
    assert analysis.next_query == "deeper query"
    kwargs = client.messages.create.await_args.kwargs
    assert kwargs["model"] == "test-model"
    assert "https://a.example.com" in kwargs["messages"][0]["content"]


@pytest.mark.asyncio
async def test_analyze_round_results_on_empty_input_falls_back_without_model_call():
    summarizer, client = _summarizer(reply="{}")

    analysis = await summarizer.analyze_round_results([], "topic", 2)

    assert analysis.key_findings == FALLBACK_FINDING
    assert analysis.next_query.startswith("topic ")
    client.messages.create.assert_not_awaited()


@pytest.mark.asyncio
async def test_synthesize_falls_back_when_model_unavailable(result_factory):
    summarizer, _client = _summarizer(error=TimeoutError("model timeout"))

    analysis = await summarizer.synthesize([result_factory("https://a.example.com")], "topic")

    assert analysis.is_fallback is True
    assert analysis.confidence == FALLBACK_CONFIDENCE


@pytest.mark.asyncio
async def test_render_document_wraps_model_fragment():
    summarizer, client = _summarizer(reply="<section>Only a fragment</section>")
    analysis = AnalysisResult(summary="S", key_points=["k"], confidence=0.8)

    document = await summarizer.render_document(analysis, "academic", [], topic="Topic")

    assert document.startswith("<!DOCTYPE html>")
    assert "<section>Only a fragment</section>" in document
    assert "academic paper style" in client.messages.create.await_args.kwargs["messages"][0]["content"]


@pytest.mark.asyncio
async def test_render_document_builds_local_page_when_model_fails():
    summarizer, _client = _summarizer(error=RuntimeError("down"))
    analysis = AnalysisResult(summary="Cats <and> dogs", key_points=["k1"], confidence=0.5)
    shot = ScreenshotRef(
        source_url="https://example.com",
        image_locator="/screenshots/2024/05/a.png",
        thumbnail_locator="/screenshots/2024/05/a_thumb.png",
        width=1920,
        height=1080,
        byte_size=1000,
        title="Example",
    )

    document = await summarizer.render_document(analysis, "minimal", [shot], topic="Pets")

    assert document.startswith("<!DOCTYPE html>")
    assert "Cats &lt;and&gt; dogs" in document
    assert "/screenshots/2024/05/a_thumb.png" in document
    assert "<title>Pets</title>" in document


@pytest.mark.asyncio
async def test_synthesize_and_render_ask_for_the_job_language(result_factory):
    reply = json.dumps({"summary": "s", "key_points": ["k"], "confidence": 0.8})
    summarizer, client = _summarizer(reply=reply)

    await summarizer.synthesize([result_factory("https://a.example.com")], "topic", language="zh")
    synth_prompt = client.messages.create.call_args.kwargs["messages"][0]["content"]

    client.messages.create.return_value = _response("<!DOCTYPE html><html></html>")
    analysis = AnalysisResult(summary="s", key_points=["k"])
    await summarizer.render_document(analysis, "modern", [], topic="topic", language="zh")
    render_prompt_text = client.messages.create.call_args.kwargs["messages"][0]["content"]

    assert "Chinese" in synth_prompt
    assert "Chinese" in render_prompt_text

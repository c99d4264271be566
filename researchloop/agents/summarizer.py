"""Model-backed analysis of search results.

Every operation makes one completion call and then parses the reply against a
strict schema. Parsing yields either ``Parsed`` or ``Fallback``; callers only
ever see the value, so malformed or missing model output degrades the report
instead of failing the job.
"""

from __future__ import annotations

import html
import json
import re
import time
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Generic, Sequence, TypeVar, Union

from loguru import logger
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from researchloop.llm_client import client as llm_client, get_model
from researchloop.config import settings
from researchloop.models.research import (
    AnalysisResult,
    Category,
    RoundAnalysis,
    ScreenshotRef,
    SearchResult,
    SourceRef,
)
from researchloop.services import logger as log_service
from researchloop.services.prompt_store import catalog, render_prompt

T = TypeVar("T")

DEFAULT_CONFIDENCE = 0.7
FALLBACK_CONFIDENCE = 0.1
FALLBACK_QUERY_QUALIFIER = "detailed analysis"
FALLBACK_FINDING = (
    "The results of this round could not be analyzed automatically; "
    "the topic needs more detail."
)
RESULT_CONTENT_PREVIEW = 1000

LANGUAGE_NAMES = {"en": "English", "zh": "Chinese", "auto": "the language of the topic"}


def language_name(code: str) -> str:
    return LANGUAGE_NAMES.get(code, LANGUAGE_NAMES["en"])


_FENCE_RE = re.compile(r"```(?:html|json)?\s*\n?|\n?```", re.IGNORECASE)


class ModelError(RuntimeError):
    """The completion call failed or returned nothing usable."""


@dataclass(frozen=True)
class Parsed(Generic[T]):
    value: T


@dataclass(frozen=True)
class Fallback(Generic[T]):
    value: T
    reason: str


Outcome = Union[Parsed[T], Fallback[T]]


def _clamp_unit(value: float) -> float:
    return min(max(float(value), 0.0), 1.0)


class RoundAnalysisPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    key_findings: str = Field(
        min_length=1, validation_alias=AliasChoices("key_findings", "keyFindings")
    )
    next_query: str | None = Field(
        default=None, validation_alias=AliasChoices("next_query", "nextQuery")
    )

    @field_validator("next_query")
    @classmethod
    def _blank_query_is_none(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        return value.strip()


class CategoryPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str
    points: list[str] = Field(default_factory=list)


class SourcePayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    title: str = ""
    url: str
    reliability: float = DEFAULT_CONFIDENCE

    @field_validator("reliability")
    @classmethod
    def _clamp(cls, value: float) -> float:
        return _clamp_unit(value)


class AnalysisPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    summary: str = Field(min_length=1)
    key_points: list[str] = Field(validation_alias=AliasChoices("key_points", "keyPoints"))
    categories: list[CategoryPayload] = Field(default_factory=list)
    sources: list[SourcePayload] = Field(default_factory=list)
    confidence: float | None = None

    @field_validator("confidence")
    @classmethod
    def _clamp(cls, value: float | None) -> float | None:
        if value is None:
            return None
        return _clamp_unit(value)

    def to_analysis(self) -> AnalysisResult:
        confidence = self.confidence if self.confidence else DEFAULT_CONFIDENCE
        return AnalysisResult(
            summary=self.summary,
            key_points=list(self.key_points),
            categories=[Category(name=c.name, points=list(c.points)) for c in self.categories],
            sources=[
                SourceRef(title=s.title, url=s.url, reliability=s.reliability)
                for s in self.sources
            ],
            confidence=confidence,
        )


def strip_fences(text: str) -> str:
    return _FENCE_RE.sub("", text).strip()


def extract_json_object(raw_text: str) -> dict[str, Any]:
    text = strip_fences(raw_text)
    start = text.find("{")
    end = text.rfind("}")
    if start < 0 or end <= start:
        raise json.JSONDecodeError("object not found", text, 0)
    parsed = json.loads(text[start : end + 1])
    if not isinstance(parsed, dict):
        raise json.JSONDecodeError("not an object", text, 0)
    return parsed


def extract_response_text(response: Any) -> str:
    blocks = getattr(response, "content", None) or []
    parts: list[str] = []
    for block in blocks:
        btype = getattr(block, "type", None)
        btext = getattr(block, "text", None)
        if btype in (None, "text") and isinstance(btext, str) and btext.strip():
            parts.append(btext)
    return "\n".join(parts).strip()


def fallback_round_analysis(topic: str) -> RoundAnalysis:
    return RoundAnalysis(
        key_findings=FALLBACK_FINDING,
        next_query=f"{topic} {FALLBACK_QUERY_QUALIFIER}",
    )


def fallback_analysis(reason: str = "") -> AnalysisResult:
    summary = "The analysis could not be generated from the collected results."
    if reason:
        summary = f"{summary} ({reason})"
    return AnalysisResult(
        summary=summary,
        key_points=["No key information could be extracted."],
        categories=[],
        sources=[],
        confidence=FALLBACK_CONFIDENCE,
        is_fallback=True,
    )


def parse_round_analysis(text: str, topic: str) -> Outcome[RoundAnalysis]:
    try:
        payload = RoundAnalysisPayload.model_validate(extract_json_object(text))
    except (json.JSONDecodeError, ValidationError) as exc:
        return Fallback(fallback_round_analysis(topic), reason=f"unparseable round analysis: {exc}")
    return Parsed(RoundAnalysis(key_findings=payload.key_findings, next_query=payload.next_query))


def parse_analysis(text: str) -> Outcome[AnalysisResult]:
    try:
        payload = AnalysisPayload.model_validate(extract_json_object(text))
    except (json.JSONDecodeError, ValidationError) as exc:
        return Fallback(fallback_analysis(), reason=f"unparseable analysis: {exc}")
    return Parsed(payload.to_analysis())


_DOCUMENT_ROOT_RE = re.compile(r"<!doctype html|<html[\s>]", re.IGNORECASE)


def ensure_document_root(text: str, title: str = "Research report") -> str:
    """Strip code fences and wrap bare fragments in an HTML shell."""
    cleaned = strip_fences(text)
    root = _DOCUMENT_ROOT_RE.search(cleaned)
    if root is not None:
        # Drop any prose the model put around the document
        document = cleaned[root.start() :]
        end = document.lower().rfind("</html>")
        return document[: end + len("</html>")] if end >= 0 else document
    return (
        "<!DOCTYPE html>\n<html>\n<head>\n<meta charset=\"utf-8\">\n"
        f"<title>{html.escape(title)}</title>\n</head>\n<body>\n{cleaned}\n</body>\n</html>"
    )


def format_results_for_prompt(results: Sequence[SearchResult]) -> str:
    if not results:
        return "(no results)"
    blocks = []
    for index, result in enumerate(results, start=1):
        lines = [
            f"Source {index}: {result.source.value}",
            f"Title: {result.title}",
            f"URL: {result.url}",
            f"Snippet: {result.snippet}",
        ]
        if result.content:
            lines.append(f"Content: {result.content[:RESULT_CONTENT_PREVIEW]}...")
        lines.append("---")
        blocks.append("\n".join(lines))
    return "\n".join(blocks)


def format_screenshots_for_prompt(screenshots: Sequence[ScreenshotRef]) -> str:
    if not screenshots:
        return ""
    lines = ["", "Screenshots:"]
    for index, shot in enumerate(screenshots, start=1):
        lines.extend(
            [
                f"Screenshot {index}:",
                f"- Title: {shot.title or shot.source_url}",
                f"- Page URL: {shot.source_url}",
                f"- Image URL: {shot.image_locator}",
                f"- Thumbnail URL: {shot.thumbnail_locator}",
                f"- Size: {shot.width}x{shot.height}",
            ]
        )
    lines.append("")
    return "\n".join(lines)


_LOCAL_ACCENTS = {
    "modern": ("#4f46e5", "linear-gradient(135deg,#eef2ff,#fdf2f8)", "system-ui, sans-serif"),
    "classic": ("#7c2d12", "#fdfbf7", "Georgia, serif"),
    "minimal": ("#111827", "#ffffff", "Helvetica, Arial, sans-serif"),
    "academic": ("#1e3a8a", "#ffffff", "'Times New Roman', serif"),
    "presentation": ("#be123c", "#fff1f2", "system-ui, sans-serif"),
}


def render_local_document(
    analysis: AnalysisResult,
    template_name: str,
    screenshots: Sequence[ScreenshotRef],
    topic: str = "",
) -> str:
    """Self-contained report built without the model."""
    accent, background, font = _LOCAL_ACCENTS.get(template_name, _LOCAL_ACCENTS["modern"])
    esc = html.escape
    title = topic or "Research report"
    parts = [
        "<!DOCTYPE html>",
        '<html lang="en">',
        "<head>",
        '<meta charset="utf-8">',
        '<meta name="viewport" content="width=device-width, initial-scale=1">',
        f"<title>{esc(title)}</title>",
        "<style>",
        f"body{{font-family:{font};background:{background};color:#1f2937;margin:0;padding:2rem;}}",
        "main{max-width:960px;margin:0 auto;}",
        f"h1,h2{{color:{accent};}}",
        "section{margin-bottom:2rem;}",
        ".shots{display:flex;flex-wrap:wrap;gap:1rem;}",
        ".shots figure{margin:0;max-width:300px;}",
        ".shots img{max-width:100%;border:1px solid #e5e7eb;}",
        "footer{color:#6b7280;font-size:.875rem;}",
        "</style>",
        "</head>",
        "<body>",
        "<main>",
        f"<h1>{esc(title)}</h1>",
        "<section>",
        "<h2>Summary</h2>",
        f"<p>{esc(analysis.summary)}</p>",
        f"<p>Confidence: {analysis.confidence:.0%}</p>",
        "</section>",
    ]
    if analysis.key_points:
        parts.append("<section><h2>Key points</h2><ul>")
        parts.extend(f"<li>{esc(point)}</li>" for point in analysis.key_points)
        parts.append("</ul></section>")
    for category in analysis.categories:
        parts.append(f"<section><h2>{esc(category.name)}</h2><ul>")
        parts.extend(f"<li>{esc(point)}</li>" for point in category.points)
        parts.append("</ul></section>")
    if screenshots:
        parts.append('<section><h2>Screenshots</h2><div class="shots">')
        for shot in screenshots:
            label = esc(shot.title or shot.source_url)
            parts.append(
                f'<figure><a href="{esc(shot.source_url)}">'
                f'<img src="{esc(shot.thumbnail_locator or shot.image_locator)}" alt="{label}">'
                f"</a><figcaption>{label}</figcaption></figure>"
            )
        parts.append("</div></section>")
    if analysis.sources:
        parts.append("<section><h2>Sources</h2><ol>")
        for source in analysis.sources:
            parts.append(
                f'<li><a href="{esc(source.url)}">{esc(source.title or source.url)}</a>'
                f" (reliability {source.reliability:.0%})</li>"
            )
        parts.append("</ol></section>")
    generated = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M UTC")
    parts.extend([f"<footer>Generated {generated}</footer>", "</main>", "</body>", "</html>"])
    return "\n".join(parts)


class Summarizer:
    def __init__(self, client: Any = None, model: str | None = None, max_tokens: int | None = None):
        self._client = client
        self.model = model or get_model()
        self.max_tokens = max_tokens or settings.llm_max_tokens

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = llm_client()
        return self._client

    async def complete(self, prompt: str, *, caller: str = "summarizer") -> str:
        """Single completion call. Raises ``ModelError`` on any failure."""
        t0 = time.monotonic()
        try:
            response = await self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=settings.llm_temperature,
                system=render_prompt("summarizer.system_prompt", today_iso=date.today().isoformat()),
                messages=[{"role": "user", "content": prompt}],
            )
        except Exception as exc:
            log_service.log_llm_call(
                model=self.model,
                caller=caller,
                duration_ms=int((time.monotonic() - t0) * 1000),
                status="error",
                error=str(exc),
            )
            raise ModelError(f"{caller} completion failed: {exc}") from exc

        usage = getattr(response, "usage", None)
        log_service.log_llm_call(
            model=self.model,
            caller=caller,
            input_tokens=getattr(usage, "input_tokens", 0) or 0,
            output_tokens=getattr(usage, "output_tokens", 0) or 0,
            duration_ms=int((time.monotonic() - t0) * 1000),
        )
        text = extract_response_text(response)
        if not text:
            raise ModelError(f"{caller} completion returned no text")
        return text

    async def analyze_round_results(
        self,
        results: Sequence[SearchResult],
        topic: str,
        round_number: int,
        *,
        language: str = "en",
    ) -> RoundAnalysis:
        if not results:
            logger.warning(f"Round {round_number} for '{topic}' has no results to analyze")
            return fallback_round_analysis(topic)

        prompt = render_prompt(
            "summarizer.analyze_round",
            topic=topic,
            round_number=round_number,
            results=format_results_for_prompt(results),
            language_name=language_name(language),
        )
        try:
            text = await self.complete(prompt, caller="summarizer.analyze_round")
        except ModelError as exc:
            logger.warning(f"Round {round_number} analysis unavailable: {exc}")
            return fallback_round_analysis(topic)

        outcome = parse_round_analysis(text, topic)
        if isinstance(outcome, Fallback):
            logger.warning(f"Round {round_number} analysis fell back: {outcome.reason}")
        return outcome.value

    async def synthesize(
        self, all_results: Sequence[SearchResult], topic: str, *, language: str = "en"
    ) -> AnalysisResult:
        prompt = render_prompt(
            "summarizer.synthesize",
            topic=topic,
            results=format_results_for_prompt(all_results),
            language_name=language_name(language),
        )
        try:
            text = await self.complete(prompt, caller="summarizer.synthesize")
        except ModelError as exc:
            logger.warning(f"Synthesis unavailable for '{topic}': {exc}")
            return fallback_analysis("model unavailable")

        outcome = parse_analysis(text)
        if isinstance(outcome, Fallback):
            logger.warning(f"Synthesis fell back for '{topic}': {outcome.reason}")
        return outcome.value

    async def render_document(
        self,
        analysis: AnalysisResult,
        template_name: str,
        screenshots: Sequence[ScreenshotRef],
        *,
        topic: str = "",
        language: str = "en",
    ) -> str:
        prompt = render_prompt(
            "summarizer.render_document",
            topic=topic,
            language_name=language_name(language),
            style=catalog.template_style(template_name),
            analysis_json=json.dumps(analysis.to_dict(), ensure_ascii=False, indent=2),
            screenshots=format_screenshots_for_prompt(screenshots),
            generated_at=datetime.now(timezone.utc).isoformat(timespec="seconds"),
        )
        try:
            text = await self.complete(prompt, caller="summarizer.render_document")
        except ModelError as exc:
            logger.warning(f"Document rendering fell back to local template: {exc}")
            return render_local_document(analysis, template_name, screenshots, topic)
        return ensure_document_root(text, title=topic or "Research report")

    async def health_check(self) -> bool:
        try:
            text = await self.complete("Reply with the single word OK.", caller="summarizer.health")
        except ModelError:
            return False
        return "ok" in text.lower()

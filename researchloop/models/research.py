"""Domain records for multi-round research jobs."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_dt(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value:
        parsed = datetime.fromisoformat(value)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    return utc_now()


def _jsonable(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


class SearchSource(str, Enum):
    WEB = "web"
    WIKIPEDIA = "wikipedia"
    OTHER = "other"

    @classmethod
    def coerce(cls, value: Any) -> "SearchSource":
        try:
            return cls(value)
        except ValueError:
            return cls.OTHER


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class EmptyRoundPolicy(str, Enum):
    CONTINUE = "continue"
    STOP = "stop"


@dataclass(frozen=True)
class SearchResult:
    """A normalized search hit. Identity is the URL."""

    source: SearchSource
    title: str
    url: str
    snippet: str = ""
    content: str = ""
    relevance_score: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return _jsonable(asdict(self))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SearchResult":
        return cls(
            source=SearchSource.coerce(data.get("source", "other")),
            title=str(data.get("title", "")),
            url=str(data.get("url", "")),
            snippet=str(data.get("snippet", "")),
            content=str(data.get("content", "") or ""),
            relevance_score=float(data.get("relevance_score", 0.0) or 0.0),
        )


@dataclass(frozen=True)
class ScreenshotRef:
    source_url: str
    image_locator: str
    thumbnail_locator: str
    width: int
    height: int
    byte_size: int
    captured_at: datetime = field(default_factory=utc_now)
    title: str = ""
    source_domain: str = ""

    def to_dict(self) -> dict[str, Any]:
        return _jsonable(asdict(self))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ScreenshotRef":
        return cls(
            source_url=str(data.get("source_url", "")),
            image_locator=str(data.get("image_locator", "")),
            thumbnail_locator=str(data.get("thumbnail_locator", "")),
            width=int(data.get("width", 0) or 0),
            height=int(data.get("height", 0) or 0),
            byte_size=int(data.get("byte_size", 0) or 0),
            captured_at=_parse_dt(data.get("captured_at")),
            title=str(data.get("title", "")),
            source_domain=str(data.get("source_domain", "")),
        )


@dataclass(frozen=True)
class SearchRound:
    """One completed search round. Never mutated once built."""

    round_number: int
    query: str
    results: list[SearchResult] = field(default_factory=list)
    screenshots: list[ScreenshotRef] = field(default_factory=list)
    key_findings: str = ""
    next_query: str | None = None
    started_at: datetime = field(default_factory=utc_now)
    processing_time_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "round_number": self.round_number,
            "query": self.query,
            "results": [r.to_dict() for r in self.results],
            "screenshots": [s.to_dict() for s in self.screenshots],
            "key_findings": self.key_findings,
            "next_query": self.next_query,
            "started_at": self.started_at.isoformat(),
            "processing_time_ms": self.processing_time_ms,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SearchRound":
        return cls(
            round_number=int(data.get("round_number", 1)),
            query=str(data.get("query", "")),
            results=[SearchResult.from_dict(r) for r in data.get("results", [])],
            screenshots=[ScreenshotRef.from_dict(s) for s in data.get("screenshots", [])],
            key_findings=str(data.get("key_findings", "")),
            next_query=data.get("next_query"),
            started_at=_parse_dt(data.get("started_at")),
            processing_time_ms=int(data.get("processing_time_ms", 0) or 0),
        )


@dataclass
class Category:
    name: str
    points: list[str] = field(default_factory=list)


@dataclass
class SourceRef:
    title: str
    url: str
    reliability: float = 0.7


@dataclass
class AnalysisResult:
    summary: str
    key_points: list[str] = field(default_factory=list)
    categories: list[Category] = field(default_factory=list)
    sources: list[SourceRef] = field(default_factory=list)
    confidence: float = 0.1
    is_fallback: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AnalysisResult":
        return cls(
            summary=str(data.get("summary", "")),
            key_points=[str(p) for p in data.get("key_points", [])],
            categories=[
                Category(name=str(c.get("name", "")), points=[str(p) for p in c.get("points", [])])
                for c in data.get("categories", [])
            ],
            sources=[
                SourceRef(
                    title=str(s.get("title", "")),
                    url=str(s.get("url", "")),
                    reliability=float(s.get("reliability", 0.7)),
                )
                for s in data.get("sources", [])
            ],
            confidence=float(data.get("confidence", 0.1)),
            is_fallback=bool(data.get("is_fallback", False)),
        )


@dataclass(frozen=True)
class RoundAnalysis:
    key_findings: str
    next_query: str | None


@dataclass
class JobOptions:
    max_rounds: int = 3
    max_results_per_round: int = 8
    include_screenshots: bool = True
    generate_markdown: bool = True
    enhance_content: bool = True
    language: str = "en"
    template: str = "modern"
    empty_round_policy: EmptyRoundPolicy = EmptyRoundPolicy.CONTINUE

    def to_dict(self) -> dict[str, Any]:
        return _jsonable(asdict(self))

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "JobOptions":
        data = data or {}
        defaults = cls()
        return cls(
            max_rounds=int(data.get("max_rounds", defaults.max_rounds)),
            max_results_per_round=int(
                data.get("max_results_per_round", defaults.max_results_per_round)
            ),
            include_screenshots=bool(data.get("include_screenshots", defaults.include_screenshots)),
            generate_markdown=bool(data.get("generate_markdown", defaults.generate_markdown)),
            enhance_content=bool(data.get("enhance_content", defaults.enhance_content)),
            language=str(data.get("language", defaults.language)),
            template=str(data.get("template", defaults.template)),
            empty_round_policy=EmptyRoundPolicy(
                data.get("empty_round_policy", defaults.empty_round_policy)
            ),
        )


@dataclass
class JobError:
    message: str
    code: str = "SEARCH_FAILED"


@dataclass
class Job:
    """Aggregate root for one research job."""

    topic: str
    options: JobOptions = field(default_factory=JobOptions)
    id: str = field(default_factory=lambda: str(uuid4()))
    status: JobStatus = JobStatus.PENDING
    rounds: list[SearchRound] = field(default_factory=list)
    screenshots: list[ScreenshotRef] = field(default_factory=list)
    analysis: AnalysisResult | None = None
    rendered_document: str | None = None
    markdown_document: str | None = None
    markdown_path: str | None = None
    error: JobError | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "topic": self.topic,
            "status": self.status.value,
            "options": self.options.to_dict(),
            "rounds": [r.to_dict() for r in self.rounds],
            "screenshots": [s.to_dict() for s in self.screenshots],
            "analysis": self.analysis.to_dict() if self.analysis else None,
            "rendered_document": self.rendered_document,
            "markdown_document": self.markdown_document,
            "markdown_path": self.markdown_path,
            "error": asdict(self.error) if self.error else None,
            "metadata": _jsonable(self.metadata),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Job":
        error = data.get("error")
        analysis = data.get("analysis")
        return cls(
            id=str(data["id"]),
            topic=str(data.get("topic", "")),
            status=JobStatus(data.get("status", JobStatus.PENDING.value)),
            options=JobOptions.from_dict(data.get("options")),
            rounds=[SearchRound.from_dict(r) for r in data.get("rounds", [])],
            screenshots=[ScreenshotRef.from_dict(s) for s in data.get("screenshots", [])],
            analysis=AnalysisResult.from_dict(analysis) if analysis else None,
            rendered_document=data.get("rendered_document"),
            markdown_document=data.get("markdown_document"),
            markdown_path=data.get("markdown_path"),
            error=JobError(message=str(error.get("message", "")), code=str(error.get("code", "")))
            if error
            else None,
            metadata=dict(data.get("metadata") or {}),
            created_at=_parse_dt(data.get("created_at")),
            updated_at=_parse_dt(data.get("updated_at")),
        )


@dataclass
class JobResult:
    """What a finished run hands back to its caller."""

    job_id: str
    status: JobStatus
    rounds: list[SearchRound] = field(default_factory=list)
    screenshots: list[ScreenshotRef] = field(default_factory=list)
    analysis: AnalysisResult | None = None
    rendered_document: str | None = None
    markdown_document: str | None = None
    markdown_path: str | None = None
    error: JobError | None = None
    processing_time_ms: int = 0

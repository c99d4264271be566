from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from researchloop.config import settings
from researchloop.models.research import EmptyRoundPolicy, JobOptions

TemplateName = Literal["modern", "classic", "minimal", "academic", "presentation"]


# --- Requests ---


class ResearchOptions(BaseModel):
    max_rounds: int = Field(default=settings.default_max_rounds, ge=1, le=10)
    max_results_per_round: int = Field(
        default=settings.default_max_results_per_round, ge=1, le=50
    )
    include_screenshots: bool = True
    generate_markdown: bool = True
    enhance_content: bool = True
    language: Literal["zh", "en", "auto"] = settings.default_language  # type: ignore[assignment]
    template: TemplateName = settings.default_template  # type: ignore[assignment]
    empty_round_policy: EmptyRoundPolicy = EmptyRoundPolicy(settings.empty_round_policy)

    def to_job_options(self) -> JobOptions:
        return JobOptions(
            max_rounds=self.max_rounds,
            max_results_per_round=self.max_results_per_round,
            include_screenshots=self.include_screenshots,
            generate_markdown=self.generate_markdown,
            enhance_content=self.enhance_content,
            language=self.language,
            template=self.template,
            empty_round_policy=self.empty_round_policy,
        )


class ResearchRequest(BaseModel):
    topic: str = Field(min_length=2, max_length=500)
    options: ResearchOptions = Field(default_factory=ResearchOptions)


# --- Responses ---


class ResearchStartResponse(BaseModel):
    job_id: str
    status: Literal["pending"] = "pending"


class JobErrorResponse(BaseModel):
    message: str
    code: str


class JobStatusResponse(BaseModel):
    job_id: str
    status: str
    rounds_completed: int
    total_rounds_budget: int
    latest_round: dict[str, Any] | None = None
    error: JobErrorResponse | None = None
    updated_at: datetime


class NotReadyResponse(BaseModel):
    job_id: str
    status: str
    ready: Literal[False] = False
    message: str = "Report is not ready yet"


class JobSummary(BaseModel):
    job_id: str
    topic: str
    status: str
    rounds_completed: int
    created_at: datetime
    updated_at: datetime


class JobListResponse(BaseModel):
    jobs: list[JobSummary]
    page: int
    limit: int
    total: int
    pages: int

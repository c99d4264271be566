from __future__ import annotations

from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse

from researchloop.api.deps import get_job_service
from researchloop.models.research import JobStatus
from researchloop.models.schemas import (
    JobListResponse,
    JobStatusResponse,
    NotReadyResponse,
    ResearchRequest,
    ResearchStartResponse,
)
from researchloop.services import logger as log_service
from researchloop.services.job_service import JobService
from researchloop.services.job_store import JobNotFoundError, JobStateError

router = APIRouter(prefix="/api/research", tags=["research"])


@router.post("", response_model=ResearchStartResponse, status_code=202)
async def start_research(
    request: ResearchRequest, service: JobService = Depends(get_job_service)
):
    """Queue a research job and return its id for polling."""
    try:
        started = await service.submit(request.topic, request.options.to_job_options())
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    log_service.log_event(
        event_type="research_submitted",
        message="Research job submitted",
        job_id=started.job_id,
        topic=request.topic[:100],
        max_rounds=request.options.max_rounds,
    )
    return started


@router.get("", response_model=JobListResponse)
async def list_research(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    status: Optional[JobStatus] = None,
    service: JobService = Depends(get_job_service),
):
    return await service.list_jobs(page=page, limit=limit, status=status)


@router.get("/{job_id}/status", response_model=JobStatusResponse)
async def research_status(job_id: str, service: JobService = Depends(get_job_service)):
    try:
        return await service.status(job_id)
    except JobNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Research job not found") from exc


@router.get("/{job_id}/result")
async def research_result(
    job_id: str,
    format: Literal["html", "json", "markdown"] = "html",
    service: JobService = Depends(get_job_service),
):
    """The finished report, or 202 with a not-ready body while the job runs."""
    try:
        document = await service.result(job_id, format)
    except JobNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Research job not found") from exc

    if isinstance(document, NotReadyResponse):
        code = 409 if document.status == JobStatus.FAILED.value else 202
        return JSONResponse(status_code=code, content=document.model_dump())
    if document.format == "html":
        return HTMLResponse(content=document.content)
    if document.format == "markdown":
        return PlainTextResponse(content=document.content, media_type=document.media_type)
    return JSONResponse(content=document.content)


@router.delete("/{job_id}")
async def delete_research(job_id: str, service: JobService = Depends(get_job_service)):
    try:
        await service.delete(job_id)
    except JobNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Research job not found") from exc
    except JobStateError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return {"job_id": job_id, "deleted": True}

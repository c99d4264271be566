from __future__ import annotations

import asyncio
import time

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from loguru import logger

from researchloop.api.deps import get_job_service
from researchloop.services.job_service import JobService

router = APIRouter(prefix="/api/health", tags=["health"])

_started = time.monotonic()


@router.get("")
async def health(service: JobService = Depends(get_job_service)):
    return {
        "status": "ok",
        "service": "researchloop",
        "uptime_seconds": int(time.monotonic() - _started),
        "active_jobs": service.runner.active,
    }


@router.get("/search")
async def search_health(service: JobService = Depends(get_job_service)):
    """Probe every configured search provider."""
    providers = service.services.providers

    async def probe(provider) -> bool:
        try:
            return await provider.health_check()
        except Exception as exc:
            logger.warning(f"Health check for {provider.name} raised: {exc}")
            return False

    outcomes = await asyncio.gather(*(probe(p) for p in providers))
    checks = {p.name: "healthy" if ok else "unhealthy" for p, ok in zip(providers, outcomes)}
    healthy = bool(checks) and all(v == "healthy" for v in checks.values())
    return JSONResponse(
        status_code=200 if healthy else 503,
        content={"status": "healthy" if healthy else "unhealthy", "providers": checks},
    )


@router.get("/ai")
async def ai_health(service: JobService = Depends(get_job_service)):
    summarizer = service.services.summarizer
    ok = await summarizer.health_check()
    return JSONResponse(
        status_code=200 if ok else 503,
        content={"status": "healthy" if ok else "unhealthy", "model": summarizer.model},
    )


@router.get("/stats")
async def storage_stats(service: JobService = Depends(get_job_service)):
    return await asyncio.to_thread(service.services.artifact_store.stats)

from __future__ import annotations

import asyncio
import re
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from researchloop.api.deps import get_job_service
from researchloop.services import logger as log_service
from researchloop.services.artifact_store import THUMBNAIL_SUFFIX, StorageError
from researchloop.services.job_service import JobService

router = APIRouter(prefix="/api/screenshots", tags=["screenshots"])

# <hint>-<YYYYmmdd>-<HHMMSSffffff>.png, thumbnails insert the suffix after <hint>
_IMAGE_NAME_RE = re.compile(r"^(?P<hint>.+)-(?P<stamp>\d{8}-\d{12}\.png)$")


def _thumbnail_name(filename: str) -> Optional[str]:
    match = _IMAGE_NAME_RE.match(filename)
    if match is None or match["hint"].endswith(THUMBNAIL_SUFFIX):
        return None
    return f"{match['hint']}{THUMBNAIL_SUFFIX}-{match['stamp']}"


@router.delete("/{year}/{month}/{filename}")
async def delete_screenshot(
    year: str, month: str, filename: str, service: JobService = Depends(get_job_service)
):
    store = service.services.artifact_store
    image = f"{year}/{month}/{filename}"
    thumb_name = _thumbnail_name(filename)
    thumbnail = f"{year}/{month}/{thumb_name}" if thumb_name else None
    try:
        await asyncio.to_thread(store.delete, image, thumbnail)
    except StorageError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"deleted": image}


@router.post("/cleanup")
async def cleanup_screenshots(
    days_old: int = Query(default=30, ge=0),
    service: JobService = Depends(get_job_service),
):
    """Delete screenshots older than ``days_old`` days."""
    outcome = await asyncio.to_thread(service.services.artifact_store.cleanup, days_old)
    log_service.log_event(
        event_type="screenshots_cleanup",
        message="Screenshot cleanup finished",
        deleted=len(outcome["deleted"]),
        errors=len(outcome["errors"]),
    )
    return outcome

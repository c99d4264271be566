from __future__ import annotations

from fastapi import Request

from researchloop.services.job_service import JobService


def get_job_service(request: Request) -> JobService:
    """The service instance built during app startup."""
    return request.app.state.job_service

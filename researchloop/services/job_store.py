"""Durable job records: PostgreSQL via asyncpg, or in-process memory."""

from __future__ import annotations

import asyncio
import json
from dataclasses import fields
from typing import Any, Protocol

import asyncpg
from loguru import logger

from researchloop.config import settings
from researchloop.models.research import Job, JobStatus, utc_now

_JOB_FIELDS = {f.name for f in fields(Job)} - {"id", "created_at"}


class JobNotFoundError(KeyError):
    def __init__(self, job_id: str):
        super().__init__(job_id)
        self.job_id = job_id

    def __str__(self) -> str:
        return f"Job not found: {self.job_id}"


class JobStateError(ValueError):
    """Change rejected because of the job's current state."""


class JobStore(Protocol):
    async def create(self, job: Job) -> Job: ...

    async def update(self, job_id: str, **partial: Any) -> Job: ...

    async def get(self, job_id: str) -> Job: ...

    async def list(
        self, *, status: JobStatus | None = None, offset: int = 0, limit: int = 10
    ) -> tuple[list[Job], int]: ...

    async def delete(self, job_id: str) -> Job: ...

    async def close(self) -> None: ...


def ensure_deletable(job: Job) -> None:
    if not job.status.is_terminal:
        raise JobStateError(f"Job {job.id} is still {job.status.value}")


def apply_update(job: Job, partial: dict[str, Any]) -> Job:
    """Apply a partial update in place and bump ``updated_at``."""
    unknown = set(partial) - _JOB_FIELDS
    if unknown:
        raise ValueError(f"Unknown job fields: {', '.join(sorted(unknown))}")
    if job.status.is_terminal:
        raise JobStateError(f"Job {job.id} is already {job.status.value}")
    for name, value in partial.items():
        if name == "status":
            value = JobStatus(value)
        setattr(job, name, value)
    job.updated_at = utc_now()
    return job


class InMemoryJobStore:
    """Keeps serialized snapshots so callers never share mutable state."""

    def __init__(self) -> None:
        self._records: dict[str, dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    async def create(self, job: Job) -> Job:
        async with self._lock:
            self._records[job.id] = job.to_dict()
        return Job.from_dict(self._records[job.id])

    async def update(self, job_id: str, **partial: Any) -> Job:
        async with self._lock:
            record = self._records.get(job_id)
            if record is None:
                raise JobNotFoundError(job_id)
            job = apply_update(Job.from_dict(record), partial)
            self._records[job_id] = job.to_dict()
        return Job.from_dict(self._records[job_id])

    async def get(self, job_id: str) -> Job:
        record = self._records.get(job_id)
        if record is None:
            raise JobNotFoundError(job_id)
        return Job.from_dict(record)

    async def list(
        self, *, status: JobStatus | None = None, offset: int = 0, limit: int = 10
    ) -> tuple[list[Job], int]:
        records = [
            r for r in self._records.values() if status is None or r["status"] == status.value
        ]
        records.sort(key=lambda r: r["created_at"], reverse=True)
        page = records[offset : offset + limit]
        return [Job.from_dict(r) for r in page], len(records)

    async def delete(self, job_id: str) -> Job:
        async with self._lock:
            record = self._records.get(job_id)
            if record is None:
                raise JobNotFoundError(job_id)
            job = Job.from_dict(record)
            ensure_deletable(job)
            del self._records[job_id]
        return job

    async def close(self) -> None:
        return None


def _coerce_payload(value: Any) -> dict[str, Any]:
    if isinstance(value, dict):
        return value
    if isinstance(value, str):
        parsed = json.loads(value)
        if isinstance(parsed, dict):
            return parsed
    raise ValueError("Stored job payload is not a JSON object")


class PostgresJobStore:
    """One row per job; the full record lives in a JSONB column."""

    CREATE_TABLE = """
        CREATE TABLE IF NOT EXISTS research_jobs (
            id TEXT PRIMARY KEY,
            topic TEXT NOT NULL,
            status TEXT NOT NULL,
            payload JSONB NOT NULL,
            created_at TIMESTAMPTZ NOT NULL,
            updated_at TIMESTAMPTZ NOT NULL
        )
    """

    def __init__(self, database_url: str | None = None, *, min_size: int = 1, max_size: int = 10):
        self.database_url = database_url or settings.database_url
        if not self.database_url:
            raise RuntimeError("Database not configured. Set DATABASE_URL in .env")
        self._min_size = min_size
        self._max_size = max_size
        self._pool: asyncpg.Pool | None = None

    async def _get_pool(self) -> asyncpg.Pool:
        if self._pool is None:
            self._pool = await asyncpg.create_pool(
                self.database_url, min_size=self._min_size, max_size=self._max_size
            )
            async with self._pool.acquire() as conn:
                await conn.execute(self.CREATE_TABLE)
        return self._pool

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def create(self, job: Job) -> Job:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO research_jobs (id, topic, status, payload, created_at, updated_at)
                VALUES ($1, $2, $3, $4::jsonb, $5, $6)
                """,
                job.id,
                job.topic,
                job.status.value,
                json.dumps(job.to_dict()),
                job.created_at,
                job.updated_at,
            )
        return job

    async def update(self, job_id: str, **partial: Any) -> Job:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(
                    "SELECT payload FROM research_jobs WHERE id = $1 FOR UPDATE", job_id
                )
                if row is None:
                    raise JobNotFoundError(job_id)
                job = apply_update(Job.from_dict(_coerce_payload(row["payload"])), partial)
                await conn.execute(
                    """
                    UPDATE research_jobs
                    SET status = $2, payload = $3::jsonb, updated_at = $4
                    WHERE id = $1
                    """,
                    job_id,
                    job.status.value,
                    json.dumps(job.to_dict()),
                    job.updated_at,
                )
        return job

    async def get(self, job_id: str) -> Job:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow("SELECT payload FROM research_jobs WHERE id = $1", job_id)
        if row is None:
            raise JobNotFoundError(job_id)
        return Job.from_dict(_coerce_payload(row["payload"]))

    async def list(
        self, *, status: JobStatus | None = None, offset: int = 0, limit: int = 10
    ) -> tuple[list[Job], int]:
        pool = await self._get_pool()
        status_value = status.value if status else None
        async with pool.acquire() as conn:
            total = await conn.fetchval(
                "SELECT count(*) FROM research_jobs WHERE ($1::text IS NULL OR status = $1)",
                status_value,
            )
            rows = await conn.fetch(
                """
                SELECT payload FROM research_jobs
                WHERE ($1::text IS NULL OR status = $1)
                ORDER BY created_at DESC
                OFFSET $2 LIMIT $3
                """,
                status_value,
                offset,
                limit,
            )
        return [Job.from_dict(_coerce_payload(r["payload"])) for r in rows], int(total or 0)

    async def delete(self, job_id: str) -> Job:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(
                    "SELECT payload FROM research_jobs WHERE id = $1 FOR UPDATE", job_id
                )
                if row is None:
                    raise JobNotFoundError(job_id)
                job = Job.from_dict(_coerce_payload(row["payload"]))
                ensure_deletable(job)
                await conn.execute("DELETE FROM research_jobs WHERE id = $1", job_id)
        return job


_store: JobStore | None = None


def get_job_store() -> JobStore:
    """Shared store: PostgreSQL when DATABASE_URL is set, memory otherwise."""
    global _store
    if _store is None:
        if settings.database_url:
            _store = PostgresJobStore()
        else:
            logger.info("DATABASE_URL not set, keeping jobs in memory")
            _store = InMemoryJobStore()
    return _store


def reset_job_store() -> None:
    global _store
    _store = None

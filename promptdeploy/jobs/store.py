"""Job-state store.

Owns Job lifecycle transitions:
    QUEUED → RUNNING → COMPLETED | FAILED

A terminal job is read-only; any further mutation raises JobStateError.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable
from uuid import uuid4

from sqlmodel import select

from promptdeploy.database.models import Job
from promptdeploy.database.session import Database
from promptdeploy.errors import JobNotFoundError, JobStateError
from promptdeploy.schemas import JobStatus, utcnow


logger = logging.getLogger(__name__)


class JobStore:
    """Persists jobs through the async database layer."""

    def __init__(self, database: Database):
        self.database = database

    async def init(self) -> None:
        await self.database.init()

    async def close(self) -> None:
        await self.database.close()

    async def create(self, prompt: str) -> Job:
        """Create a QUEUED job for a prompt."""
        job = Job(job_id=str(uuid4()), prompt=prompt, status=JobStatus.QUEUED.value)
        async with self.database.session() as db:
            db.add(job)
            await db.flush()
            await db.refresh(job)
        logger.info(f"Created job {job.job_id}")
        return job

    async def get(self, job_id: str) -> Job | None:
        async with self.database.session() as db:
            result = await db.execute(select(Job).where(Job.job_id == job_id))
            return result.scalar_one_or_none()

    async def mark_running(self, job_id: str) -> Job:
        def start(job: Job) -> None:
            if job.job_status != JobStatus.QUEUED:
                raise JobStateError(f"Job {job_id} cannot start from {job.status}")
            job.status = JobStatus.RUNNING.value
            job.started_at = utcnow()

        return await self._update(job_id, start)

    async def set_environment(self, job_id: str, environment_id: str) -> Job:
        def attach(job: Job) -> None:
            job.environment_id = environment_id

        return await self._update(job_id, attach)

    async def mark_completed(self, job_id: str, output: dict[str, Any]) -> Job:
        def complete(job: Job) -> None:
            job.status = JobStatus.COMPLETED.value
            job.output_json = json.dumps(output)
            job.ended_at = utcnow()

        return await self._update(job_id, complete)

    async def mark_failed(self, job_id: str, error: str) -> Job:
        def fail(job: Job) -> None:
            job.status = JobStatus.FAILED.value
            job.error_message = error
            job.ended_at = utcnow()

        return await self._update(job_id, fail)

    async def _update(self, job_id: str, mutate: Callable[[Job], None]) -> Job:
        """Apply a mutation to a non-terminal job in one transaction."""
        async with self.database.session() as db:
            result = await db.execute(select(Job).where(Job.job_id == job_id))
            job = result.scalar_one_or_none()
            if job is None:
                raise JobNotFoundError(job_id)
            if job.job_status.is_terminal:
                raise JobStateError(f"Job {job_id} is already {job.status}")
            mutate(job)
            db.add(job)
        return job

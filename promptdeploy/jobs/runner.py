"""In-process job runner.

Each submitted job runs as its own asyncio task, fully independent of other
jobs. The runner owns the job's published channel for its lifetime:
opened on submit, closed when the job ends, and dropped after the
retention window.
"""

from __future__ import annotations

import asyncio
import logging

from promptdeploy.agent.channel import PublishedChannel
from promptdeploy.agent.workflow import PipelineOrchestrator
from promptdeploy.config import Settings, get_settings
from promptdeploy.database.models import Job
from promptdeploy.jobs.store import JobStore
from promptdeploy.schemas import JobStatus


logger = logging.getLogger(__name__)


class JobRunner:
    """Submits jobs and drives them through the pipeline."""

    def __init__(
        self,
        store: JobStore,
        orchestrator: PipelineOrchestrator,
        settings: Settings | None = None,
    ):
        self.store = store
        self.orchestrator = orchestrator
        self.settings = settings or get_settings()
        self._channels: dict[str, PublishedChannel] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._evictions: dict[str, asyncio.TimerHandle] = {}

    def channel(self, job_id: str) -> PublishedChannel | None:
        """The job's published channel, if still retained."""
        return self._channels.get(job_id)

    async def submit(self, prompt: str) -> Job:
        """Create a QUEUED job and start it in the background."""
        job = await self.store.create(prompt)
        channel = PublishedChannel(job.job_id)
        self._channels[job.job_id] = channel

        task = asyncio.create_task(self._execute(job.job_id, prompt, channel), name=f"job-{job.job_id}")
        self._tasks[job.job_id] = task
        task.add_done_callback(lambda _: self._tasks.pop(job.job_id, None))
        return job

    async def wait(self, job_id: str) -> None:
        """Wait for a job's task to finish, if it is still running."""
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    async def _execute(self, job_id: str, prompt: str, channel: PublishedChannel) -> None:
        """Background task executing one job."""

        async def remember_environment(environment_id: str) -> None:
            await self.store.set_environment(job_id, environment_id)

        try:
            await self.store.mark_running(job_id)
            logger.info(f"Starting execution of job {job_id}")

            result = await self.orchestrator.run(
                job_id, prompt, channel, on_environment=remember_environment
            )
        except asyncio.CancelledError:
            logger.warning(f"Job {job_id} cancelled")
            await self.store.mark_failed(job_id, "Job cancelled")
            raise
        except Exception as e:
            logger.error(f"Error executing job {job_id}: {e}")
            await self.store.mark_failed(job_id, str(e) or type(e).__name__)
        else:
            await self.store.mark_completed(job_id, result.model_dump(mode="json", by_alias=True))
            logger.info(f"Completed execution of job {job_id}")
        finally:
            channel.close()
            self._schedule_eviction(job_id)

    def _schedule_eviction(self, job_id: str) -> None:
        loop = asyncio.get_running_loop()
        self._evictions[job_id] = loop.call_later(
            self.settings.channel_retention_seconds, self._evict, job_id
        )

    def _evict(self, job_id: str) -> None:
        self._channels.pop(job_id, None)
        self._evictions.pop(job_id, None)

    async def shutdown(self) -> None:
        """Cancel in-flight jobs and release timers."""
        pending = list(self._tasks.items())
        for _, task in pending:
            task.cancel()
        await asyncio.gather(*(task for _, task in pending), return_exceptions=True)

        # A task cancelled before its first step leaves the job QUEUED
        for job_id, task in pending:
            if task.cancelled():
                await self._abandon(job_id)

        for handle in self._evictions.values():
            handle.cancel()
        self._evictions.clear()

    async def _abandon(self, job_id: str) -> None:
        job = await self.store.get(job_id)
        if job is not None and job.job_status == JobStatus.QUEUED:
            logger.warning(f"Job {job_id} cancelled before it started")
            await self.store.mark_failed(job_id, "Job cancelled")
        channel = self._channels.get(job_id)
        if channel is not None:
            channel.close()

"""Translates stored job state plus the live channel into a client snapshot."""

from __future__ import annotations

import logging
from typing import Any

from promptdeploy.errors import JobNotFoundError
from promptdeploy.jobs.runner import JobRunner
from promptdeploy.jobs.store import JobStore
from promptdeploy.schemas import (
    FileRecord,
    JobSnapshot,
    JobStatus,
    ProgressRecord,
    TerminalLogEntry,
)


logger = logging.getLogger(__name__)


class StatusTranslator:
    """Builds JobSnapshots for polling clients."""

    def __init__(self, store: JobStore, runner: JobRunner):
        self.store = store
        self.runner = runner

    async def snapshot(self, job_id: str) -> JobSnapshot:
        """Get a consistent view of one job.

        Published fields come from the live channel while it is retained,
        and from the stored output once the channel has been dropped.

        Raises:
            JobNotFoundError: If no job has this id
        """
        job = await self.store.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)

        status = job.job_status
        output = job.output if status == JobStatus.COMPLETED else None
        error = (job.error_message or "Job failed") if status == JobStatus.FAILED else None

        channel = self.runner.channel(job_id)
        if channel is not None:
            published = channel.snapshot()
            return JobSnapshot(
                status=status,
                output=output,
                progress=published.progress,
                files=list(published.files),
                terminal_output=list(published.terminal_output),
                error=error,
            )

        return JobSnapshot(
            status=status,
            output=output,
            error=error,
            **_published_from_output(output),
        )


def _published_from_output(output: dict[str, Any] | None) -> dict[str, Any]:
    # Failed jobs keep no output, so their published state ends with the channel
    if not output:
        return {}
    progress = output.get("progress")
    return {
        "progress": ProgressRecord.model_validate(progress) if progress else None,
        "files": [FileRecord.model_validate(f) for f in output.get("files", [])],
        "terminal_output": [TerminalLogEntry.model_validate(t) for t in output.get("terminalOutput", [])],
    }

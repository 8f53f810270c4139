"""Client-side status polling.

The poller fetches a job snapshot at a fixed interval and folds it into a
local view:

- Files are replaced wholesale and filtered to created files.
- Terminal output is appended incrementally, de-duplicated by
  timestamp plus content, in arrival order.
- Progress is taken as-is, with distinct steps kept in a history.

Polling stops on a terminal status or silently once the time limit passes.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

import httpx

from promptdeploy.client.api import PromptDeployClient
from promptdeploy.config import Settings, get_settings
from promptdeploy.schemas import (
    FileOperation,
    FileRecord,
    JobSnapshot,
    JobStatus,
    ProgressRecord,
    TerminalLogEntry,
)


logger = logging.getLogger(__name__)

UpdateCallback = Callable[[JobSnapshot, list[TerminalLogEntry]], None]


def _entry_key(entry: TerminalLogEntry) -> str:
    return f"{entry.timestamp.isoformat()}{entry.content}"


@dataclass
class SnapshotAccumulator:
    """Merges successive snapshots into one client-side view."""

    files: list[FileRecord] = field(default_factory=list)
    terminal_output: list[TerminalLogEntry] = field(default_factory=list)
    progress: ProgressRecord | None = None
    progress_history: list[ProgressRecord] = field(default_factory=list)
    _seen: set[str] = field(default_factory=set, repr=False)

    def merge(self, snapshot: JobSnapshot) -> list[TerminalLogEntry]:
        """Fold a snapshot in and return the terminal entries it added."""
        self.files = [f for f in snapshot.files if f.operation == FileOperation.CREATED]

        added: list[TerminalLogEntry] = []
        for entry in snapshot.terminal_output:
            key = _entry_key(entry)
            if key in self._seen:
                continue
            self._seen.add(key)
            self.terminal_output.append(entry)
            added.append(entry)

        if snapshot.progress is not None:
            last = self.progress_history[-1] if self.progress_history else None
            if last is None or (last.step, last.label) != (snapshot.progress.step, snapshot.progress.label):
                self.progress_history.append(snapshot.progress)
            self.progress = snapshot.progress

        return added


@dataclass
class PollOutcome:
    """How a polling session ended."""
    job_id: str
    status: JobStatus | None
    output: dict[str, Any] | None = None
    error: str | None = None
    timed_out: bool = False
    view: SnapshotAccumulator = field(default_factory=SnapshotAccumulator)

    @property
    def app_url(self) -> str | None:
        return (self.output or {}).get("appUrl")


class StatusPoller:
    """Polls /api/status until a job finishes or the time limit passes."""

    def __init__(
        self,
        client: PromptDeployClient,
        interval: float | None = None,
        max_seconds: float | None = None,
        settings: Settings | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        settings = settings or get_settings()
        self.client = client
        self.interval = settings.poll_interval_seconds if interval is None else interval
        self.max_seconds = settings.poll_max_seconds if max_seconds is None else max_seconds
        self._sleep = sleep
        self._clock = clock

    async def poll(self, job_id: str, on_update: UpdateCallback | None = None) -> PollOutcome:
        """Poll a job to completion.

        Args:
            job_id: Job to watch
            on_update: Called with each snapshot and the terminal entries it added

        Returns:
            PollOutcome with the last seen status and accumulated view
        """
        view = SnapshotAccumulator()
        outcome = PollOutcome(job_id=job_id, status=None, view=view)
        started = self._clock()

        while True:
            try:
                snapshot = await self.client.status(job_id)
            except httpx.HTTPError as e:
                logger.warning(f"[{job_id}] Status poll failed: {e}")
            else:
                added = view.merge(snapshot)
                outcome.status = snapshot.status
                if on_update is not None:
                    on_update(snapshot, added)

                if snapshot.status == JobStatus.COMPLETED:
                    outcome.output = snapshot.output
                    return outcome
                if snapshot.status == JobStatus.FAILED:
                    outcome.error = snapshot.error or "Job failed"
                    return outcome

            if self._clock() - started >= self.max_seconds:
                logger.info(f"[{job_id}] Stopped polling after {self.max_seconds}s")
                outcome.timed_out = True
                return outcome

            await self._sleep(self.interval)

"""Job-scoped published state.

The orchestrator publishes progress, file records and terminal output here;
status readers take snapshots at any time. One writer, many readers:

- Every publish replaces the whole field with a fresh copy, so a reader
  always sees a fully formed value.
- Readers get copies and never block the writer for longer than a copy.
- There is no isolation across fields; a reader may observe a new file
  list before the matching progress update.

The channel is opened when a job is submitted and closed when the job
reaches a terminal state. Reads keep working after close; writes raise.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field

from promptdeploy.errors import ChannelClosedError
from promptdeploy.schemas import FileRecord, ProgressRecord, TerminalLogEntry


@dataclass(frozen=True)
class ChannelSnapshot:
    """Point-in-time copy of the published fields."""
    progress: ProgressRecord | None = None
    files: tuple[FileRecord, ...] = ()
    terminal_output: tuple[TerminalLogEntry, ...] = ()


@dataclass
class PublishedChannel:
    """Append-only published state for a single job."""

    job_id: str
    _progress: ProgressRecord | None = None
    _files: tuple[FileRecord, ...] = ()
    _terminal_output: tuple[TerminalLogEntry, ...] = ()
    _closed: bool = False
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @property
    def closed(self) -> bool:
        return self._closed

    def publish_progress(self, record: ProgressRecord) -> None:
        with self._lock:
            self._check_open()
            self._progress = record

    def publish_files(self, files: list[FileRecord]) -> None:
        with self._lock:
            self._check_open()
            self._files = self._grown(self._files, files, "files")

    def publish_terminal_output(self, entries: list[TerminalLogEntry]) -> None:
        with self._lock:
            self._check_open()
            self._terminal_output = self._grown(self._terminal_output, entries, "terminal output")

    def snapshot(self) -> ChannelSnapshot:
        with self._lock:
            return ChannelSnapshot(
                progress=self._progress,
                files=self._files,
                terminal_output=self._terminal_output,
            )

    def close(self) -> None:
        with self._lock:
            self._closed = True

    def _check_open(self) -> None:
        if self._closed:
            raise ChannelClosedError(f"Channel for job {self.job_id} is closed")

    @staticmethod
    def _grown(current: tuple, new: list, name: str) -> tuple:
        # Published lists only ever grow; existing entries keep their order.
        if len(new) < len(current) or tuple(new[: len(current)]) != current:
            raise ValueError(f"Published {name} must extend the previous list")
        return tuple(new)

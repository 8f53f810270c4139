"""Artifact tracking for a single job.

Records every file written into the environment and every terminal line
produced, in creation order, and republishes the full lists to the job's
channel after each append.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable

from promptdeploy.agent.channel import PublishedChannel
from promptdeploy.schemas import FileOperation, FileRecord, StreamType, TerminalLogEntry
from promptdeploy.tools.sanitizer import sanitize_output


logger = logging.getLogger(__name__)


class ArtifactTracker:
    """Append-only log of files and terminal output for one job."""

    def __init__(self, channel: PublishedChannel):
        self.channel = channel
        self._files: list[FileRecord] = []
        self._terminal_output: list[TerminalLogEntry] = []

    @property
    def files(self) -> list[FileRecord]:
        return list(self._files)

    @property
    def terminal_output(self) -> list[TerminalLogEntry]:
        return list(self._terminal_output)

    def record_file(self, path: str, content: str) -> FileRecord:
        """Append a file record and republish the full file list."""
        record = FileRecord(path=path, content=content, operation=FileOperation.CREATED)
        self._files.append(record)
        self.channel.publish_files(self._files)
        logger.debug(f"[{self.channel.job_id}] Recorded file {path} ({len(content)} chars)")
        return record

    def record_output(
        self,
        raw_chunk: Any,
        stream: StreamType = StreamType.STDOUT,
    ) -> TerminalLogEntry | None:
        """Sanitize a chunk and append it to the terminal log.

        Args:
            raw_chunk: Raw console output (str, bytes or anything printable)
            stream: Which console stream produced it

        Returns:
            The appended entry, or None when nothing readable was left
        """
        content = sanitize_output(raw_chunk)
        if not content:
            return None

        entry = TerminalLogEntry(type=stream, content=content)
        self._terminal_output.append(entry)
        self.channel.publish_terminal_output(self._terminal_output)
        return entry

    def record_lines(
        self,
        lines: Iterable[Any],
        stream: StreamType = StreamType.STDOUT,
    ) -> int:
        """Record each line separately. Returns how many were kept."""
        kept = 0
        for line in lines:
            if self.record_output(line, stream) is not None:
                kept += 1
        return kept

"""Current-step progress reporting."""

from __future__ import annotations

import logging

from promptdeploy.agent.channel import PublishedChannel
from promptdeploy.schemas import ProgressRecord


logger = logging.getLogger(__name__)


class ProgressReporter:
    """Holds the single current ProgressRecord of a job and publishes it.

    No history is kept. Observers that want one must sample on each poll.
    """

    def __init__(self, channel: PublishedChannel):
        self.channel = channel
        self._current: ProgressRecord | None = None

    @property
    def current(self) -> ProgressRecord | None:
        return self._current

    def advance(
        self,
        step: int,
        total: int,
        label: str,
        detail: str | None = None,
    ) -> ProgressRecord:
        """Overwrite the current record and republish it.

        Raises:
            ValueError: If step is out of range or lower than the current step
        """
        if self._current is not None and step < self._current.step:
            raise ValueError(
                f"Progress cannot move backwards (current step {self._current.step}, got {step})"
            )

        record = ProgressRecord(step=step, total=total, label=label, detail=detail)
        self._current = record
        self.channel.publish_progress(record)

        logger.info(f"[{self.channel.job_id}] ({step}/{total}) {label}" + (f": {detail}" if detail else ""))
        return record

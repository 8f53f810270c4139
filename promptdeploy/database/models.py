"""SQLModel tables for the job-state store.

Tables:
- Job: One pipeline execution with its lifecycle state and final outcome
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any

from sqlalchemy import Column, DateTime, Index, Text
from sqlmodel import Field, SQLModel

from promptdeploy.schemas import JobStatus, utcnow


class Job(SQLModel, table=True):
    """A pipeline execution."""

    __tablename__ = "jobs"
    __table_args__ = (
        Index("ix_jobs_status_created", "status", "created_at"),
    )

    id: int | None = Field(default=None, primary_key=True)
    job_id: str = Field(unique=True, index=True, description="UUID for the job")

    # Request
    prompt: str = Field(sa_column=Column(Text, nullable=False), description="User's app description")

    # Status
    status: str = Field(default=JobStatus.QUEUED.value, index=True)  # Use JobStatus enum values
    environment_id: str | None = Field(default=None, index=True)
    output_json: str | None = Field(default=None, sa_column=Column(Text), description="Final result as JSON")
    error_message: str | None = Field(default=None, sa_column=Column(Text))

    # Timestamps
    created_at: datetime = Field(
        default_factory=utcnow, sa_column=Column(DateTime(timezone=True), nullable=False)
    )
    started_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    ended_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))

    @property
    def job_status(self) -> JobStatus:
        return JobStatus(self.status)

    @property
    def output(self) -> dict[str, Any] | None:
        return json.loads(self.output_json) if self.output_json else None

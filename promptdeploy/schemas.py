"""Pydantic schemas for pipeline, API and LLM contracts.

These schemas define the strict contracts between:
- The pipeline orchestrator and its published channel
- API endpoints and polling clients
- Sandbox command execution and the orchestrator
- LLM providers and the code generator

Wire field names are camelCase (``jobId``, ``terminalOutput``); Python code
may use either form.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    """Base model serialized with camelCase aliases."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =============================================================================
# Enums
# =============================================================================

class JobStatus(str, Enum):
    """Lifecycle state of a job."""
    QUEUED = "QUEUED"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class StageName(str, Enum):
    """Names of the pipeline stages, in execution order."""
    GENERATE = "generate"
    PROVISION = "provision"
    SCAFFOLD = "scaffold"
    INSTALL = "install"
    BUILD = "build"
    SERVE = "serve"
    EXPOSE = "expose"

    @property
    def step(self) -> int:
        return PIPELINE_STAGES.index(self) + 1


PIPELINE_STAGES: list[StageName] = list(StageName)
TOTAL_STEPS = len(PIPELINE_STAGES)


class FileOperation(str, Enum):
    """Operations recorded for files written into an environment."""
    CREATED = "created"


class StreamType(str, Enum):
    """Console stream a terminal line came from."""
    STDOUT = "stdout"
    STDERR = "stderr"


# =============================================================================
# Published Channel Records
# =============================================================================

class ProgressRecord(CamelModel):
    """The single most recent stage transition of a job."""
    step: int = Field(..., ge=1, description="Current step, 1-based")
    total: int = Field(..., ge=1, description="Total number of steps")
    label: str = Field(..., description="Short human-readable label")
    detail: str | None = Field(default=None, description="Optional longer detail")
    timestamp: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def _step_within_total(self) -> "ProgressRecord":
        if self.step > self.total:
            raise ValueError(f"step {self.step} exceeds total {self.total}")
        return self


class FileRecord(CamelModel):
    """A file written into the target environment."""
    path: str
    content: str
    operation: FileOperation = FileOperation.CREATED


class TerminalLogEntry(CamelModel):
    """One sanitized, non-empty console line."""
    type: StreamType
    content: str = Field(..., min_length=1)
    timestamp: datetime = Field(default_factory=utcnow)


# =============================================================================
# Sandbox Schemas
# =============================================================================

class CommandResult(BaseModel):
    """Result of a command executed inside an environment."""
    command: str = ""
    stdout_lines: list[str] = Field(default_factory=list)
    stderr_lines: list[str] = Field(default_factory=list)
    exit_code: int | None = None
    error: str | None = Field(default=None, description="Non-empty when the command failed or timed out")
    latency_ms: int | None = None

    @property
    def ok(self) -> bool:
        return not self.error

    @property
    def combined_text(self) -> str:
        return "\n".join([*self.stdout_lines, *self.stderr_lines])


# =============================================================================
# Pipeline Result
# =============================================================================

class PipelineResult(CamelModel):
    """Successful outcome of one pipeline execution."""
    success: bool = True
    environment_id: str
    app_url: str
    generated_source: str
    progress: ProgressRecord
    files: list[FileRecord] = Field(default_factory=list)
    terminal_output: list[TerminalLogEntry] = Field(default_factory=list)
    message: str = "Application is running in the sandbox. Open the URL to view it."
    instructions: str = (
        "The sandbox will remain active. You can access the app at the provided URL."
    )


# =============================================================================
# API Request/Response Schemas
# =============================================================================

class GenerateRequest(CamelModel):
    """API request to start a generation job."""
    prompt: str | None = Field(default=None, description="Natural language description of the app")

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={"example": {"prompt": "a todo list"}},
    )


class GenerateResponse(CamelModel):
    """API response for a queued job."""
    job_id: str
    status: JobStatus = JobStatus.QUEUED
    message: str = "Workflow started. Poll /api/status to check progress."


class JobSnapshot(CamelModel):
    """Consistent view of a job for a polling client."""
    status: JobStatus
    output: dict[str, Any] | None = None
    progress: ProgressRecord | None = None
    files: list[FileRecord] = Field(default_factory=list)
    terminal_output: list[TerminalLogEntry] = Field(default_factory=list)
    error: str | None = None


class CleanupRequest(CamelModel):
    """API request to terminate an environment."""
    environment_id: str | None = None


class CleanupResponse(CamelModel):
    """API response for an environment termination request."""
    success: bool
    message: str


# =============================================================================
# LLM Schemas
# =============================================================================

class LLMMessage(BaseModel):
    """A single message in an LLM conversation."""
    role: Literal["system", "user", "assistant"] = Field(...)
    content: str = Field(...)


class LLMResponse(BaseModel):
    """Response from an LLM provider."""
    content: str | None = None
    model: str
    usage: dict[str, Any] = Field(default_factory=dict)
    finish_reason: str | None = None
    raw_response: dict[str, Any] | None = None

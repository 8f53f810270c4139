"""Exception taxonomy for the build-and-run pipeline.

Stage errors carry the stage they belong to and whether they abort the
pipeline. Cleanup after a fatal stage error is the orchestrator's job; a
failed cleanup surfaces as ``TerminationFailure`` and is only ever logged.
"""

from __future__ import annotations

from promptdeploy.schemas import StageName


class PromptDeployError(Exception):
    """Base class for all application errors."""


# =============================================================================
# Stage Errors
# =============================================================================

class StageError(PromptDeployError):
    """A pipeline stage failed."""

    stage: StageName
    fatal: bool = True

    def __init__(self, message: str, *, detail: str | None = None):
        super().__init__(message)
        self.detail = detail


class GenerationFailure(StageError):
    stage = StageName.GENERATE


class ProvisioningFailure(StageError):
    stage = StageName.PROVISION


class ScaffoldFailure(StageError):
    stage = StageName.SCAFFOLD


class InstallFailure(StageError):
    stage = StageName.INSTALL


class BuildFailure(StageError):
    """Build finished with errors; the pipeline still serves the build."""
    stage = StageName.BUILD
    fatal = False


class ServeFailure(StageError):
    """The run command could not be launched."""
    stage = StageName.SERVE


# =============================================================================
# Environment Errors
# =============================================================================

class EnvironmentNotFoundError(PromptDeployError):
    """No live environment with the given identifier."""

    def __init__(self, environment_id: str):
        super().__init__(f"Environment {environment_id} not found")
        self.environment_id = environment_id


class TerminationFailure(PromptDeployError):
    """An environment could not be terminated."""


# =============================================================================
# Job Errors
# =============================================================================

class JobNotFoundError(PromptDeployError):
    """No job with the given identifier."""

    def __init__(self, job_id: str):
        super().__init__(f"Job {job_id} not found")
        self.job_id = job_id


class JobStateError(PromptDeployError):
    """Illegal lifecycle transition, e.g. mutating a terminal job."""


class ChannelClosedError(PromptDeployError):
    """Write attempted on a published channel after its job ended."""

"""LangGraph workflow for the build-and-run pipeline.

Graph structure:
START → generate → provision → scaffold → install → build → serve → expose → END

Every node publishes progress on entry and on completion. A node raises a
StageError to abort the run; once an environment exists, the orchestrator
terminates it before the error propagates. Build errors are the one
exception: they are logged as warnings and the pipeline carries on.

The environment is left running on success so the app keeps serving.
"""

from __future__ import annotations

import asyncio
import logging
import shlex
from typing import Awaitable, Callable, TypedDict

from langgraph.graph import END, StateGraph

from promptdeploy.agent.channel import PublishedChannel
from promptdeploy.agent.generator import CodeGenerator
from promptdeploy.agent.progress import ProgressReporter
from promptdeploy.agent.scaffold import PROJECT_DIRECTORIES, project_files
from promptdeploy.agent.tracker import ArtifactTracker
from promptdeploy.config import Settings, get_settings
from promptdeploy.errors import (
    BuildFailure,
    GenerationFailure,
    InstallFailure,
    ProvisioningFailure,
    ScaffoldFailure,
    ServeFailure,
    StageError,
)
from promptdeploy.schemas import CommandResult, PipelineResult, StageName, StreamType, TOTAL_STEPS
from promptdeploy.tools.sandbox import EnvironmentHandle, EnvironmentProvisioner


logger = logging.getLogger(__name__)

EnvironmentCallback = Callable[[str], Awaitable[None]]


# =============================================================================
# State Definition
# =============================================================================

class PipelineState(TypedDict, total=False):
    """State for the pipeline workflow.

    Attributes:
        job_id: Job this run belongs to
        prompt: The user's app description
        tracker: Artifact tracker publishing to the job's channel
        reporter: Progress reporter publishing to the job's channel
        generated_source: Fence-free page source
        environment: Handle of the provisioned environment
        build_warning: Build error text, if the build reported one
        server_ready: Whether the readiness marker was seen
        app_url: Public URL of the running app
    """
    job_id: str
    prompt: str
    tracker: ArtifactTracker
    reporter: ProgressReporter
    generated_source: str
    environment: EnvironmentHandle
    build_warning: str | None
    server_ready: bool
    app_url: str


# =============================================================================
# Orchestrator
# =============================================================================

class PipelineOrchestrator:
    """Runs the seven-stage pipeline for one prompt at a time per call."""

    def __init__(
        self,
        generator: CodeGenerator,
        provisioner: EnvironmentProvisioner,
        settings: Settings | None = None,
    ):
        self.generator = generator
        self.provisioner = provisioner
        self.settings = settings or get_settings()
        self.workflow = self.build_workflow().compile()

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _advance(self, state: PipelineState, stage: StageName, label: str, detail: str | None = None) -> None:
        state["reporter"].advance(stage.step, TOTAL_STEPS, label, detail)

    def _project_path(self, relative: str = "") -> str:
        project = self.settings.project_dir.rstrip("/")
        return f"{project}/{relative}" if relative else project

    async def _run_logged(
        self,
        state: PipelineState,
        command: str,
        timeout: float,
    ) -> CommandResult:
        """Run a command, streaming its sanitized output into the terminal log.

        Handles that only report output on completion get their lines
        recorded afterwards.
        """
        tracker = state["tracker"]
        streamed = {"count": 0}

        def on_line(stream: StreamType) -> Callable[[str], None]:
            def record(line: str) -> None:
                streamed["count"] += 1
                tracker.record_output(line, stream)
            return record

        result = await state["environment"].run(
            command,
            timeout=timeout,
            on_stdout=on_line(StreamType.STDOUT),
            on_stderr=on_line(StreamType.STDERR),
        )

        if streamed["count"] == 0:
            tracker.record_lines(result.stdout_lines, StreamType.STDOUT)
            tracker.record_lines(result.stderr_lines, StreamType.STDERR)
        return result

    # -------------------------------------------------------------------------
    # Node Functions
    # -------------------------------------------------------------------------

    async def generate_node(self, state: PipelineState) -> dict:
        """Obtain page source from the generation service."""
        self._advance(state, StageName.GENERATE, "Generating code", f"Generating app: {state['prompt']}")

        try:
            source = await self.generator.generate(state["prompt"])
        except GenerationFailure:
            raise
        except Exception as e:
            raise GenerationFailure(f"Code generation failed: {e}") from e

        if not source.strip():
            raise GenerationFailure("Code generation failed: empty response")

        self._advance(
            state, StageName.GENERATE, "Code generated successfully",
            f"Generated {len(source)} characters of code",
        )
        return {"generated_source": source}

    async def provision_node(self, state: PipelineState) -> dict:
        """Create the isolated environment."""
        self._advance(
            state, StageName.PROVISION, "Creating sandbox environment",
            "Setting up isolated development environment...",
        )

        try:
            environment = await self.provisioner.provision(self.settings.sandbox_timeout_seconds)
        except Exception as e:
            raise ProvisioningFailure(f"Sandbox creation failed: {e}") from e

        self._advance(state, StageName.PROVISION, "Sandbox created", f"Sandbox ID: {environment.environment_id}")
        return {"environment": environment}

    async def scaffold_node(self, state: PipelineState) -> dict:
        """Write the project skeleton and the generated page."""
        self._advance(state, StageName.SCAFFOLD, "Setting up project", "Creating Next.js project structure...")

        environment = state["environment"]
        files = project_files(state["generated_source"])
        try:
            for directory in PROJECT_DIRECTORIES:
                await environment.make_directory(self._project_path(directory))
            for relative, content in files:
                path = self._project_path(relative)
                await environment.write_file(path, content)
                state["tracker"].record_file(path, content)
        except Exception as e:
            raise ScaffoldFailure(f"Project setup failed: {e}") from e

        self._advance(state, StageName.SCAFFOLD, "Project created", f"Wrote {len(files)} files")
        return {}

    async def install_node(self, state: PipelineState) -> dict:
        """Install dependencies; any error is fatal."""
        self._advance(state, StageName.INSTALL, "Installing dependencies", "This may take 2-3 minutes...")

        command = f"cd {shlex.quote(self._project_path())} && {self.settings.install_command}"
        try:
            result = await self._run_logged(state, command, self.settings.install_timeout_seconds)
        except Exception as e:
            raise InstallFailure(f"Install failed: {e}") from e

        if result.error:
            logger.error(f"[{state['job_id']}] Install failed: {result.error}")
            raise InstallFailure(f"Install failed: {result.error}", detail=result.combined_text)

        self._advance(state, StageName.INSTALL, "Dependencies installed", "All packages installed successfully")
        return {}

    async def build_node(self, state: PipelineState) -> dict:
        """Build the app; errors are downgraded to warnings."""
        self._advance(state, StageName.BUILD, "Building application", "Compiling Next.js application...")

        command = f"cd {shlex.quote(self._project_path())} && {self.settings.build_command}"
        warning = None
        try:
            result = await self._run_logged(state, command, self.settings.build_timeout_seconds)
            if result.error:
                raise BuildFailure(f"Build reported errors: {result.error}", detail=result.combined_text)
        except Exception as e:
            warning = str(e)
            logger.warning(f"[{state['job_id']}] Build completed with warnings: {warning}")
            summary = warning.splitlines()[0] if warning else type(e).__name__
            state["tracker"].record_output(f"Build completed with warnings: {summary}", StreamType.STDERR)

        if warning:
            self._advance(state, StageName.BUILD, "Build completed with warnings", warning)
        else:
            self._advance(state, StageName.BUILD, "Build completed", "Application compiled successfully")
        return {"build_warning": warning}

    async def serve_node(self, state: PipelineState) -> dict:
        """Launch the app server detached and wait briefly for it to come up."""
        self._advance(state, StageName.SERVE, "Starting server", "Launching Next.js development server...")

        environment = state["environment"]
        project = shlex.quote(self._project_path())
        command = f"cd {project} && {self.settings.serve_command} > server.log 2>&1"
        try:
            launch = await environment.run(command, background=True)
        except Exception as e:
            raise ServeFailure(f"Server launch failed: {e}") from e
        if launch.error:
            raise ServeFailure(f"Server launch failed: {launch.error}")

        ready = await self._wait_for_ready(state)
        await self._collect_server_log(state)

        if ready:
            self._advance(state, StageName.SERVE, "Server started", "Development server reported ready")
        else:
            logger.warning(
                f"[{state['job_id']}] No readiness signal within "
                f"{self.settings.serve_ready_timeout_seconds}s, continuing"
            )
            self._advance(state, StageName.SERVE, "Server starting", "Server is still starting up")
        return {"server_ready": ready}

    async def _wait_for_ready(self, state: PipelineState) -> bool:
        """Probe server.log for the readiness marker until the grace window ends."""
        environment = state["environment"]
        log_path = shlex.quote(self._project_path("server.log"))
        marker = shlex.quote(self.settings.serve_ready_marker)
        probe = f"grep -qi {marker} {log_path}"

        await asyncio.sleep(self.settings.serve_grace_seconds)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.settings.serve_ready_timeout_seconds
        while True:
            try:
                result = await environment.run(probe, timeout=self.settings.serve_probe_interval_seconds + 5)
                if result.ok:
                    return True
            except Exception as e:
                logger.debug(f"[{state['job_id']}] Readiness probe failed: {e}")
            if loop.time() >= deadline:
                return False
            await asyncio.sleep(self.settings.serve_probe_interval_seconds)

    async def _collect_server_log(self, state: PipelineState) -> None:
        log_path = shlex.quote(self._project_path("server.log"))
        try:
            result = await state["environment"].run(f"cat {log_path}", timeout=10)
        except Exception as e:
            logger.debug(f"[{state['job_id']}] Could not read server log: {e}")
            return
        state["tracker"].record_lines(result.stdout_lines, StreamType.STDOUT)

    async def expose_node(self, state: PipelineState) -> dict:
        """Derive the public URL of the app port."""
        self._advance(state, StageName.EXPOSE, "Exposing application", "Resolving public URL...")

        host = state["environment"].public_host(self.settings.app_port)
        app_url = f"{self.settings.public_url_scheme}://{host}"

        self._advance(
            state, StageName.EXPOSE, "Application ready",
            f"Server is running and ready to accept connections at {app_url}",
        )
        return {"app_url": app_url}

    # -------------------------------------------------------------------------
    # Workflow Builder
    # -------------------------------------------------------------------------

    def build_workflow(self) -> StateGraph:
        """Build the LangGraph workflow."""
        workflow = StateGraph(PipelineState)

        nodes = {
            StageName.GENERATE: self.generate_node,
            StageName.PROVISION: self.provision_node,
            StageName.SCAFFOLD: self.scaffold_node,
            StageName.INSTALL: self.install_node,
            StageName.BUILD: self.build_node,
            StageName.SERVE: self.serve_node,
            StageName.EXPOSE: self.expose_node,
        }
        for stage, node in nodes.items():
            workflow.add_node(stage.value, node)

        # Strictly sequential
        stages = list(nodes)
        workflow.set_entry_point(stages[0].value)
        for current, following in zip(stages, stages[1:]):
            workflow.add_edge(current.value, following.value)
        workflow.add_edge(stages[-1].value, END)

        return workflow

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    async def run(
        self,
        job_id: str,
        prompt: str,
        channel: PublishedChannel,
        on_environment: EnvironmentCallback | None = None,
    ) -> PipelineResult:
        """Execute the full pipeline for a prompt.

        Args:
            job_id: Job identifier, used for logging
            prompt: The app description
            channel: The job's published channel
            on_environment: Awaited with the environment id once provisioned

        Returns:
            PipelineResult for the running app

        Raises:
            StageError: When a fatal stage fails (after environment cleanup)
            asyncio.CancelledError: When the job is cancelled (after environment cleanup)
        """
        tracker = ArtifactTracker(channel)
        reporter = ProgressReporter(channel)
        state: PipelineState = PipelineState(job_id=job_id, prompt=prompt, tracker=tracker, reporter=reporter)

        logger.info(f"[{job_id}] Starting pipeline")

        try:
            async for step_state in self.workflow.astream(state):
                for values in step_state.values():
                    if not isinstance(values, dict):
                        continue
                    state.update(values)
                    if "environment" in values and on_environment is not None:
                        await on_environment(values["environment"].environment_id)
        except asyncio.CancelledError:
            logger.warning(f"[{job_id}] Pipeline cancelled")
            environment = state.get("environment")
            if environment is not None:
                await self._cleanup(job_id, environment)
            raise
        except Exception as e:
            stage = e.stage.value if isinstance(e, StageError) else "unknown"
            logger.error(f"[{job_id}] Pipeline failed at {stage}: {e}")
            environment = state.get("environment")
            if environment is not None:
                await self._cleanup(job_id, environment)
            raise

        environment = state["environment"]
        logger.info(f"[{job_id}] Pipeline completed, app at {state['app_url']}")

        return PipelineResult(
            environment_id=environment.environment_id,
            app_url=state["app_url"],
            generated_source=state["generated_source"],
            progress=reporter.current,
            files=tracker.files,
            terminal_output=tracker.terminal_output,
        )

    async def _cleanup(self, job_id: str, environment: EnvironmentHandle) -> None:
        """Best-effort teardown; failures are logged, never raised."""
        try:
            await environment.terminate()
            logger.info(f"[{job_id}] Terminated sandbox {environment.environment_id}")
        except Exception as e:
            logger.error(f"[{job_id}] Failed to terminate sandbox {environment.environment_id}: {e}")

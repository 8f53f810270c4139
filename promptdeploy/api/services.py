"""Service container wired into the FastAPI application state."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from promptdeploy.agent.generator import CodeGenerator, LLMCodeGenerator
from promptdeploy.agent.workflow import PipelineOrchestrator
from promptdeploy.config import Settings, get_settings
from promptdeploy.database.session import Database
from promptdeploy.jobs.runner import JobRunner
from promptdeploy.jobs.status import StatusTranslator
from promptdeploy.jobs.store import JobStore
from promptdeploy.tools.sandbox import EnvironmentProvisioner, get_provisioner


logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Everything the routes need, built once per application."""

    settings: Settings
    store: JobStore
    provisioner: EnvironmentProvisioner
    generator: CodeGenerator
    runner: JobRunner
    translator: StatusTranslator

    async def start(self) -> None:
        await self.store.init()
        logger.info("Job store initialized")

    async def stop(self) -> None:
        await self.runner.shutdown()
        await self.provisioner.terminate_all()
        await self.generator.close()
        await self.store.close()


def build_services(
    settings: Settings | None = None,
    *,
    generator: CodeGenerator | None = None,
    provisioner: EnvironmentProvisioner | None = None,
) -> Services:
    """Wire the store, pipeline and runner for one application."""
    settings = settings or get_settings()
    generator = generator or LLMCodeGenerator(settings=settings)
    provisioner = provisioner or get_provisioner(settings)

    store = JobStore(Database(settings=settings))
    orchestrator = PipelineOrchestrator(generator, provisioner, settings)
    runner = JobRunner(store, orchestrator, settings)

    return Services(
        settings=settings,
        store=store,
        provisioner=provisioner,
        generator=generator,
        runner=runner,
        translator=StatusTranslator(store, runner),
    )

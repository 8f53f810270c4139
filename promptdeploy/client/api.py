"""Async HTTP client for the PromptDeploy API."""

from __future__ import annotations

import logging

import httpx

from promptdeploy.config import Settings, get_settings
from promptdeploy.errors import EnvironmentNotFoundError, JobNotFoundError
from promptdeploy.schemas import CleanupResponse, GenerateResponse, JobSnapshot


logger = logging.getLogger(__name__)


class PromptDeployClient:
    """Thin wrapper over the HTTP API."""

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float = 30.0,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        settings = settings or get_settings()
        self.base_url = (base_url or settings.api_base_url).rstrip("/")
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
        )

    async def generate(self, prompt: str) -> GenerateResponse:
        """Submit a prompt and return the queued job."""
        response = await self.client.post("/api/generate", json={"prompt": prompt})
        response.raise_for_status()
        return GenerateResponse.model_validate(response.json())

    async def status(self, job_id: str) -> JobSnapshot:
        """Fetch a job snapshot.

        Raises:
            JobNotFoundError: If the server does not know the job
            httpx.HTTPError: On transport or other HTTP errors
        """
        response = await self.client.get("/api/status", params={"jobId": job_id})
        if response.status_code == 404:
            raise JobNotFoundError(job_id)
        response.raise_for_status()
        return JobSnapshot.model_validate(response.json())

    async def cleanup(self, environment_id: str) -> CleanupResponse:
        """Terminate an environment.

        Raises:
            EnvironmentNotFoundError: If it is unknown or already terminated
        """
        response = await self.client.post("/api/cleanup", json={"environmentId": environment_id})
        if response.status_code == 404:
            raise EnvironmentNotFoundError(environment_id)
        response.raise_for_status()
        return CleanupResponse.model_validate(response.json())

    async def close(self) -> None:
        await self.client.aclose()

    async def __aenter__(self) -> "PromptDeployClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

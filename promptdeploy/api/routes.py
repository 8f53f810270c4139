"""FastAPI routes for the PromptDeploy API.

Endpoints:
- POST /generate      - Start a generation job
- GET  /status        - Poll a job's snapshot (?jobId=)
- POST /cleanup       - Terminate an environment
- GET  /cleanup       - Usage information
- GET  /health        - Health check
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from promptdeploy.api.services import Services
from promptdeploy.errors import EnvironmentNotFoundError, JobNotFoundError
from promptdeploy.schemas import (
    CleanupRequest,
    CleanupResponse,
    GenerateRequest,
    GenerateResponse,
    JobSnapshot,
)


logger = logging.getLogger(__name__)
router = APIRouter()


def get_services(request: Request) -> Services:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Service not initialized")
    return services


# =============================================================================
# Health Check
# =============================================================================

@router.get("/health")
async def health(request: Request) -> dict:
    """Health check endpoint."""
    settings = get_services(request).settings
    return {
        "status": "ok",
        "version": settings.app_version,
        "environment": settings.environment,
    }


# =============================================================================
# Jobs Endpoints
# =============================================================================

@router.post("/generate", response_model=GenerateResponse)
async def generate(request: Request, body: GenerateRequest | None = None) -> GenerateResponse:
    """Start a generation job.

    The job is queued and processed asynchronously.
    Use GET /status?jobId=... to poll for progress.
    """
    prompt = body.prompt if body else None
    if not prompt or not prompt.strip():
        raise HTTPException(status_code=400, detail="Prompt is required")

    services = get_services(request)
    job = await services.runner.submit(prompt.strip())
    logger.info(f"Queued job {job.job_id}")

    return GenerateResponse(job_id=job.job_id)


@router.get("/status", response_model=JobSnapshot)
async def status(
    request: Request,
    job_id: str | None = Query(default=None, alias="jobId"),
) -> JobSnapshot:
    """Get a job's status, progress, files and terminal output."""
    if not job_id:
        raise HTTPException(status_code=400, detail="Job ID is required")

    services = get_services(request)
    try:
        return await services.translator.snapshot(job_id)
    except JobNotFoundError:
        raise HTTPException(status_code=404, detail="Job not found")
    except Exception as e:
        logger.exception(f"Error reading status of job {job_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to get job status")


# =============================================================================
# Environment Cleanup
# =============================================================================

@router.post("/cleanup", response_model=CleanupResponse)
async def cleanup(request: Request, body: CleanupRequest | None = None):
    """Terminate an environment by id, independent of any job."""
    environment_id = body.environment_id if body else None
    if not environment_id:
        raise HTTPException(status_code=400, detail="Environment ID is required")

    services = get_services(request)
    try:
        environment = await services.provisioner.connect(environment_id)
        await environment.terminate()
    except EnvironmentNotFoundError:
        return _cleanup_failure(404, f"Environment {environment_id} not found or already terminated")
    except Exception as e:
        logger.error(f"Failed to clean up environment {environment_id}: {e}")
        return _cleanup_failure(500, "Failed to cleanup sandbox")

    logger.info(f"Cleaned up environment {environment_id}")
    return CleanupResponse(success=True, message="Sandbox cleaned up successfully")


@router.get("/cleanup")
async def cleanup_info() -> dict:
    """Describe how to use the cleanup endpoint."""
    return {
        "message": "Use POST with { environmentId } to clean up a sandbox",
    }


def _cleanup_failure(status_code: int, message: str) -> JSONResponse:
    payload = CleanupResponse(success=False, message=message)
    return JSONResponse(status_code=status_code, content=payload.model_dump(by_alias=True))

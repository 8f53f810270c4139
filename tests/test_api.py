"""Tests for the HTTP API."""

import httpx
import pytest

from promptdeploy.api.main import create_app
from promptdeploy.api.services import build_services
from promptdeploy.errors import TerminationFailure
from promptdeploy.schemas import CommandResult

from tests.conftest import FakeEnvironment, FakeGenerator, FakeProvisioner


@pytest.fixture
def environment():
    return FakeEnvironment(environment_id="sbx-api")


@pytest.fixture
async def services(settings, environment):
    services = build_services(settings, generator=FakeGenerator(), provisioner=FakeProvisioner(environment))
    await services.start()
    yield services
    await services.stop()


@pytest.fixture
async def client(settings, services):
    app = create_app(settings, services=services)
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        yield client


async def _run_job(client, services, prompt="a todo list") -> str:
    response = await client.post("/api/generate", json={"prompt": prompt})
    assert response.status_code == 200
    job_id = response.json()["jobId"]
    await services.runner.wait(job_id)
    return job_id


# =============================================================================
# Generate
# =============================================================================

async def test_generate_queues_job(client, services):
    response = await client.post("/api/generate", json={"prompt": "a todo list"})

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "QUEUED"
    assert body["jobId"]
    assert "Poll /api/status" in body["message"]
    await services.runner.wait(body["jobId"])


@pytest.mark.parametrize("payload", [{}, {"prompt": ""}, {"prompt": "   "}, {"prompt": None}])
async def test_generate_requires_prompt(client, payload):
    response = await client.post("/api/generate", json=payload)

    assert response.status_code == 400
    assert response.json()["detail"] == "Prompt is required"


async def test_generate_without_body(client):
    response = await client.post("/api/generate")

    assert response.status_code == 400


# =============================================================================
# Status
# =============================================================================

async def test_status_of_completed_job(client, services):
    job_id = await _run_job(client, services)

    response = await client.get("/api/status", params={"jobId": job_id})

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "COMPLETED"
    assert body["output"]["appUrl"] == "http://3000-sbx-api.sandbox.test"
    assert body["progress"]["step"] == body["progress"]["total"] == 7
    assert body["files"][0]["path"] == "app/app/page.tsx"
    assert body["files"][0]["operation"] == "created"
    assert isinstance(body["terminalOutput"], list)
    assert body["error"] is None


async def test_status_unknown_job(client):
    response = await client.get("/api/status", params={"jobId": "unknown-123"})

    assert response.status_code == 404


async def test_status_requires_job_id(client):
    response = await client.get("/api/status")

    assert response.status_code == 400


async def test_status_hides_internal_errors(client, services, monkeypatch):
    async def explode(job_id):
        raise RuntimeError("database password is hunter2")

    monkeypatch.setattr(services.translator, "snapshot", explode)

    response = await client.get("/api/status", params={"jobId": "any"})

    assert response.status_code == 500
    assert "hunter2" not in response.text


# =============================================================================
# Cleanup
# =============================================================================

async def test_cleanup_twice(client, services, environment):
    job_id = await _run_job(client, services)
    status = (await client.get("/api/status", params={"jobId": job_id})).json()
    environment_id = status["output"]["environmentId"]

    first = await client.post("/api/cleanup", json={"environmentId": environment_id})
    second = await client.post("/api/cleanup", json={"environmentId": environment_id})

    assert first.status_code == 200
    assert first.json()["success"] is True
    assert second.status_code == 404
    assert second.json()["success"] is False
    assert environment.terminate_calls == 1


async def test_cleanup_requires_environment_id(client):
    response = await client.post("/api/cleanup", json={})

    assert response.status_code == 400


async def test_cleanup_termination_error(client, services, environment):
    environment.terminate_error = TerminationFailure("disk busy")
    await _run_job(client, services)

    response = await client.post("/api/cleanup", json={"environmentId": "sbx-api"})

    assert response.status_code == 500
    assert response.json()["success"] is False
    assert "disk busy" not in response.text


async def test_cleanup_info(client):
    response = await client.get("/api/cleanup")

    assert response.status_code == 200
    assert "environmentId" in response.json()["message"]


async def test_failed_job_leaves_nothing_to_clean(client, services, environment):
    environment.scripts["npm install"] = CommandResult(error="ENOENT")
    job_id = await _run_job(client, services)

    body = (await client.get("/api/status", params={"jobId": job_id})).json()
    cleanup = await client.post("/api/cleanup", json={"environmentId": "sbx-api"})

    assert body["status"] == "FAILED"
    assert cleanup.status_code == 404


# =============================================================================
# Health
# =============================================================================

async def test_health(client, settings):
    response = await client.get("/api/health")

    assert response.json() == {
        "status": "ok",
        "version": settings.app_version,
        "environment": settings.environment,
    }


async def test_root(client):
    body = (await client.get("/")).json()

    assert body["name"] == "PromptDeploy"
    assert body["docs"] == "/docs"


async def test_uninitialized_services(settings):
    app = create_app(settings)
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get("/api/health")

    assert response.status_code == 503

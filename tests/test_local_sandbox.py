"""Tests for the local sandbox provisioner."""

import asyncio
import sys

import pytest

from promptdeploy.errors import EnvironmentNotFoundError
from promptdeploy.tools.sandbox import LocalSandboxProvisioner, get_provisioner


pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="Local sandbox needs POSIX sessions")


@pytest.fixture
async def sandbox(settings):
    provisioner = LocalSandboxProvisioner(settings)
    yield provisioner
    await provisioner.terminate_all()


async def test_get_provisioner_defaults_to_local(settings):
    assert isinstance(get_provisioner(settings), LocalSandboxProvisioner)


async def test_write_and_run(sandbox):
    env = await sandbox.provision(timeout=60)
    await env.make_directory("app")
    await env.write_file("/app/hello.txt", "hello from the sandbox\n")

    result = await env.run("cat app/hello.txt", timeout=10)

    assert result.ok
    assert result.exit_code == 0
    assert result.stdout_lines == ["hello from the sandbox"]
    assert (env.root / "app" / "hello.txt").exists()


async def test_commands_see_allocated_port(sandbox):
    env = await sandbox.provision(timeout=60)

    result = await env.run("echo $PORT", timeout=10)

    assert result.stdout_lines == [str(env.host_port)]
    assert env.public_host(3000) == f"localhost:{env.host_port}"


async def test_paths_cannot_escape_root(sandbox):
    env = await sandbox.provision(timeout=60)

    with pytest.raises(ValueError):
        await env.write_file("../outside.txt", "nope")
    with pytest.raises(ValueError):
        await env.make_directory("app/../../outside")


async def test_failed_command_reports_stderr_tail(sandbox):
    env = await sandbox.provision(timeout=60)

    result = await env.run("echo working; echo 'npm ERR! code ENOENT' >&2; exit 3", timeout=10)

    assert not result.ok
    assert result.exit_code == 3
    assert result.stdout_lines == ["working"]
    assert result.error == "npm ERR! code ENOENT"


async def test_failed_command_without_stderr(sandbox):
    env = await sandbox.provision(timeout=60)

    result = await env.run("exit 2", timeout=10)

    assert result.error == "Command exited with code 2"


async def test_command_timeout(sandbox):
    env = await sandbox.provision(timeout=60)

    result = await env.run("sleep 5", timeout=0.2)

    assert result.error == "Command timed out after 0.2 seconds"


async def test_output_is_streamed_to_callbacks(sandbox):
    env = await sandbox.provision(timeout=60)
    out, err = [], []

    await env.run("echo one; echo two; echo three >&2", timeout=10, on_stdout=out.append, on_stderr=err.append)

    assert out == ["one", "two"]
    assert err == ["three"]


async def test_terminate_kills_background_and_removes_tree(sandbox):
    env = await sandbox.provision(timeout=60)
    launch = await env.run("sleep 30", background=True)
    assert launch.ok
    process = env._background[0]

    await env.terminate()

    assert process.returncode is not None
    assert not env.root.exists()
    with pytest.raises(EnvironmentNotFoundError):
        await sandbox.connect(env.environment_id)


async def test_second_terminate_reports_not_found(sandbox):
    env = await sandbox.provision(timeout=60)
    await env.terminate()

    with pytest.raises(EnvironmentNotFoundError):
        await env.terminate()

    result = await env.run("echo late")
    assert result.error == "Environment has been terminated"


async def test_connect_finds_live_environment(sandbox):
    env = await sandbox.provision(timeout=60)

    assert await sandbox.connect(env.environment_id) is env
    with pytest.raises(EnvironmentNotFoundError):
        await sandbox.connect("sbx-unknown")


async def test_environment_expires_after_lifetime(sandbox):
    env = await sandbox.provision(timeout=0.05)

    for _ in range(100):
        if env.terminated and not sandbox._expiry_tasks:
            break
        await asyncio.sleep(0.05)

    assert env.terminated
    assert not env.root.exists()
    with pytest.raises(EnvironmentNotFoundError):
        await sandbox.connect(env.environment_id)


async def test_terminate_all(sandbox):
    first = await sandbox.provision(timeout=60)
    second = await sandbox.provision(timeout=60)

    await sandbox.terminate_all()

    assert first.terminated and second.terminated

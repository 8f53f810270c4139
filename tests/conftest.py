"""Shared fixtures and fakes for the test suite."""

from __future__ import annotations

import pytest

from promptdeploy.agent.generator import CodeGenerator
from promptdeploy.config import Settings
from promptdeploy.errors import EnvironmentNotFoundError, GenerationFailure
from promptdeploy.schemas import CommandResult
from promptdeploy.tools.sandbox import EnvironmentHandle, EnvironmentProvisioner


TODO_LIST_PAGE = """'use client'

import { useState } from 'react'

export default function Page() {
  const [todos, setTodos] = useState<string[]>([])
  const [draft, setDraft] = useState('')

  return (
    <main className="mx-auto max-w-md p-8">
      <h1 className="text-2xl font-bold">Todo list</h1>
      <input value={draft} onChange={(e) => setDraft(e.target.value)} />
      <button onClick={() => { setTodos([...todos, draft]); setDraft('') }}>Add</button>
      <ul>{todos.map((todo, i) => <li key={i}>{todo}</li>)}</ul>
    </main>
  )
}"""


# =============================================================================
# Fakes
# =============================================================================

class FakeEnvironment(EnvironmentHandle):
    """Scripted environment: commands are matched to results by substring."""

    def __init__(
        self,
        environment_id: str = "sbx-fake",
        scripts: dict[str, CommandResult] | None = None,
        stream: bool = False,
        terminate_error: Exception | None = None,
    ):
        self.environment_id = environment_id
        self.scripts = scripts or {}
        self.stream = stream
        self.terminate_error = terminate_error
        self.commands: list[str] = []
        self.background_commands: list[str] = []
        self.files: dict[str, str] = {}
        self.directories: list[str] = []
        self.terminate_calls = 0
        self.terminated = False

    async def write_file(self, path: str, content: str) -> None:
        self.files[path] = content

    async def make_directory(self, path: str) -> None:
        self.directories.append(path)

    async def run(self, command, timeout=None, background=False, on_stdout=None, on_stderr=None):
        self.commands.append(command)
        if background:
            self.background_commands.append(command)

        result = CommandResult(command=command)
        for fragment, scripted in self.scripts.items():
            if fragment in command:
                result = scripted.model_copy(update={"command": command})
                break

        if self.stream:
            for line in result.stdout_lines:
                if on_stdout:
                    on_stdout(line)
            for line in result.stderr_lines:
                if on_stderr:
                    on_stderr(line)
        return result

    def public_host(self, port: int) -> str:
        return f"{port}-{self.environment_id}.sandbox.test"

    async def terminate(self) -> None:
        self.terminate_calls += 1
        if self.terminated:
            raise EnvironmentNotFoundError(self.environment_id)
        self.terminated = True
        if self.terminate_error is not None:
            raise self.terminate_error


class FakeProvisioner(EnvironmentProvisioner):
    def __init__(self, environment: FakeEnvironment | None = None, error: Exception | None = None):
        self.environment = environment or FakeEnvironment()
        self.error = error
        self.provisioned: list[float] = []

    async def provision(self, timeout: float) -> FakeEnvironment:
        self.provisioned.append(timeout)
        if self.error is not None:
            raise self.error
        return self.environment

    async def connect(self, environment_id: str) -> FakeEnvironment:
        if (
            not self.provisioned
            or environment_id != self.environment.environment_id
            or self.environment.terminated
        ):
            raise EnvironmentNotFoundError(environment_id)
        return self.environment


class FakeGenerator(CodeGenerator):
    def __init__(self, source: str = TODO_LIST_PAGE, error: Exception | None = None):
        self.source = source
        self.error = error
        self.prompts: list[str] = []

    async def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.source


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        sandbox_root=str(tmp_path / "sandboxes"),
        sandbox_timeout_seconds=60,
        serve_grace_seconds=0,
        serve_ready_timeout_seconds=0,
        serve_probe_interval_seconds=0,
        channel_retention_seconds=60,
        poll_interval_seconds=0,
        poll_max_seconds=5,
    )


@pytest.fixture
def failing_generator() -> FakeGenerator:
    return FakeGenerator(error=GenerationFailure("Code generation failed: model unavailable"))

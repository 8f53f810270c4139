"""Tests for the pipeline orchestrator."""

import asyncio

import pytest

from promptdeploy.agent.channel import PublishedChannel
from promptdeploy.agent.workflow import PipelineOrchestrator
from promptdeploy.errors import (
    GenerationFailure,
    InstallFailure,
    ProvisioningFailure,
    ScaffoldFailure,
    ServeFailure,
    TerminationFailure,
)
from promptdeploy.schemas import CommandResult, StreamType, TOTAL_STEPS

from tests.conftest import TODO_LIST_PAGE, FakeEnvironment, FakeGenerator, FakeProvisioner


class RecordingChannel(PublishedChannel):
    """Channel that keeps every value ever published."""

    def __init__(self, job_id: str):
        super().__init__(job_id)
        self.progress_log = []
        self.file_lists = []
        self.terminal_lists = []

    def publish_progress(self, record):
        super().publish_progress(record)
        self.progress_log.append(record)

    def publish_files(self, files):
        super().publish_files(files)
        self.file_lists.append(tuple(files))

    def publish_terminal_output(self, entries):
        super().publish_terminal_output(entries)
        self.terminal_lists.append(tuple(entries))


SERVER_LOG = CommandResult(stdout_lines=["\x1b[1m▲ Next.js 14.2.18\x1b[22m", "✓ Ready in 2.3s"])


def _orchestrator(settings, environment=None, generator=None, provisioner=None):
    provisioner = provisioner or FakeProvisioner(environment or FakeEnvironment())
    return PipelineOrchestrator(generator or FakeGenerator(), provisioner, settings)


async def test_pipeline_success(settings):
    environment = FakeEnvironment(scripts={
        "npm install": CommandResult(stdout_lines=["added 312 packages in 14s"]),
        "cat ": SERVER_LOG,
    })
    generator = FakeGenerator()
    provisioner = FakeProvisioner(environment)
    channel = RecordingChannel("job-ok")
    seen_environments = []

    async def on_environment(environment_id):
        seen_environments.append(environment_id)

    result = await _orchestrator(settings, generator=generator, provisioner=provisioner).run(
        "job-ok", "a todo list", channel, on_environment=on_environment
    )

    assert result.success
    assert result.environment_id == "sbx-fake"
    assert result.app_url == "http://3000-sbx-fake.sandbox.test"
    assert result.generated_source == TODO_LIST_PAGE
    assert result.progress.step == TOTAL_STEPS
    assert result.progress.label == "Application ready"
    assert seen_environments == ["sbx-fake"]
    assert generator.prompts == ["a todo list"]

    # Skeleton written around the generated page
    assert [f.path for f in result.files][:2] == ["app/app/page.tsx", "app/package.json"]
    assert len(result.files) == 8
    assert environment.files["app/app/page.tsx"] == TODO_LIST_PAGE

    assert any("npm install" in c for c in environment.commands)
    assert any("npm run build" in c for c in environment.commands)
    assert len(environment.background_commands) == 1
    assert "npm run dev" in environment.background_commands[0]

    contents = [e.content for e in result.terminal_output]
    assert contents == ["added 312 packages in 14s", "▲ Next.js 14.2.18", "✓ Ready in 2.3s"]

    # The app keeps running
    assert environment.terminate_calls == 0
    assert provisioner.provisioned == [60]


async def test_install_failure_terminates_once(settings):
    environment = FakeEnvironment(scripts={
        "npm install": CommandResult(error="ENOENT", stderr_lines=["npm ERR! code ENOENT"], exit_code=254),
    })
    channel = RecordingChannel("job-enoent")

    with pytest.raises(InstallFailure, match="ENOENT"):
        await _orchestrator(settings, environment).run("job-enoent", "a todo list", channel)

    assert environment.terminate_calls == 1
    assert channel.snapshot().progress.step == 4
    stderr = [e for e in channel.snapshot().terminal_output if e.type == StreamType.STDERR]
    assert [e.content for e in stderr] == ["npm ERR! code ENOENT"]
    assert not any("npm run build" in c for c in environment.commands)


async def test_build_warning_is_not_fatal(settings):
    environment = FakeEnvironment(scripts={
        "npm run build": CommandResult(error="Type error: Property 'x' does not exist", exit_code=1),
    })
    channel = RecordingChannel("job-warn")

    result = await _orchestrator(settings, environment).run("job-warn", "a todo list", channel)

    assert result.success
    assert environment.terminate_calls == 0
    labels = [p.label for p in channel.progress_log]
    assert "Build completed with warnings" in labels
    assert "Build completed" not in labels


async def test_progress_is_monotonic_and_complete(settings):
    channel = RecordingChannel("job-progress")

    await _orchestrator(settings).run("job-progress", "a todo list", channel)

    steps = [p.step for p in channel.progress_log]
    assert steps == sorted(steps)
    assert set(steps) == set(range(1, TOTAL_STEPS + 1))
    assert all(p.total == TOTAL_STEPS for p in channel.progress_log)
    # Entry and completion updates per stage
    assert len(channel.progress_log) == 2 * TOTAL_STEPS


async def test_published_lists_are_append_only(settings):
    environment = FakeEnvironment(
        scripts={
            "npm install": CommandResult(stdout_lines=["resolving", "fetching", "linking"]),
            "npm run build": CommandResult(stdout_lines=["Compiled"], stderr_lines=["warn: slow"]),
            "cat ": SERVER_LOG,
        },
        stream=True,
    )
    channel = RecordingChannel("job-append")

    await _orchestrator(settings, environment).run("job-append", "a todo list", channel)

    for published in (channel.file_lists, channel.terminal_lists):
        for previous, current in zip(published, published[1:]):
            assert current[: len(previous)] == previous
            assert len(current) == len(previous) + 1


async def test_streamed_output_is_recorded_once(settings):
    environment = FakeEnvironment(
        scripts={"npm install": CommandResult(stdout_lines=["added 1 package"])},
        stream=True,
    )
    channel = RecordingChannel("job-stream")

    result = await _orchestrator(settings, environment).run("job-stream", "a todo list", channel)

    assert [e.content for e in result.terminal_output].count("added 1 package") == 1


async def test_terminate_failure_is_swallowed(settings):
    environment = FakeEnvironment(
        scripts={"npm install": CommandResult(error="ENOENT")},
        terminate_error=TerminationFailure("disk busy"),
    )

    with pytest.raises(InstallFailure):
        await _orchestrator(settings, environment).run("job-busy", "a todo list", RecordingChannel("job-busy"))

    assert environment.terminate_calls == 1


async def test_generation_failure_needs_no_cleanup(settings, failing_generator):
    provisioner = FakeProvisioner()

    with pytest.raises(GenerationFailure):
        await _orchestrator(settings, generator=failing_generator, provisioner=provisioner).run(
            "job-gen", "a todo list", RecordingChannel("job-gen")
        )

    assert provisioner.provisioned == []
    assert provisioner.environment.terminate_calls == 0


async def test_unexpected_generator_error_is_wrapped(settings):
    generator = FakeGenerator(error=RuntimeError("socket closed"))

    with pytest.raises(GenerationFailure, match="socket closed"):
        await _orchestrator(settings, generator=generator).run("job-gen2", "a todo list", RecordingChannel("job-gen2"))


async def test_provisioning_failure(settings):
    provisioner = FakeProvisioner(error=RuntimeError("quota exceeded"))

    with pytest.raises(ProvisioningFailure, match="quota exceeded"):
        await _orchestrator(settings, provisioner=provisioner).run(
            "job-prov", "a todo list", RecordingChannel("job-prov")
        )

    assert provisioner.environment.terminate_calls == 0


async def test_serve_launch_failure_terminates(settings):
    environment = FakeEnvironment(scripts={"npm run dev": CommandResult(error="Failed to launch: no shell")})

    with pytest.raises(ServeFailure):
        await _orchestrator(settings, environment).run("job-serve", "a todo list", RecordingChannel("job-serve"))

    assert environment.terminate_calls == 1


async def test_missing_ready_marker_still_completes(settings):
    environment = FakeEnvironment(scripts={"grep ": CommandResult(error="Command exited with code 1", exit_code=1)})
    channel = RecordingChannel("job-slow")

    result = await _orchestrator(settings, environment).run("job-slow", "a todo list", channel)

    assert result.success
    assert "Server starting" in [p.label for p in channel.progress_log]


async def test_build_warning_does_not_repeat_stderr(settings):
    stderr = ["Type error: Property 'x' does not exist", "at app/page.tsx:3:5"]
    environment = FakeEnvironment(scripts={
        "npm run build": CommandResult(error="\n".join(stderr), stderr_lines=stderr, exit_code=1),
    })
    channel = RecordingChannel("job-warn-log")

    result = await _orchestrator(settings, environment).run("job-warn-log", "a todo list", channel)

    contents = [e.content for e in result.terminal_output]
    for line in stderr:
        assert contents.count(line) == 1
    summaries = [c for c in contents if c.startswith("Build completed with warnings")]
    assert summaries == ["Build completed with warnings: Build reported errors: Type error: Property 'x' does not exist"]


class FailingWriteEnvironment(FakeEnvironment):
    """Environment whose disk fills up after a number of writes."""

    def __init__(self, writes_before_failure: int, **kwargs):
        super().__init__(**kwargs)
        self.writes_before_failure = writes_before_failure

    async def write_file(self, path: str, content: str) -> None:
        if len(self.files) >= self.writes_before_failure:
            raise OSError("No space left on device")
        await super().write_file(path, content)


async def test_scaffold_failure_terminates_and_keeps_written_files(settings):
    environment = FailingWriteEnvironment(writes_before_failure=3)
    channel = RecordingChannel("job-scaffold")

    with pytest.raises(ScaffoldFailure, match="No space left on device"):
        await _orchestrator(settings, environment).run("job-scaffold", "a todo list", channel)

    assert environment.terminate_calls == 1
    published = [f.path for f in channel.snapshot().files]
    assert published == list(environment.files)
    assert len(published) == 3
    assert not any("npm install" in c for c in environment.commands)


class StalledInstallEnvironment(FakeEnvironment):
    """Environment whose dependency install never finishes on its own."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.install_started = asyncio.Event()

    async def run(self, command, timeout=None, background=False, on_stdout=None, on_stderr=None):
        if "npm install" in command:
            self.install_started.set()
            await asyncio.Event().wait()
        return await super().run(command, timeout, background, on_stdout, on_stderr)


async def test_cancelled_run_terminates_environment(settings):
    environment = StalledInstallEnvironment()
    orchestrator = _orchestrator(settings, environment)
    task = asyncio.create_task(orchestrator.run("job-cancel", "a todo list", RecordingChannel("job-cancel")))

    await asyncio.wait_for(environment.install_started.wait(), timeout=5)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task

    assert environment.terminate_calls == 1
    assert environment.terminated


async def test_cancelled_before_provisioning_needs_no_cleanup(settings):
    release = asyncio.Event()
    started = asyncio.Event()

    class SlowGenerator(FakeGenerator):
        async def generate(self, prompt):
            started.set()
            await release.wait()
            return await super().generate(prompt)

    provisioner = FakeProvisioner()
    task = asyncio.create_task(
        _orchestrator(settings, generator=SlowGenerator(), provisioner=provisioner).run(
            "job-early", "a todo list", RecordingChannel("job-early")
        )
    )

    await asyncio.wait_for(started.wait(), timeout=5)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task

    assert provisioner.provisioned == []
    assert provisioner.environment.terminate_calls == 0

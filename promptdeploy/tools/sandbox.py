"""Sandbox environments for building and serving generated apps.

Defines the provisioner/handle contract the pipeline consumes and a local
implementation:
- One working tree per environment under ``sandbox_root``
- Path checks so writes cannot escape the environment
- Commands run in their own session with timeouts and captured output
- Background processes outlive the call that launched them
- Bounded lifetime; explicit termination kills every process group and
  deletes the tree
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import signal
import socket
import subprocess
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable
from uuid import uuid4

from promptdeploy.config import Settings, get_settings
from promptdeploy.errors import EnvironmentNotFoundError, TerminationFailure
from promptdeploy.schemas import CommandResult


logger = logging.getLogger(__name__)

OutputCallback = Callable[[str], None]

# Lines of stderr quoted in a failed command's error
ERROR_TAIL_LINES = 20
# Longest single output line accepted from a command
STREAM_LIMIT = 1024 * 1024


# =============================================================================
# Contract
# =============================================================================

class EnvironmentHandle(ABC):
    """A provisioned, network-reachable isolated environment."""

    environment_id: str

    @abstractmethod
    async def write_file(self, path: str, content: str) -> None:
        """Write a text file, creating parent directories."""
        ...

    @abstractmethod
    async def make_directory(self, path: str) -> None:
        """Create a directory (and parents) if missing."""
        ...

    @abstractmethod
    async def run(
        self,
        command: str,
        timeout: float | None = None,
        background: bool = False,
        on_stdout: OutputCallback | None = None,
        on_stderr: OutputCallback | None = None,
    ) -> CommandResult:
        """Run a shell command inside the environment.

        Args:
            command: Shell command line
            timeout: Seconds before the command is killed (foreground only)
            background: Launch detached and return immediately
            on_stdout: Called with each stdout line as it arrives
            on_stderr: Called with each stderr line as it arrives

        Returns:
            CommandResult; ``error`` is set on non-zero exit, timeout or
            launch failure
        """
        ...

    @abstractmethod
    def public_host(self, port: int) -> str:
        """Externally reachable host[:port] for a port inside the environment."""
        ...

    @abstractmethod
    async def terminate(self) -> None:
        """Destroy the environment and everything running in it.

        Raises:
            EnvironmentNotFoundError: If the environment is already gone
            TerminationFailure: If teardown failed
        """
        ...


class EnvironmentProvisioner(ABC):
    """Creates and looks up environments."""

    @abstractmethod
    async def provision(self, timeout: float) -> EnvironmentHandle:
        """Create a new environment that lives at most ``timeout`` seconds."""
        ...

    @abstractmethod
    async def connect(self, environment_id: str) -> EnvironmentHandle:
        """Look up a live environment.

        Raises:
            EnvironmentNotFoundError: If no such environment is live
        """
        ...

    async def terminate_all(self) -> None:
        """Terminate every environment this provisioner still owns."""


# =============================================================================
# Local Implementation
# =============================================================================

def _find_free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def _kill_group(pid: int, sig: int = signal.SIGTERM) -> None:
    try:
        os.killpg(pid, sig)
    except ProcessLookupError:
        pass


class LocalEnvironment(EnvironmentHandle):
    """Environment backed by a private directory and process sessions.

    A local environment exposes a single port: every command sees it as
    ``$PORT`` and ``public_host`` maps the application port onto it.
    """

    def __init__(
        self,
        environment_id: str,
        root: Path,
        host_port: int,
        public_hostname: str,
        provisioner: "LocalSandboxProvisioner",
    ):
        self.environment_id = environment_id
        self.root = root
        self.host_port = host_port
        self.public_hostname = public_hostname
        self._provisioner = provisioner
        self._process_groups: set[int] = set()
        self._background: list[subprocess.Popen] = []
        self._expiry: asyncio.TimerHandle | None = None
        self._terminated = False

    @property
    def terminated(self) -> bool:
        return self._terminated

    def _resolve(self, path: str) -> Path:
        """Map an environment path onto the host, refusing escapes."""
        target = (self.root / path.lstrip("/")).resolve()
        root = self.root.resolve()
        if target != root and root not in target.parents:
            raise ValueError(f"Path escapes environment root: {path}")
        return target

    def _command_env(self) -> dict[str, str]:
        run_env = os.environ.copy()
        run_env["PORT"] = str(self.host_port)
        run_env["CI"] = "1"
        return run_env

    async def write_file(self, path: str, content: str) -> None:
        self._ensure_alive()
        target = self._resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        await asyncio.to_thread(target.write_text, content, encoding="utf-8")

    async def make_directory(self, path: str) -> None:
        self._ensure_alive()
        self._resolve(path).mkdir(parents=True, exist_ok=True)

    async def run(
        self,
        command: str,
        timeout: float | None = None,
        background: bool = False,
        on_stdout: OutputCallback | None = None,
        on_stderr: OutputCallback | None = None,
    ) -> CommandResult:
        if self._terminated:
            return CommandResult(command=command, error="Environment has been terminated")
        if background:
            return self._spawn_background(command)
        return await self._run_foreground(command, timeout, on_stdout, on_stderr)

    def _spawn_background(self, command: str) -> CommandResult:
        try:
            process = subprocess.Popen(
                command,
                shell=True,
                cwd=self.root,
                env=self._command_env(),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                start_new_session=True,
            )
        except OSError as e:
            return CommandResult(command=command, error=f"Failed to launch: {e}")

        self._background.append(process)
        self._process_groups.add(process.pid)
        logger.info(f"[{self.environment_id}] Launched background process {process.pid}: {command}")
        return CommandResult(command=command)

    async def _run_foreground(
        self,
        command: str,
        timeout: float | None,
        on_stdout: OutputCallback | None,
        on_stderr: OutputCallback | None,
    ) -> CommandResult:
        start = time.perf_counter()
        stdout_lines: list[str] = []
        stderr_lines: list[str] = []

        try:
            process = await asyncio.create_subprocess_shell(
                command,
                cwd=self.root,
                env=self._command_env(),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
                limit=STREAM_LIMIT,
            )
        except OSError as e:
            return CommandResult(command=command, error=f"Failed to launch: {e}")

        self._process_groups.add(process.pid)

        async def pump(stream: asyncio.StreamReader, sink: list[str], callback: OutputCallback | None):
            async for raw in stream:
                line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
                sink.append(line)
                if callback:
                    callback(line)

        try:
            await asyncio.wait_for(
                asyncio.gather(
                    pump(process.stdout, stdout_lines, on_stdout),
                    pump(process.stderr, stderr_lines, on_stderr),
                    process.wait(),
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            _kill_group(process.pid, signal.SIGKILL)
            await process.wait()
            return CommandResult(
                command=command,
                stdout_lines=stdout_lines,
                stderr_lines=stderr_lines,
                exit_code=process.returncode,
                error=f"Command timed out after {timeout} seconds",
                latency_ms=int((time.perf_counter() - start) * 1000),
            )
        finally:
            self._process_groups.discard(process.pid)

        error = None
        if process.returncode != 0:
            tail = [line for line in stderr_lines if line.strip()][-ERROR_TAIL_LINES:]
            error = "\n".join(tail) or f"Command exited with code {process.returncode}"

        return CommandResult(
            command=command,
            stdout_lines=stdout_lines,
            stderr_lines=stderr_lines,
            exit_code=process.returncode,
            error=error,
            latency_ms=int((time.perf_counter() - start) * 1000),
        )

    def public_host(self, port: int) -> str:
        return f"{self.public_hostname}:{self.host_port}"

    async def terminate(self) -> None:
        if self._terminated:
            raise EnvironmentNotFoundError(self.environment_id)
        self._terminated = True
        self._provisioner._forget(self.environment_id)
        if self._expiry is not None:
            self._expiry.cancel()

        for pgid in list(self._process_groups):
            _kill_group(pgid, signal.SIGKILL)
        self._process_groups.clear()
        for process in self._background:
            await asyncio.to_thread(process.wait)
        self._background.clear()

        try:
            await asyncio.to_thread(shutil.rmtree, self.root)
        except FileNotFoundError:
            pass
        except OSError as e:
            raise TerminationFailure(f"Failed to remove environment {self.environment_id}: {e}") from e

        logger.info(f"[{self.environment_id}] Environment terminated")

    def _ensure_alive(self) -> None:
        if self._terminated:
            raise EnvironmentNotFoundError(self.environment_id)


class LocalSandboxProvisioner(EnvironmentProvisioner):
    """Provisions LocalEnvironments under a root directory."""

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self.root = Path(self.settings.sandbox_root).resolve()
        self._environments: dict[str, LocalEnvironment] = {}
        self._expiry_tasks: set[asyncio.Task] = set()

    async def provision(self, timeout: float) -> LocalEnvironment:
        environment_id = f"sbx-{uuid4().hex[:12]}"
        env_root = self.root / environment_id
        env_root.mkdir(parents=True, exist_ok=False)

        environment = LocalEnvironment(
            environment_id=environment_id,
            root=env_root,
            host_port=_find_free_port(),
            public_hostname=self.settings.sandbox_public_host,
            provisioner=self,
        )
        self._environments[environment_id] = environment

        loop = asyncio.get_running_loop()
        environment._expiry = loop.call_later(timeout, self._schedule_expiry, environment_id)

        logger.info(
            f"[{environment_id}] Provisioned at {env_root} "
            f"(port {environment.host_port}, lifetime {timeout}s)"
        )
        return environment

    async def connect(self, environment_id: str) -> LocalEnvironment:
        environment = self._environments.get(environment_id)
        if environment is None:
            raise EnvironmentNotFoundError(environment_id)
        return environment

    async def terminate_all(self) -> None:
        for environment in list(self._environments.values()):
            try:
                await environment.terminate()
            except Exception as e:
                logger.error(f"Failed to terminate {environment.environment_id}: {e}")

    def _schedule_expiry(self, environment_id: str) -> None:
        task = asyncio.get_running_loop().create_task(self._expire(environment_id))
        self._expiry_tasks.add(task)
        task.add_done_callback(self._expiry_tasks.discard)

    async def _expire(self, environment_id: str) -> None:
        environment = self._environments.get(environment_id)
        if environment is None:
            return
        logger.info(f"[{environment_id}] Lifetime elapsed, terminating")
        try:
            await environment.terminate()
        except Exception as e:
            logger.error(f"[{environment_id}] Failed to terminate expired environment: {e}")

    def _forget(self, environment_id: str) -> None:
        self._environments.pop(environment_id, None)


def get_provisioner(settings: Settings | None = None) -> EnvironmentProvisioner:
    """Build the provisioner selected by ``sandbox_provider``."""
    settings = settings or get_settings()
    if settings.sandbox_provider == "local":
        return LocalSandboxProvisioner(settings)
    raise ValueError(f"Unknown sandbox provider: {settings.sandbox_provider}")

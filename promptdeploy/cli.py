"""CLI entrypoint (Typer + Rich).

Commands:
- `promptdeploy serve`                 - Run the HTTP API
- `promptdeploy run "<prompt>"`        - Run the pipeline in-process
- `promptdeploy generate "<prompt>"`   - Submit to a running API and poll
- `promptdeploy status <job-id>`       - Show one snapshot
- `promptdeploy terminate <env-id>`    - Clean up an environment
"""

from __future__ import annotations

import asyncio
import logging

import typer
from rich.console import Console
from rich.table import Table

from promptdeploy.api.services import build_services
from promptdeploy.client.api import PromptDeployClient
from promptdeploy.client.poller import PollOutcome, SnapshotAccumulator, StatusPoller
from promptdeploy.config import get_settings
from promptdeploy.errors import EnvironmentNotFoundError, JobNotFoundError
from promptdeploy.schemas import JobSnapshot, JobStatus, TerminalLogEntry

app = typer.Typer(help="PromptDeploy CLI: describe an app, get it running.")
console = Console()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


# =============================================================================
# Rendering
# =============================================================================

class _Printer:
    """Prints progress changes and new terminal lines as they arrive."""

    def __init__(self, show_output: bool):
        self.show_output = show_output
        self._last_step: tuple[int, str] | None = None

    def __call__(self, snapshot: JobSnapshot, added: list[TerminalLogEntry]) -> None:
        progress = snapshot.progress
        if progress is not None and (progress.step, progress.label) != self._last_step:
            self._last_step = (progress.step, progress.label)
            console.print(f"[bold cyan][{progress.step}/{progress.total}][/] {progress.label}")
        if self.show_output:
            for entry in added:
                style = "red" if entry.type == "stderr" else "dim"
                console.print(f"  {entry.content}", style=style, markup=False, highlight=False)


def _print_result(status: JobStatus | None, output: dict | None, error: str | None) -> None:
    if status == JobStatus.COMPLETED and output:
        table = Table(show_header=False)
        table.add_row("Environment", output.get("environmentId", ""))
        table.add_row("URL", output.get("appUrl", ""))
        table.add_row("Files", str(len(output.get("files", []))))
        console.print(table)
        console.print(output.get("instructions", ""))
    elif status == JobStatus.FAILED:
        console.print(f"[bold red]Failed:[/] {error}")
    else:
        console.print(f"[yellow]Job still {status.value if status else 'unknown'}[/]")


# =============================================================================
# Commands
# =============================================================================

@app.command()
def serve(
    host: str = typer.Option(None, help="Bind host"),
    port: int = typer.Option(None, help="Bind port"),
):
    """Run the HTTP API with uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "promptdeploy.api.main:app",
        host=host or settings.api_host,
        port=port or settings.api_port,
        reload=settings.debug,
    )


@app.command()
def run(
    prompt: str,
    show_output: bool = typer.Option(True, "--output/--no-output", help="Stream terminal output"),
    keep: bool = typer.Option(True, "--keep/--no-keep", help="Keep serving until Ctrl+C"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """Run the whole pipeline in this process."""
    _configure_logging(verbose)
    try:
        asyncio.run(_run_local(prompt, show_output, keep))
    except KeyboardInterrupt:
        console.print("Stopped.")


async def _run_local(prompt: str, show_output: bool, keep: bool) -> None:
    services = build_services(get_settings())
    await services.start()
    try:
        job = await services.runner.submit(prompt)
        console.print(f"Job [bold]{job.job_id}[/] started")

        printer = _Printer(show_output)
        view = SnapshotAccumulator()
        while True:
            snapshot = await services.translator.snapshot(job.job_id)
            printer(snapshot, view.merge(snapshot))
            if snapshot.status.is_terminal:
                break
            await asyncio.sleep(0.5)

        _print_result(snapshot.status, snapshot.output, snapshot.error)
        if keep and snapshot.status == JobStatus.COMPLETED:
            console.print("Serving. Press Ctrl+C to stop and clean up.")
            await asyncio.Event().wait()
    finally:
        await services.stop()


@app.command()
def generate(
    prompt: str,
    api_url: str = typer.Option(None, "--api-url", help="API base URL"),
    show_output: bool = typer.Option(True, "--output/--no-output", help="Stream terminal output"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """Submit a prompt to a running API and poll until it finishes."""
    _configure_logging(verbose)
    outcome = asyncio.run(_generate_remote(prompt, api_url, show_output))
    _print_result(outcome.status, outcome.output, outcome.error)
    if outcome.status != JobStatus.COMPLETED:
        raise typer.Exit(code=1)


async def _generate_remote(prompt: str, api_url: str | None, show_output: bool) -> PollOutcome:
    async with PromptDeployClient(api_url) as client:
        queued = await client.generate(prompt)
        console.print(f"Job [bold]{queued.job_id}[/] queued")
        poller = StatusPoller(client)
        return await poller.poll(queued.job_id, on_update=_Printer(show_output))


@app.command()
def status(
    job_id: str,
    api_url: str = typer.Option(None, "--api-url", help="API base URL"),
):
    """Show the current snapshot of a job."""

    async def fetch() -> JobSnapshot:
        async with PromptDeployClient(api_url) as client:
            return await client.status(job_id)

    try:
        snapshot = asyncio.run(fetch())
    except JobNotFoundError:
        console.print(f"[red]Job {job_id} not found[/]")
        raise typer.Exit(code=1)

    console.print(f"Status: [bold]{snapshot.status.value}[/]")
    if snapshot.progress:
        console.print(f"Progress: {snapshot.progress.step}/{snapshot.progress.total} {snapshot.progress.label}")
    console.print(f"Files: {len(snapshot.files)}  Terminal lines: {len(snapshot.terminal_output)}")
    if snapshot.status.is_terminal:
        _print_result(snapshot.status, snapshot.output, snapshot.error)


@app.command()
def terminate(
    environment_id: str,
    api_url: str = typer.Option(None, "--api-url", help="API base URL"),
):
    """Terminate an environment through the API."""

    async def cleanup():
        async with PromptDeployClient(api_url) as client:
            return await client.cleanup(environment_id)

    try:
        result = asyncio.run(cleanup())
    except EnvironmentNotFoundError:
        console.print(f"[red]Environment {environment_id} not found or already terminated[/]")
        raise typer.Exit(code=1)
    console.print(result.message)


if __name__ == "__main__":
    app()

"""hack-helper CLI — talks to the workflow runtime over HTTP."""

import asyncio
import logging
import os
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from hackhelper import __version__
from hackhelper.client.api import ApiClient
from hackhelper.client.observer import MonitorOptions
from hackhelper.core.config import HackHelperSettings, get_settings
from hackhelper.core.errors import InitiationError
from hackhelper.models.run import Artifact, RunStatus

app = typer.Typer(
    name="hack-helper",
    help="AI-powered hackathon project generator",
    no_args_is_help=True,
)
console = Console()

ENV_FILE = Path(".env")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logs"),
):
    settings = get_settings()
    level = "DEBUG" if verbose else settings.log_level.upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.WARNING),
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        datefmt="%H:%M:%S",
    )


def _ensure_api_key(settings: HackHelperSettings) -> HackHelperSettings:
    """Prompt for an API key when none is configured and remember it in .env."""
    if settings.api_key:
        return settings

    api_key = typer.prompt("Enter your API key", hide_input=True)
    if not api_key.strip():
        console.print("[red]Error:[/red] API key is required")
        raise typer.Exit(1)

    existing = ENV_FILE.read_text() if ENV_FILE.exists() else ""
    separator = "\n" if existing and not existing.endswith("\n") else ""
    ENV_FILE.write_text(f"{existing}{separator}API_KEY={api_key}\n")
    os.environ["API_KEY"] = api_key
    return settings.model_copy(update={"api_key": api_key})


def _api_client(settings: HackHelperSettings) -> ApiClient:
    return ApiClient(settings)


async def _require_server(api: ApiClient) -> None:
    if not await api.is_available():
        console.print(f"[red]Error:[/red] Cannot connect to the API server at {api.settings.api_url}")
        console.print("Make sure the server is running and try again.")
        raise typer.Exit(1)


def _print_files(title: str, paths: list[str]) -> None:
    table = Table(title=title, show_header=False)
    table.add_column("Path")
    for path in paths:
        table.add_row(path)
    console.print(table)


class _ProgressPrinter:
    """Prints only the part of the accumulated progress text not shown yet."""

    def __init__(self):
        self._shown = 0
        self.files: list[Artifact] = []

    def __call__(self, text: str, files: list[Artifact]) -> None:
        if len(text) > self._shown:
            console.print(text[self._shown:], end="", markup=False, highlight=False)
            self._shown = len(text)
        self.files = files


# ─── Project Commands ───


@app.command()
def init(
    idea: str = typer.Argument(..., help="Your project idea"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Output directory (default: ./output)"),
    name: Optional[str] = typer.Option(None, "--name", "-n", help="Project name (default: derived from the idea)"),
    poll_interval: Optional[float] = typer.Option(None, "--poll-interval", help="Seconds between status polls"),
    no_stream: bool = typer.Option(False, "--no-stream", help="Follow the run by polling only"),
    keep_watching: bool = typer.Option(False, "--keep-watching", help="Keep watching after the run finishes"),
):
    """Initialize a new project from an idea prompt."""
    settings = _ensure_api_key(get_settings())
    output_dir = output or Path(settings.output_dir)

    console.print(f"[green]🚀 Initializing project from idea:[/green] [italic]{idea}[/italic]")

    async def _init():
        async with _api_client(settings) as api:
            await _require_server(api)

            try:
                run_id = await api.initialize(idea, project_name=name, output_dir=output_dir)
            except InitiationError as e:
                console.print(f"[red]Error initializing project:[/red] {e}")
                raise typer.Exit(1)
            console.print(f"  Run: [bold]{run_id}[/bold]")

            options = MonitorOptions.from_settings(
                settings,
                output_dir=output_dir,
                project_name=name,
                poll_interval=poll_interval,
            )
            options.enable_stream = not no_stream
            if keep_watching:
                options.stop_on_completion = False

            printer = _ProgressPrinter()
            handle = await api.monitor(run_id, on_progress=printer, options=options)
            try:
                run = await handle.wait()
            finally:
                handle.stop()
            return run_id, run, handle.files

    run_id, run, files = asyncio.run(_init())

    console.print()
    if run.status == RunStatus.COMPLETED:
        console.print("[green]✓[/green] Project initialized successfully!")
    elif run.status.is_terminal:
        console.print(f"[red]●[/red] Run finished with status: {run.status.value}")
    else:
        console.print("[yellow]●[/yellow] Stopped watching the run")

    if files:
        _print_files(f"📁 Generated files → {output_dir}", [f.relative_path for f in files])
    else:
        console.print("[dim]No files extracted yet.[/dim] Recover them with:")
        console.print(f"  hack-helper extract {output_dir} --run-id {run_id}")


@app.command()
def extract(
    output: Path = typer.Argument(..., help="Directory to write the project into"),
    run_id: Optional[str] = typer.Option(None, "--run-id", "-r", help="Run to pull files from"),
    name: Optional[str] = typer.Option(None, "--name", "-n", help="Project name to look for on disk"),
):
    """Recover generated files for a run into a directory."""
    settings = get_settings()

    async def _extract():
        async with _api_client(settings) as api:
            return await api.ensure_files_extracted(output, run_id=run_id, project_name=name)

    result = asyncio.run(_extract())
    if not result:
        console.print("[yellow]No generated files found[/yellow]")
        raise typer.Exit(1)

    _print_files(
        f"📁 Extracted {len(result.artifacts)} file(s) via {result.strategy} lookup",
        [a.relative_path for a in result.artifacts],
    )


@app.command()
def add(
    feature: str = typer.Argument(..., help="Feature description"),
    path: str = typer.Option(".", "--path", "-p", help="Project path"),
):
    """Add a new feature to an existing project."""
    settings = _ensure_api_key(get_settings())
    console.print(f"[green]🔧 Adding feature:[/green] [italic]{feature}[/italic]")

    async def _add():
        async with _api_client(settings) as api:
            await _require_server(api)
            return await api.add_feature(feature, project_path=path)

    result = asyncio.run(_add())
    if not result.success:
        console.print(f"[red]Error adding feature:[/red] {result.error or 'Unknown error'}")
        raise typer.Exit(1)

    console.print("[green]✓[/green] Feature added successfully!")
    if result.generated_files:
        _print_files("📁 Modified/Created files", [f.path for f in result.generated_files])


@app.command()
def deploy(
    path: str = typer.Option(".", "--path", "-p", help="Project path"),
    platform: str = typer.Option("vercel", "--platform", help="Platform to deploy to"),
):
    """Deploy the project."""
    settings = _ensure_api_key(get_settings())
    console.print(f"[green]🚀 Deploying project to:[/green] [bold]{platform}[/bold]")

    async def _deploy():
        async with _api_client(settings) as api:
            await _require_server(api)
            return await api.deploy(platform, project_path=path)

    result = asyncio.run(_deploy())
    if not result.success:
        console.print(f"[red]Error deploying project:[/red] {result.error or 'Unknown error'}")
        raise typer.Exit(1)

    console.print("[green]✓[/green] Project deployed successfully!")
    if result.reply:
        console.print(Panel(result.reply, title="📊 Deployment information"))


@app.command()
def status():
    """Check the status of the API server."""
    settings = get_settings()

    async def _status():
        async with _api_client(settings) as api:
            return await api.is_available()

    if asyncio.run(_status()):
        console.print(f"[green]●[/green] API server is available at {settings.api_url}")
    else:
        console.print(f"[red]●[/red] API server is not available at {settings.api_url}")
        raise typer.Exit(1)


@app.command()
def version():
    """Show hack-helper version."""
    console.print(f"hack-helper v{__version__}")


if __name__ == "__main__":
    app()

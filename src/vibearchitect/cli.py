"""CLI entrypoint for vibe-architect.

The CLI drives the same pipeline controller as the browser dashboard:
``run`` fetches a repository and stages the prompt sequence, ``chunks``
splits a saved final prompt, and ``serve`` starts the browser surface.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table

from . import __version__
from .agents import AgentRunner
from .chunks import parse_chunks
from .config import Config
from .dashboard.events import Event, EventType
from .gemini_client import create_model_client
from .github_fetcher import create_repo_fetcher
from .images import ImageLoadError, load_image
from .mission_writer import MissionWriter
from .models import ParsedPromptChunk, PipelineStatus
from .pipeline import PipelineController

# Initialize Typer app
app = typer.Typer(
    name="vibearchitect",
    help="Multi-agent staging area that turns a repository and an objective into step-by-step coding prompts.",
    add_completion=False,
)

console = Console()

STATUS_LABELS = {
    PipelineStatus.FETCHING: "Fetching repository files...",
    PipelineStatus.SCOUT_WORKING: "Scout is auditing the repository...",
    PipelineStatus.ARCHITECT_WORKING: "Architect is planning the logic...",
    PipelineStatus.TASKMASTER_WORKING: "Taskmaster is splitting the mission into prompts...",
    PipelineStatus.REFINING: "Repair Technician is refining the prompts...",
    PipelineStatus.COMPLETED: "Mission ready.",
    PipelineStatus.ERROR: "Pipeline stopped with an error.",
}


def setup_logging(verbose: bool = False, level: str = "INFO") -> None:
    """Configure logging with Rich handler.

    Args:
        verbose: If True, set DEBUG level; otherwise use ``level``.
        level: Level name from configuration.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else getattr(logging, level.upper(), logging.INFO),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
        force=True,
    )


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"vibearchitect version {__version__}")
        raise typer.Exit()


def load_config(config_dir: Optional[Path], mock: bool) -> Config:
    """Load and validate configuration, exiting on errors."""
    config = Config.from_env(config_dir.resolve() if config_dir else None)
    if mock:
        config.mock_mode = True

    errors = config.validate()
    if errors:
        console.print("[red]Configuration errors:[/red]")
        for error in errors:
            console.print(f"  - {error}")
        raise typer.Exit(1)
    return config


def build_controller(config: Config) -> PipelineController:
    """Wire the model client, fetcher and agents into a controller."""
    agents = AgentRunner(create_model_client(config), config.pipeline)
    return PipelineController(
        agents=agents,
        fetcher=create_repo_fetcher(config),
        manifesto=config.load_manifesto(),
    )


def _print_status(event: Event) -> None:
    if event.type != EventType.STATUS_CHANGE:
        return
    status = PipelineStatus(event.data["status"])
    style = {"completed": "green", "error": "red"}.get(status.value, "cyan")
    console.print(f"[{style}]>[/{style}] {STATUS_LABELS.get(status, status.value)}")


def _display_chunks(chunks: list[ParsedPromptChunk]) -> None:
    """Print each chunk as a titled panel."""
    total = len(chunks)
    for position, chunk in enumerate(chunks, start=1):
        console.print(Panel(
            Markdown(chunk.content),
            title=f"[bold]Prompt {chunk.id}: {chunk.title}[/bold]",
            subtitle=f"{position}/{total}",
            border_style="cyan",
        ))


@app.callback()
def main(
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
) -> None:
    """Multi-agent staging area for AI coding."""
    pass


@app.command()
def run(
    repo_url: str = typer.Argument(..., help="GitHub repository URL (https://github.com/owner/repo)."),
    objective: str = typer.Option(
        ...,
        "--objective",
        "-o",
        help="What the coding agent should build or change.",
    ),
    error_feedback: str = typer.Option(
        "",
        "--error-feedback",
        "-e",
        help="Errors from a previous attempt that the new prompts must fix.",
    ),
    images: Optional[list[Path]] = typer.Option(
        None,
        "--image",
        "-i",
        help="Reference image (repeatable). Passed to the Scout and Architect.",
    ),
    output_dir: Optional[Path] = typer.Option(
        None,
        "--output",
        "-d",
        help="Directory to write mission_log.md, final_prompt.md and prompts/.",
    ),
    save: bool = typer.Option(
        False,
        "--save",
        "-s",
        help="Write the mission files to the configured output directory (VIBEARCHITECT_OUTPUT_DIR, default ./mission).",
    ),
    config_dir: Optional[Path] = typer.Option(
        None,
        "--config-dir",
        "-c",
        help="Directory containing pipeline.yaml and manifesto.md.",
    ),
    mock: bool = typer.Option(
        False,
        "--mock",
        "-m",
        help="Run in mock mode (no API calls).",
    ),
    interactive: bool = typer.Option(
        False,
        "--interactive",
        "-I",
        help="After the run, keep asking for feedback and refine the prompts.",
    ),
    show_log: bool = typer.Option(
        False,
        "--show-log",
        help="Print the final mission log.",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        help="Enable verbose output.",
    ),
) -> None:
    """Stage a prompt sequence for a repository and objective.

    Examples:
        vibearchitect run https://github.com/owner/repo -o "Add a dark mode toggle"

        vibearchitect run owner/repo -o "Fix the login form" -e "TypeError: x is undefined" -i screenshot.png

        vibearchitect run owner/repo -o "Add search" --interactive --output mission/

        VIBEARCHITECT_OUTPUT_DIR=out/ vibearchitect run owner/repo -o "Add search" --save
    """
    config = load_config(config_dir, mock)
    setup_logging(verbose, config.log_level)

    if output_dir is None and save:
        output_dir = config.output_dir

    controller = build_controller(config)
    try:
        _run_mission(
            controller, config, repo_url, objective, error_feedback,
            images, output_dir, interactive, show_log,
        )
    finally:
        controller.close()


def _run_mission(
    controller: PipelineController,
    config: Config,
    repo_url: str,
    objective: str,
    error_feedback: str,
    images: Optional[list[Path]],
    output_dir: Optional[Path],
    interactive: bool,
    show_log: bool,
) -> None:
    """Execute one run (and optional refinements) and report the result."""
    controller.emitter.subscribe(_print_status)

    for image_path in images or []:
        try:
            controller.add_image(load_image(image_path))
        except ImageLoadError as e:
            console.print(f"[red]Error:[/red] {e}")
            raise typer.Exit(1)

    console.print("[bold]Starting mission[/bold]")
    console.print(f"[dim]Repository:[/dim] {repo_url}")
    console.print(f"[dim]Objective:[/dim] {objective}")
    console.print(f"[dim]Images:[/dim] {len(controller.images)}")
    console.print(f"[dim]Mock mode:[/dim] {'enabled' if config.mock_mode else 'disabled'}")
    console.print()

    state = controller.execute_pipeline(repo_url, objective, error_feedback)

    if state.status == PipelineStatus.COMPLETED:
        if show_log:
            console.print(Panel(Markdown(state.mission_log), title="Mission Log", border_style="dim"))
        _display_chunks(controller.chunks())

        while interactive:
            feedback = typer.prompt(
                "Refinement feedback (leave blank to finish)",
                default="",
                show_default=False,
            )
            if not feedback.strip():
                break
            state = controller.execute_refinement(feedback)
            if state.status == PipelineStatus.ERROR:
                break
            _display_chunks(controller.chunks())

    if output_dir is not None and state.final_prompt is not None:
        writer = MissionWriter(output_dir.resolve())
        paths = writer.write(state, controller.chunks(), repo_url=repo_url, objective=objective)
        console.print(f"\n[bold]Mission written to:[/bold] {output_dir} ({len(paths)} files)")

    if state.status == PipelineStatus.ERROR:
        console.print(f"\n[red]Error:[/red] {state.error}")
        raise typer.Exit(1)


@app.command()
def chunks(
    prompt_file: Path = typer.Argument(..., help="File containing a final prompt."),
    show: bool = typer.Option(
        False,
        "--show",
        "-s",
        help="Print every chunk in full instead of a summary table.",
    ),
) -> None:
    """Split a saved final prompt into its numbered chunks."""
    if not prompt_file.exists():
        console.print(f"[red]Error:[/red] File does not exist: {prompt_file}")
        raise typer.Exit(1)

    parsed = parse_chunks(prompt_file.read_text(encoding="utf-8"))

    if show:
        _display_chunks(parsed)
        return

    table = Table(title=f"Prompt chunks ({len(parsed)})")
    table.add_column("ID", style="cyan")
    table.add_column("Title")
    table.add_column("Lines", justify="right", style="dim")
    for chunk in parsed:
        table.add_row(chunk.id, chunk.title, str(len(chunk.content.splitlines())))
    console.print(table)


@app.command()
def serve(
    port: int = typer.Option(
        8080,
        "--port",
        "-p",
        help="Port to run the server on.",
    ),
    host: str = typer.Option(
        "127.0.0.1",
        "--host",
        "-h",
        help="Host to bind the server to.",
    ),
    config_dir: Optional[Path] = typer.Option(
        None,
        "--config-dir",
        "-c",
        help="Directory containing pipeline.yaml and manifesto.md.",
    ),
    mock: bool = typer.Option(
        False,
        "--mock",
        "-m",
        help="Run in mock mode (no API calls).",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        help="Enable verbose output.",
    ),
) -> None:
    """Launch the browser interface.

    Open the printed URL, enter a repository and an objective, attach
    reference images if needed, and watch the agents work in real time.
    """
    from .dashboard import run_server

    config = load_config(config_dir, mock)
    setup_logging(verbose, config.log_level)

    console.print("[bold cyan]Vibe Architect[/bold cyan]")
    console.print(f"[dim]Starting server at http://{host}:{port}[/dim]")
    console.print("[dim]Press Ctrl+C to stop the server.[/dim]")
    console.print()

    controller = build_controller(config)
    try:
        run_server(controller, host=host, port=port)
    except KeyboardInterrupt:
        console.print("\n[dim]Server stopped.[/dim]")
    finally:
        controller.close()


if __name__ == "__main__":
    app()

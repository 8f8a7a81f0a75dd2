"""Typer-based CLI for umlstream."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler

from . import __version__
from .config import load_settings
from .parser import SourceModelExtractor
from .pipeline import failure_message
from .project import ProjectLoadError, load_project
from .renderer import render_plantuml

console = Console()
err_console = Console(stderr=True)

app = typer.Typer(
    help="📐 umlstream: live PlantUML class diagrams for a source tree.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        typer.echo(f"umlstream v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    )
):
    """umlstream: watch a project and stream its class diagram to clients."""
    pass


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, rich_tracebacks=True, show_path=False)],
        force=True,
    )


@app.command("serve")
def serve(
    root: Optional[Path] = typer.Argument(None, help="Project root to watch (default: config or '.')."),
    descriptor: Optional[str] = typer.Option(
        None, "--descriptor", "-d", help="Project descriptor, e.g. tsconfig.json or pyproject.toml."
    ),
    host: Optional[str] = typer.Option(None, "--host", help="Interface to bind."),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Port to listen on."),
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to a config.toml."),
    no_watch: bool = typer.Option(False, "--no-watch", help="Do not watch the file system."),
    no_coalesce: bool = typer.Option(False, "--no-coalesce", help="Run one pass per change event."),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="DEBUG, INFO, WARNING, ERROR."),
):
    """🌐 Serve the live diagram over WebSocket.

    Example:
      umlstream serve ./frontend
      umlstream serve ./backend -d pyproject.toml --port 8421
    """
    settings = load_settings(
        config_file,
        root=root,
        descriptor=descriptor,
        host=host,
        port=port,
        watch=False if no_watch else None,
        coalesce=False if no_coalesce else None,
        log_level=log_level,
    )
    if not settings.root.is_dir():
        console.print(f"[red]✗[/red] Project root not found: {settings.root}")
        raise typer.Exit(1)

    _configure_logging(settings.log_level)

    from .server import serve as run_server

    url = f"ws://{settings.host}:{settings.port}/ws"
    console.print("\n[bold green]📐 umlstream[/bold green]")
    console.print(f"   Root:       [cyan]{settings.root.resolve()}[/cyan]")
    console.print(f"   Descriptor: {settings.descriptor}")
    console.print(f"   Stream:     {url}")
    console.print(f"   Watching:   {'yes' if settings.watch else 'no'}")
    console.print("\n   [dim]Press Ctrl+C to stop the server[/dim]\n")

    try:
        run_server(settings)
    except KeyboardInterrupt:
        pass
    finally:
        console.print("\n[dim]Server stopped.[/dim]")


@app.command("render")
def render(
    root: Path = typer.Argument(Path("."), help="Project root."),
    descriptor: str = typer.Option("tsconfig.json", "--descriptor", "-d", help="Project descriptor file."),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write the diagram here instead of stdout."),
):
    """🖨  Run one extraction pass and print the PlantUML diagram."""
    try:
        project = load_project(root, descriptor)
    except ProjectLoadError as exc:
        err_console.print(f"[red]✗[/red] {exc}")
        raise typer.Exit(1)

    result = SourceModelExtractor(project.language).extract(project.files, root=project.root)
    diagram = render_plantuml(result.model)

    if result.failures:
        err_console.print(f"[yellow]![/yellow] {failure_message(result.failures)}")

    if output is None:
        typer.echo(diagram)
    else:
        output.write_text(diagram + "\n", encoding="utf-8")
        console.print(
            f"[green]✓[/green] Wrote {len(result.model.classes)} class(es) to [cyan]{output}[/cyan]"
        )


if __name__ == "__main__":
    app()

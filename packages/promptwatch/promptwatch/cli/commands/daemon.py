"""CLI — Daemon management commands."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
import uvicorn
from rich.console import Console
from rich.table import Table

app = typer.Typer(help="Start and inspect the PromptWatch daemon.")
console = Console()


@app.command("start")
def start(
    host: str | None = typer.Option(None, help="Host to bind to (default: server.host)."),
    port: int | None = typer.Option(None, help="Port to listen on (default: server.port)."),
    config: Annotated[
        Path | None, typer.Option("--config", "-c", help="Path to config.yaml.")
    ] = None,
    log_level: str | None = typer.Option(None, help="Log level (default: logging.level)."),
) -> None:
    """Start the PromptWatch daemon in the foreground."""
    from promptwatch.api.server import create_app
    from promptwatch.config import Settings

    settings = Settings.load(config_file=config)
    if host is not None:
        settings.server.host = host
    if port is not None:
        settings.server.port = port
    if log_level is not None:
        settings.logging.level = log_level

    console.print(
        f"[bold green]Starting PromptWatch on {settings.server.host}:{settings.server.port}[/bold green]"
    )

    app_instance = create_app(settings=settings)

    uvicorn.run(
        app_instance,
        host=settings.server.host,
        port=settings.server.port,
        log_level=settings.logging.level,
    )


@app.command("status")
def status(
    host: str = typer.Option("127.0.0.1"),
    port: int = typer.Option(40100),
) -> None:
    """Check daemon status."""
    import httpx

    try:
        resp = httpx.get(f"http://{host}:{port}/health", timeout=5.0)
        data = resp.json()
    except httpx.HTTPError as exc:
        console.print(f"[red]Daemon unreachable: {exc}[/red]")
        raise typer.Exit(1)

    table = Table(title="PromptWatch Status")
    table.add_column("Key", style="cyan")
    table.add_column("Value", style="green")
    for k, v in data.items():
        table.add_row(str(k), str(v))
    console.print(table)

"""CLI — Result inspection and session-hook delivery.

``promptwatch results deliver`` is meant to be installed as a
``UserPromptSubmit`` session hook.  It reads the hook event JSON on stdin,
prints hook output JSON on stdout and always exits 0, so a broken results
directory can never block the user's prompt.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Annotated, Any

import typer
from rich.console import Console
from rich.table import Table

from promptwatch.exceptions import PromptWatchError

app = typer.Typer(help="Inspect and deliver completed watch Results.")
console = Console()


def _sink(config: Path | None) -> tuple[Any, Any]:
    from promptwatch.config import Settings
    from promptwatch.results.sink import ResultSink

    settings = Settings.load(config_file=config)
    return ResultSink(settings.storage.results_dir, settings.storage.archive_dir), settings


@app.command("list")
def list_results(
    config: Annotated[
        Path | None, typer.Option("--config", "-c", help="Path to config.yaml.")
    ] = None,
    archived: bool = typer.Option(False, "--archived", help="Show delivered Results instead."),
) -> None:
    """List pending (or archived) Results."""
    sink, _ = _sink(config)
    paths = sink.archived() if archived else sink.pending()

    if not paths:
        console.print("No results found.")
        return

    table = Table(title="Archived results" if archived else "Pending results")
    table.add_column("Watch", style="cyan", no_wrap=True)
    table.add_column("Trigger")
    table.add_column("Exit")
    table.add_column("Fired at")
    for path in paths:
        try:
            result = sink.load(path)
        except PromptWatchError as exc:
            table.add_row(path.stem, f"[red]{exc.message}[/red]", "-", "-")
            continue
        table.add_row(
            result.watch_id,
            f"{result.trigger} {' '.join(result.params)}",
            str(result.action.exit_code),
            result.to_dict()["fired_at"],
        )
    console.print(table)


@app.command("deliver")
def deliver(
    config: Annotated[
        Path | None, typer.Option("--config", "-c", help="Path to config.yaml.")
    ] = None,
) -> None:
    """Session hook: archive pending Results and emit them as additional context."""
    from promptwatch.logging import configure_logging, get_logger
    from promptwatch.results.delivery import ResultDelivery, build_hook_output

    # Logs go to stderr; stdout carries only the hook payload.
    configure_logging(level="warning")

    output: dict[str, Any] = build_hook_output([])
    try:
        json.loads(sys.stdin.read() or "null")
    except ValueError:
        typer.echo(json.dumps(output))
        return

    try:
        sink, settings = _sink(config)
        output = ResultDelivery(sink, settings.results.summary_max_chars).hook_output()
    except (PromptWatchError, OSError, ValueError) as exc:
        get_logger(__name__).warning("result_delivery_failed", error=str(exc))

    typer.echo(json.dumps(output))

"""CLI — Trigger catalog commands (reads the local trigger directory)."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

app = typer.Typer(help="Inspect installed trigger executables.")
console = Console()


@app.callback()
def triggers_callback() -> None:
    pass


@app.command("list")
def list_triggers(
    triggers_dir: Annotated[
        Path | None, typer.Option("--dir", help="Trigger directory (default: storage.triggers_dir).")
    ] = None,
    config: Annotated[
        Path | None, typer.Option("--config", "-c", help="Path to config.yaml.")
    ] = None,
    json_output: bool = typer.Option(False, "--json"),
) -> None:
    """List available triggers with their metadata."""
    from promptwatch.config import Settings
    from promptwatch.triggers.catalog import TriggerCatalog

    directory = triggers_dir or Settings.load(config_file=config).storage.triggers_dir
    triggers = TriggerCatalog(directory).list_triggers()

    if json_output:
        typer.echo(json.dumps([t.to_dict() for t in triggers], indent=2))
        return

    if not triggers:
        console.print(f"No triggers found. Add executables to {directory}")
        return

    table = Table(title=f"Triggers in {directory}")
    table.add_column("Name", style="cyan", no_wrap=True)
    table.add_column("Usage")
    table.add_column("Default interval")
    table.add_column("Description")
    for t in triggers:
        table.add_row(t.name, t.usage(), t.default_interval or "-", t.description)
    console.print(table)

"""PromptWatch CLI — Entry point.

Usage:
    promptwatch daemon start
    promptwatch daemon status
    promptwatch watches register <trigger> [params...] --prompt "..."
    promptwatch watches list [--status active]
    promptwatch watches get <watch_id>
    promptwatch watches cancel <watch_id>
    promptwatch watches delete <watch_id>
    promptwatch triggers list
    promptwatch results list
    promptwatch results deliver      (session hook: JSON on stdin → JSON on stdout)
    promptwatch version
"""

from __future__ import annotations

import typer
from rich.console import Console

from promptwatch import __version__
from promptwatch.cli.commands import daemon, results, triggers, watches

app = typer.Typer(
    name="promptwatch",
    help="PromptWatch — run a prompt once an external condition becomes true.",
    no_args_is_help=True,
    pretty_exceptions_enable=False,
)

console = Console()

app.add_typer(daemon.app, name="daemon")
app.add_typer(watches.app, name="watches")
app.add_typer(triggers.app, name="triggers")
app.add_typer(results.app, name="results")


@app.callback()
def main_callback() -> None:
    pass


@app.command("version")
def version() -> None:
    """Print the PromptWatch version."""
    console.print(f"promptwatch {__version__}")


if __name__ == "__main__":
    app()

"""CLI — Watch registration, listing and cancellation (talks to the daemon)."""

from __future__ import annotations

import json
from typing import Any

import typer
from rich.console import Console
from rich.syntax import Syntax
from rich.table import Table

app = typer.Typer(help="Register, inspect, and cancel watches.")
console = Console()


def _client(host: str, port: int) -> "httpx.Client":
    import httpx

    return httpx.Client(base_url=f"http://{host}:{port}", timeout=30.0)


def _error_message(exc: Exception) -> str:
    """Prefer the daemon's ErrorResponse text over the raw HTTP error."""
    import httpx

    if isinstance(exc, httpx.HTTPStatusError):
        try:
            return str(exc.response.json().get("error") or exc)
        except ValueError:
            return str(exc)
    return str(exc)


def _call(host: str, port: int, method: str, path: str, **kwargs: Any) -> Any:
    import httpx

    try:
        with _client(host, port) as client:
            resp = getattr(client, method)(path, **kwargs)
            resp.raise_for_status()
            return resp.json() if resp.status_code != 204 else None
    except httpx.HTTPError as exc:
        console.print(f"[red]Error: {_error_message(exc)}[/red]")
        raise typer.Exit(1)


@app.command("register")
def register_watch(
    trigger: str = typer.Argument(help="Trigger name, e.g. gh-pr-merged."),
    params: list[str] = typer.Argument(None, help="Positional trigger arguments."),
    prompt: str = typer.Option(..., "--prompt", "-p", help="Prompt to run when the trigger fires."),
    cwd: str | None = typer.Option(None, "--cwd", help="Working directory for the action."),
    ttl: str | None = typer.Option(None, "--ttl", help='Time-to-live, e.g. "48h".'),
    interval: str | None = typer.Option(None, "--interval", help='Polling interval, e.g. "30s".'),
    host: str = typer.Option("127.0.0.1"),
    port: int = typer.Option(40100),
) -> None:
    """Register a new watch."""
    payload: dict[str, Any] = {
        "trigger": trigger,
        "params": list(params or []),
        "action": {"prompt": prompt, "cwd": cwd},
        "ttl": ttl,
        "interval": interval,
    }
    result = _call(host, port, "post", "/watches", json=payload)

    console.print(f"[green]Watch registered:[/green] {result['watch_id']}")
    console.print(f"Expires: {result['expires_at']}")
    console.print(result.get("message", ""))


@app.command("list")
def list_watches(
    host: str = typer.Option("127.0.0.1"),
    port: int = typer.Option(40100),
    watch_status: str | None = typer.Option(
        None, "--status", help="Filter: active, fired, expired, cancelled, error, all."
    ),
) -> None:
    """List registered watches."""
    query = {"status": watch_status} if watch_status else {}
    data = _call(host, port, "get", "/watches", params=query)

    if not data:
        console.print("No watches found.")
        return

    table = Table(title=f"Watches ({len(data)})")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Trigger")
    table.add_column("Params")
    table.add_column("Status")
    table.add_column("Expires")
    for w in data:
        table.add_row(w["watch_id"], w["trigger"], " ".join(w["params"]), w["status"], w["expires_at"])
    console.print(table)


@app.command("get")
def get_watch(
    watch_id: str = typer.Argument(),
    host: str = typer.Option("127.0.0.1"),
    port: int = typer.Option(40100),
) -> None:
    """Show the full record of a watch."""
    data = _call(host, port, "get", f"/watches/{watch_id}")
    console.print(Syntax(json.dumps(data, indent=2), "json"))


@app.command("cancel")
def cancel_watch(
    watch_id: str = typer.Argument(),
    host: str = typer.Option("127.0.0.1"),
    port: int = typer.Option(40100),
) -> None:
    """Cancel an active watch."""
    _call(host, port, "put", f"/watches/{watch_id}/cancel")
    console.print(f"[yellow]Watch {watch_id} cancelled.[/yellow]")


@app.command("delete")
def delete_watch(
    watch_id: str = typer.Argument(),
    host: str = typer.Option("127.0.0.1"),
    port: int = typer.Option(40100),
) -> None:
    """Delete a finished (fired, expired, cancelled or errored) watch."""
    _call(host, port, "delete", f"/watches/{watch_id}")
    console.print(f"Watch {watch_id} deleted.")

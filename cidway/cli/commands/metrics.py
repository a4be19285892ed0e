"""``cidway metrics``: read usage counters."""

from __future__ import annotations

import typer
from rich.console import Console

from cidway.cli.commands._services import load_services

console = Console()

metrics_app = typer.Typer(
    help="Read usage counters.",
    no_args_is_help=True,
)


@metrics_app.command(name="allocated", help="Total bytes stored by a space.")
def allocated_cmd(consumer: str = typer.Argument(..., help="Space DID.")) -> None:
    allocated = load_services().space_metrics.get_allocated(consumer)
    console.print(f"{consumer}: [bold]{allocated}[/bold] bytes")

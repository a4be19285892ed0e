"""``cidway index``: look up invocations and receipts by task."""

from __future__ import annotations

import typer
from rich.console import Console
from rich.table import Table

from cidway.cli.commands._services import load_services
from cidway.core.hasher import cid_key
from cidway.core.results import Err

console = Console()

index_app = typer.Typer(
    help="Query the agent message index.",
    no_args_is_help=True,
)


def _fail(error) -> None:
    console.print(f"[bold red]{error.name}:[/bold red] {error.message}")
    raise typer.Exit(code=1)


@index_app.command(name="invocation", help="Show the invocation of a task.")
def invocation_cmd(task: str = typer.Argument(..., help="Task CID.")) -> None:
    found = load_services().agent_index.get_invocation(task)
    if isinstance(found, Err):
        _fail(found.error)

    invocation = found.ok
    table = Table(title=f"Invocation {cid_key(invocation.cid)}")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Task", cid_key(invocation.task))
    table.add_row("Issuer", invocation.issuer)
    table.add_row("Audience", invocation.audience)
    for cap in invocation.capabilities:
        table.add_row("Capability", f"{cap.can} on {cap.resource}")
    verified = "[green]Yes[/green]" if invocation.verify() else "[red]No[/red]"
    table.add_row("Signature", verified)
    console.print(table)


@index_app.command(name="receipt", help="Show the receipt for a task.")
def receipt_cmd(task: str = typer.Argument(..., help="Task CID.")) -> None:
    found = load_services().agent_index.get_receipt(task)
    if isinstance(found, Err):
        _fail(found.error)

    receipt = found.ok
    table = Table(title=f"Receipt {cid_key(receipt.cid)}")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Ran", cid_key(receipt.ran_cid))
    table.add_row("Issuer", receipt.issuer)
    outcome = "[green]ok[/green]" if receipt.is_ok else "[red]error[/red]"
    table.add_row("Outcome", outcome)
    verified = "[green]Yes[/green]" if receipt.verify() else "[red]No[/red]"
    table.add_row("Signature", verified)
    console.print(table)

"""``cidway allocations``: inspect the per-space allocation ledger."""

from __future__ import annotations

import typer
from rich.console import Console
from rich.table import Table

from cidway.cli.commands._services import load_services
from cidway.core.hasher import base58btc_decode, base58btc_encode, cid_key
from cidway.core.results import Err
from cidway.models.allocations import ListOptions

console = Console()

allocations_app = typer.Typer(
    help="Inspect the allocation ledger.",
    no_args_is_help=True,
)


@allocations_app.command(name="list", help="List allocations of a space by insertion time.")
def list_cmd(
    space: str = typer.Argument(..., help="Space DID (did:key:...)."),
    cursor: str = typer.Option(None, "--cursor", "-c", help="Resume after this page cursor."),
    size: int = typer.Option(20, "--size", "-n", min=1, help="Page size."),
    reverse: bool = typer.Option(False, "--reverse", "-r", help="Newest first."),
) -> None:
    page = load_services().allocations.list(
        space, ListOptions(cursor=cursor, size=size, reverse=reverse)
    )
    if isinstance(page, Err):
        console.print(f"[bold red]{page.error.name}:[/bold red] {page.error.message}")
        raise typer.Exit(code=1)

    if not page.ok.results:
        console.print(f"[dim]No allocations in {space}.[/dim]")
        return

    table = Table(title=f"Allocations: {space}")
    table.add_column("Digest", style="cyan")
    table.add_column("Size", justify="right")
    table.add_column("Inserted")
    for item in page.ok.results:
        table.add_row(
            base58btc_encode(item.blob.digest),
            str(item.blob.size),
            item.inserted_at.isoformat(timespec="seconds"),
        )
    console.print(table)
    if page.ok.cursor:
        console.print(f"[dim]cursor: {page.ok.cursor}[/dim]")


@allocations_app.command(name="get", help="Show one allocation.")
def get_cmd(
    space: str = typer.Argument(..., help="Space DID (did:key:...)."),
    digest: str = typer.Argument(..., help="base58btc multihash of the blob (z...)."),
) -> None:
    try:
        raw = base58btc_decode(digest)
    except (KeyError, ValueError) as exc:
        console.print(f"[bold red]Invalid digest:[/bold red] {exc}")
        raise typer.Exit(code=2)

    found = load_services().allocations.get(space, raw)
    if isinstance(found, Err):
        console.print(f"[bold red]{found.error.name}:[/bold red] {found.error.message}")
        raise typer.Exit(code=1)

    allocation = found.ok
    table = Table(title=f"Allocation {digest}")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Space", allocation.space)
    table.add_row("Size", str(allocation.blob.size))
    table.add_row("Cause", cid_key(allocation.cause))
    table.add_row("Inserted", allocation.inserted_at.isoformat(timespec="seconds"))
    console.print(table)

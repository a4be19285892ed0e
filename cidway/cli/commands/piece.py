"""``cidway piece FILE``: compute the piece CID of a file and claim it."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from cidway.cli.commands._services import load_services
from cidway.core.hasher import cid_key, raw_cid
from cidway.core.piece import compute_piece_cid, piece_info, piece_v2_to_v1

console = Console()


def piece_cmd(
    file: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True),
    register: bool = typer.Option(
        True,
        "--register/--no-register",
        help="Record the raw CID == piece CID equivalence claim.",
    ),
) -> None:
    """Compute the v2 piece CID (FRC-0069) of FILE."""
    data = file.read_bytes()
    if not data:
        console.print("[bold red]Cannot compute a piece CID of an empty file.[/bold red]")
        raise typer.Exit(code=1)

    if register:
        content, piece = load_services().claims.register_content(data)
    else:
        content, piece = raw_cid(data), compute_piece_cid(data)
    info = piece_info(piece)

    table = Table(title=str(file))
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Raw CID", cid_key(content))
    table.add_row("Piece CID (v2)", cid_key(piece))
    table.add_row("Piece CID (v1)", cid_key(piece_v2_to_v1(piece)))
    table.add_row("Payload size", str(info.payload_size))
    table.add_row("Padded size", str(info.padded_size))
    table.add_row("Tree height", str(info.height))
    table.add_row("Claim recorded", "[green]Yes[/green]" if register else "[dim]No[/dim]")
    console.print(table)

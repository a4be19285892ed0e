"""``cidway resolve CID``: print the signed URL a CID redirects to."""

from __future__ import annotations

import typer
from rich.console import Console

from cidway.cli.commands._services import load_services
from cidway.core.hasher import parse_cid
from cidway.core.redirect import locate, status_for
from cidway.core.results import Err

console = Console()


def resolve_cmd(
    cid: str = typer.Argument(..., help="Content CID (raw or car) or v2 piece CID."),
    expires_in: int = typer.Option(
        None, "--expires-in", "-e", min=1, help="URL lifetime in seconds."
    ),
) -> None:
    """Resolve a CID to a signed retrieval URL."""
    try:
        parsed = parse_cid(cid)
    except ValueError as exc:
        console.print(f"[bold red]Invalid CID:[/bold red] {exc}")
        raise typer.Exit(code=2)

    services = load_services()
    located = locate(parsed, services.claims, services.locator.with_expires_in(expires_in))
    if isinstance(located, Err):
        status = status_for(located.error)
        console.print(
            f"[bold red]{located.error.name}[/bold red] ({status}): {located.error.message}"
        )
        raise typer.Exit(code=1)
    console.print(located.ok, soft_wrap=True, highlight=False)

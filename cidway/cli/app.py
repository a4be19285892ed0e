"""Main Typer application: imports and registers all CLI commands.

Entry point: ``cidway`` (configured via pyproject.toml console_scripts).
"""

from __future__ import annotations

import typer

from cidway.cli.commands.allocations import allocations_app
from cidway.cli.commands.index import index_app
from cidway.cli.commands.metrics import metrics_app
from cidway.cli.commands.piece import piece_cmd
from cidway.cli.commands.resolve import resolve_cmd
from cidway.cli.commands.serve import serve_cmd
from cidway.config import CidwayConfig
from cidway.logs import configure_logging

app = typer.Typer(
    name="cidway",
    help="cidway: CID redirects, allocation ledger and agent message index.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)


@app.callback()
def main_callback(
    log_level: str = typer.Option(
        None, "--log-level", help="Logging level (default: CIDWAY_LOG_LEVEL)."
    ),
) -> None:
    configure_logging(log_level or CidwayConfig().log_level)


# Register subcommands
app.command(name="serve", help="Run the redirect gateway.")(serve_cmd)
app.command(name="resolve", help="Resolve a CID to a signed URL.")(resolve_cmd)
app.command(name="piece", help="Compute a file's piece CID and record the claim.")(piece_cmd)
app.add_typer(allocations_app, name="allocations")
app.add_typer(index_app, name="index")
app.add_typer(metrics_app, name="metrics")


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()

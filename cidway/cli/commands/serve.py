"""``cidway serve``: run the redirect gateway under uvicorn."""

from __future__ import annotations

import typer
import uvicorn
from rich.console import Console

from cidway.cli.commands._services import load_services
from cidway.http.app import create_app

console = Console()


def serve_cmd(
    host: str = typer.Option(None, "--host", help="Bind address (default: CIDWAY_HOST)."),
    port: int = typer.Option(None, "--port", "-p", help="Bind port (default: CIDWAY_PORT)."),
) -> None:
    """Serve ``/{cid}``, ``/raw/{key}`` and ``/key/{key}`` redirects."""
    services = load_services()
    config = services.config
    host = host or config.host
    port = port or config.port
    console.print(
        f"[bold cyan]cidway[/bold cyan] serving bucket [green]{config.bucket_name}[/green] "
        f"({config.object_store}, {config.environment}) on http://{host}:{port}"
    )
    uvicorn.run(
        create_app(services),
        host=host,
        port=port,
        log_level=config.log_level.lower(),
        log_config=None,
    )

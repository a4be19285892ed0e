"""Process-level logging setup.  Called by entry points, never on import."""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler


def configure_logging(level: str | int = "INFO", *, console: Console | None = None) -> None:
    """Route the root logger through a ``RichHandler`` at *level*.

    Safe to call more than once; later calls replace the handler.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    logging.basicConfig(
        level=level,
        format="%(name)s: %(message)s",
        datefmt="[%X]",
        handlers=[
            RichHandler(
                console=console or Console(stderr=True),
                rich_tracebacks=True,
                show_path=False,
            )
        ],
        force=True,
    )
    # uvicorn installs its own handlers; keep its access log quiet below INFO.
    logging.getLogger("uvicorn.access").setLevel(max(level, logging.INFO))

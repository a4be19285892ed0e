"""cidway CLI: Typer-based command-line interface.

Provides the ``cidway`` command with subcommands for serving the redirect
gateway, resolving CIDs, computing piece CIDs, and inspecting the
allocation ledger, the agent message index and usage metrics.

All output uses Rich for formatted terminal display.
"""

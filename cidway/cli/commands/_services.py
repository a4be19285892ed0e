"""Shared service construction for CLI commands."""

from __future__ import annotations

from cidway.config import CidwayConfig, Services, build_services


def load_services() -> Services:
    """Build services from a fresh ``CidwayConfig`` (env read at call time)."""
    return build_services(CidwayConfig())

"""Command-line interface for swarm-cli."""

from __future__ import annotations

from .commands import app, configure_logging


def main() -> None:
    """Console script entry point."""
    app()


__all__ = ["app", "configure_logging", "main"]

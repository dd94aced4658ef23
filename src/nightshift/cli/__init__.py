"""nightshift command-line interface (Typer)."""

from nightshift.cli.app import app

__all__ = ["app"]

"""Command line interface."""

from tripsight.cli.main import cli, main

__all__ = ["cli", "main"]

"""Command-line interface for multigsea."""

from multigsea.cli.main import cli

__all__ = ["cli"]

"""Command line interface."""

from storyarc.cli.main import cli

__all__ = ["cli"]

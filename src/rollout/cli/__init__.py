"""
CLI layer for rollout-spine.

A Typer application whose sub-commands delegate to ``rollout.deploy``.
This package handles only terminal transport: argument parsing, coloured
output, table formatting and exit codes.

Entry point::

    rollout --help
"""

from rollout.cli.app import app

__all__ = ["app"]

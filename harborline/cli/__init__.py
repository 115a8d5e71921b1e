"""Harborline CLI: Typer-based command-line interface.

Provides the ``harborline`` command with subcommands for running and
validating pipeline definitions, probing endpoints, and reading the run
ledger.

All output uses Rich for formatted terminal display.
"""

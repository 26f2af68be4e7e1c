"""Crossforge CLI: Typer-based command-line interface.

Provides the ``crossforge`` command with subcommands for listing the
build matrix, inspecting job environments, resolving the toolchain,
building and packaging variants, and running the Complement suite.

All output uses Rich for formatted terminal display.
"""

"""Helpers shared by the CLI commands."""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.markup import escape

from crossforge.config import settings
from crossforge.core.matrix import MatrixSelection
from crossforge.errors import CrossforgeError
from crossforge.models.config import MatrixConfig, load_matrix_config
from crossforge.models.variants import AllocatorKind, BuildProfile

console = Console()

CONFIG_OPTION_HELP = "Path to crossforge.toml (or a pyproject.toml with [tool.crossforge])."


def abort(exc: CrossforgeError) -> NoReturn:
    """Print a fatal error and exit non-zero."""
    console.print(f"[bold red]Error:[/bold red] {escape(str(exc))}", highlight=False)
    raise typer.Exit(code=1)


def load_config(path: Path | None) -> MatrixConfig:
    """Load the matrix configuration, exiting with a message on failure."""
    try:
        return load_matrix_config(path or settings.matrix_config_path)
    except CrossforgeError as exc:
        abort(exc)


def parse_selection(
    allocators: Sequence[str] | None,
    profiles: Sequence[str] | None,
    targets: Sequence[str] | None,
    cargo_args: Sequence[str] | None = None,
) -> MatrixSelection:
    """Turn repeated CLI options into a MatrixSelection."""
    try:
        return MatrixSelection(
            allocators=[AllocatorKind(a) for a in allocators or ()],
            profiles=[BuildProfile(p) for p in profiles or ()],
            targets=list(targets or ()),
            extra_cargo_args=tuple(cargo_args or ()),
        )
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc

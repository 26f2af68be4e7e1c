"""``crossforge matrix``: list the jobs of a matrix selection.

Resolves every selected cell into its job (features, storage flavour,
environment, job id) without building anything.  Cells whose native
dependencies cannot be located are listed separately.
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional

import typer
from rich.markup import escape

from crossforge.cli.common import CONFIG_OPTION_HELP, abort, console, load_config, parse_selection
from crossforge.core.hasher import normalize_sha256
from crossforge.core.orchestrator import MatrixOrchestrator
from crossforge.errors import CrossforgeError, DependencyNotFound
from crossforge.monitor.renderer import MatrixRenderer


def matrix_cmd(
    allocator: Optional[List[str]] = typer.Option(
        None,
        "--allocator",
        "-a",
        help="Allocator variant (default, jemalloc, hmalloc). Repeatable; all if omitted.",
    ),
    profile: Optional[List[str]] = typer.Option(
        None,
        "--profile",
        "-p",
        help="Build profile (dev, release). Repeatable; all if omitted.",
    ),
    target: Optional[List[str]] = typer.Option(
        None,
        "--target",
        "-t",
        help="Target ('native' or a cross triple). Repeatable; all if omitted.",
    ),
    config_path: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help=CONFIG_OPTION_HELP,
    ),
) -> None:
    """List the build jobs of a matrix selection."""
    config = load_config(config_path)
    selection = parse_selection(allocator, profile, target)

    try:
        toolchain_sha256 = (
            normalize_sha256(config.toolchain_sha256) if config.toolchain_sha256 else ""
        )
    except ValueError as exc:
        console.print(f"[bold red]Error:[/bold red] {escape(str(exc))}")
        raise typer.Exit(code=1)

    try:
        generator = MatrixOrchestrator(config).generator(toolchain_sha256)
        variants = generator.expand(selection)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc
    except CrossforgeError as exc:
        abort(exc)

    jobs = []
    missing: list[tuple[str, DependencyNotFound]] = []
    for variant in variants:
        try:
            jobs.append(generator.job_for(variant))
        except DependencyNotFound as exc:
            missing.append((variant.describe(), exc))

    renderer = MatrixRenderer(console=console)
    console.print(renderer.jobs_table(jobs))
    if missing:
        console.print()
        console.print("[bold red]Unresolvable cells:[/bold red]")
        for label, exc in missing:
            console.print(f"  [red]- {escape(label)}:[/red] {escape(str(exc))}", highlight=False)
        raise typer.Exit(code=1)

"""``crossforge build [OUTPUTS]``: build matrix variants.

Without arguments the selection options pick the cells; with named
outputs exactly those are built.  ``--package`` also wraps each binary
into an image archive and stores it in the artifact store.  Exits 1 if
any cell failed; the other cells still run to completion.
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional

import typer

from crossforge.cli.common import (
    CONFIG_OPTION_HELP,
    abort,
    console,
    load_config,
    parse_selection,
)
from crossforge.config import settings
from crossforge.core.orchestrator import JobStatus, MatrixOrchestrator
from crossforge.errors import CrossforgeError
from crossforge.models.variants import BuildProfile
from crossforge.monitor.renderer import MatrixRenderer


def build_cmd(
    outputs: Optional[List[str]] = typer.Argument(
        None,
        help="Named outputs to build (e.g. 'default', 'oci-image-jemalloc').",
    ),
    allocator: Optional[List[str]] = typer.Option(
        None, "--allocator", "-a", help="Allocator variant. Repeatable."
    ),
    profile: Optional[List[str]] = typer.Option(
        None,
        "--profile",
        "-p",
        help="Build profile. Repeatable; with OUTPUTS only the first is used.",
    ),
    target: Optional[List[str]] = typer.Option(
        None, "--target", "-t", help="Target ('native' or a cross triple). Repeatable."
    ),
    cargo_arg: Optional[List[str]] = typer.Option(
        None, "--cargo-arg", help="Extra argument passed to cargo. Repeatable."
    ),
    package: bool = typer.Option(
        False,
        "--package",
        help="Package every built binary into an image archive.",
    ),
    workers: Optional[int] = typer.Option(
        None,
        "--workers",
        "-j",
        min=1,
        help="Maximum concurrent build jobs (defaults to CROSSFORGE_MAX_WORKERS).",
    ),
    config_path: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help=CONFIG_OPTION_HELP,
    ),
) -> None:
    """Build the selected matrix cells."""
    config = load_config(config_path)
    selection = parse_selection(allocator, profile, target, cargo_arg)

    run_settings = settings
    if workers is not None:
        run_settings = settings.model_copy(update={"max_workers": workers})
    orchestrator = MatrixOrchestrator(config, settings=run_settings)

    try:
        outcomes = orchestrator.run(
            selection,
            outputs=outputs or (),
            profile=selection.profiles[0] if selection.profiles else BuildProfile.RELEASE,
            package=package,
        )
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc
    except CrossforgeError as exc:
        abort(exc)

    MatrixRenderer(console=console).print_outcomes(outcomes)
    failed = [o for o in outcomes if o.status is JobStatus.FAILED]
    if failed:
        console.print(f"[bold red]{len(failed)} of {len(outcomes)} cell(s) failed.[/bold red]")
        raise typer.Exit(code=1)
    console.print(f"[bold green]{len(outcomes)} cell(s) succeeded.[/bold green]")

"""``crossforge env OUTPUT``: show the build environment of one named output.

Prints the variables the composer derives for the output's job, either
as a table or as shell ``export`` lines (``--export``) for reproducing a
build by hand.
"""

from __future__ import annotations

import shlex
from pathlib import Path
from typing import Optional

import typer

from crossforge.cli.common import CONFIG_OPTION_HELP, abort, console, load_config
from crossforge.core.hasher import normalize_sha256
from crossforge.core.orchestrator import MatrixOrchestrator
from crossforge.errors import CrossforgeError
from crossforge.models.variants import BuildProfile
from crossforge.monitor.renderer import MatrixRenderer


def env_cmd(
    output: str = typer.Argument(
        ...,
        help="Named output, e.g. 'jemalloc' or 'default-aarch64-unknown-linux-musl'.",
    ),
    profile: BuildProfile = typer.Option(
        BuildProfile.RELEASE,
        "--profile",
        "-p",
        help="Build profile.",
    ),
    export: bool = typer.Option(
        False,
        "--export",
        "-e",
        help="Print shell export lines instead of a table.",
    ),
    config_path: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help=CONFIG_OPTION_HELP,
    ),
) -> None:
    """Show the environment of one named output's build job."""
    config = load_config(config_path)
    try:
        toolchain_sha256 = (
            normalize_sha256(config.toolchain_sha256) if config.toolchain_sha256 else ""
        )
        generator = MatrixOrchestrator(config).generator(toolchain_sha256)
        variant = generator.variant_for_output(output, profile)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc
    except CrossforgeError as exc:
        abort(exc)

    try:
        job = generator.job_for(variant)
    except CrossforgeError as exc:
        abort(exc)

    if export:
        for key, value in job.environment.items():
            typer.echo(f"export {key}={shlex.quote(value)}")
        return

    renderer = MatrixRenderer(console=console)
    console.print(renderer.environment_table(f"{variant.describe()} ({job.job_id})", job.environment))
    console.print(f"[dim]cargo {' '.join(job.cargo_args)}[/dim]", highlight=False)

"""Main Typer application: imports and registers all CLI commands.

Entry point: ``crossforge`` (configured via pyproject.toml scripts).

Commands: matrix, env, resolve, build, package, complement, normalize.
"""

from __future__ import annotations

import logging

import typer
from rich.logging import RichHandler

from crossforge.cli.commands.build import build_cmd
from crossforge.cli.commands.complement import complement_cmd, normalize_cmd
from crossforge.cli.commands.env import env_cmd
from crossforge.cli.commands.matrix import matrix_cmd
from crossforge.cli.commands.package import package_cmd
from crossforge.cli.commands.resolve import resolve_cmd
from crossforge.config import settings

app = typer.Typer(
    name="crossforge",
    help="Crossforge: reproducible cross-compilation matrix, images and Complement runs.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)


@app.callback()
def _configure(
    log_level: str = typer.Option(
        None,
        "--log-level",
        help="Logging level (defaults to CROSSFORGE_LOG_LEVEL).",
    ),
) -> None:
    """Configure logging before any command runs."""
    level = (log_level or settings.log_level).upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
        force=True,
    )


# Register subcommands
app.command(name="matrix", help="List the jobs of a matrix selection.")(matrix_cmd)
app.command(name="env", help="Show the build environment of one named output.")(env_cmd)
app.command(name="resolve", help="Verify the pinned Rust toolchain.")(resolve_cmd)
app.command(name="build", help="Build (and optionally package) matrix variants.")(build_cmd)
app.command(name="package", help="Package a built binary into an image archive.")(package_cmd)
app.command(name="complement", help="Run the Complement suite against an image.")(complement_cmd)
app.command(name="normalize", help="Normalize a raw Complement event log.")(normalize_cmd)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()

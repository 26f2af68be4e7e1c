"""``crossforge resolve``: verify the pinned Rust toolchain."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.panel import Panel

from crossforge.cli.common import CONFIG_OPTION_HELP, abort, console, load_config
from crossforge.core.hasher import to_sri
from crossforge.core.orchestrator import MatrixOrchestrator
from crossforge.errors import CrossforgeError


def resolve_cmd(
    config_path: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help=CONFIG_OPTION_HELP,
    ),
) -> None:
    """Check the installed toolchain against its version and hash pin."""
    config = load_config(config_path)
    try:
        toolchain = MatrixOrchestrator(config).resolve_toolchain()
    except CrossforgeError as exc:
        abort(exc)

    console.print(
        Panel(
            f"[bold]Declared:[/bold] {toolchain.spec.version}\n"
            f"[bold]Installed:[/bold] {toolchain.actual_version}\n"
            f"[bold]Root:[/bold] {toolchain.root}\n"
            f"[bold]Hash:[/bold] {to_sri(toolchain.actual_sha256)}",
            title="[bold green]Toolchain verified[/bold green]",
            border_style="green",
            padding=(1, 2),
        ),
        highlight=False,
    )

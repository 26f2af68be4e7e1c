"""``crossforge complement IMAGE`` and ``crossforge normalize RAW OUT``.

``complement`` loads an image archive, runs the Complement suite against
it and writes the raw and normalized result artifacts.  Failing
conformance tests do not make the command fail; only a harness failure
(load error, suite crash, timeout) does.

``normalize`` re-derives a normalized artifact from a raw event log.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer

from crossforge.cli.common import CONFIG_OPTION_HELP, abort, console, load_config
from crossforge.config import settings
from crossforge.core.artifact_store import ContentAddressedStore
from crossforge.core.harness import ComplementHarness, DockerRuntime, normalize_file
from crossforge.core.packager import read_image_reference
from crossforge.errors import CrossforgeError
from crossforge.monitor.renderer import MatrixRenderer


def complement_cmd(
    image: Path = typer.Argument(
        ...,
        help="Image archive produced by 'crossforge package --complement'.",
    ),
    reference: Optional[str] = typer.Option(
        None,
        "--reference",
        "-r",
        help="Image reference (name:tag); read from the archive if omitted.",
    ),
    suite_dir: Optional[Path] = typer.Option(
        None,
        "--suite-dir",
        help="Complement checkout (defaults to the configured complement_dir).",
    ),
    raw: Optional[Path] = typer.Option(None, "--raw", help="Raw event log path."),
    normalized: Optional[Path] = typer.Option(
        None, "--normalized", help="Normalized result path."
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        help="Suite timeout in seconds (defaults to CROSSFORGE_SUITE_TIMEOUT_SECONDS).",
    ),
    docker: str = typer.Option("docker", "--docker", help="Container runtime executable."),
    store: bool = typer.Option(
        False,
        "--store",
        help="Also store both result artifacts in the artifact store.",
    ),
    config_path: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help=CONFIG_OPTION_HELP,
    ),
) -> None:
    """Run the Complement suite against a packaged image."""
    if suite_dir is None:
        config = load_config(config_path)
        suite_dir = config.resolve_path(config.complement_dir)
    try:
        image_reference = reference or read_image_reference(image)
        harness = ComplementHarness(
            DockerRuntime(docker),
            suite_dir=suite_dir,
            results_dir=settings.results_dir,
            timeout=timeout or settings.suite_timeout_seconds,
            kill_grace=settings.suite_kill_grace_seconds,
            allow_concurrent=settings.allow_concurrent_harness_runs,
        )
        report = harness.run(image, image_reference, raw_path=raw, normalized_path=normalized)
    except CrossforgeError as exc:
        abort(exc)

    console.print(MatrixRenderer(console=console).harness_panel(report))
    if store:
        artifacts = ContentAddressedStore(settings.artifact_store_path)
        outputs = (
            ("complement-raw", report.raw_path),
            ("complement-normalized", report.normalized_path),
        )
        for kind, path in outputs:
            stored = artifacts.store_file(
                path,
                name=path.name,
                artifact_type=kind,
                metadata={"reference": image_reference},
            )
            console.print(f"[bold]Stored {kind}:[/bold] {stored.content_address}", highlight=False)


def normalize_cmd(
    raw: Path = typer.Argument(..., help="Raw 'go test -json' event log."),
    out: Path = typer.Argument(..., help="Where to write the normalized results."),
) -> None:
    """Filter, project and sort a raw event log."""
    if not raw.is_file():
        console.print(f"[bold red]Raw log not found:[/bold red] {raw}")
        raise typer.Exit(code=1)
    records, skipped = normalize_file(raw, out)
    console.print(
        f"[bold green]Wrote {len(records)} record(s)[/bold green] to {out}",
        highlight=False,
    )
    if skipped:
        console.print(f"[yellow]Skipped {skipped} non-JSON line(s).[/yellow]")

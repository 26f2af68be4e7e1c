"""``crossforge package BINARY``: package a built binary into an image archive.

Writes a reproducible ``docker load`` archive.  ``--complement`` builds
the conformance-test image instead (embedded config, certificate
bootstrap); ``--store`` also copies the archive into the artifact store.
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional

import typer
from rich.panel import Panel

from crossforge.cli.common import CONFIG_OPTION_HELP, abort, console, load_config
from crossforge.config import settings
from crossforge.core.artifact_store import ContentAddressedStore
from crossforge.core.packager import ImagePackager
from crossforge.core.revision import source_date_epoch
from crossforge.errors import CrossforgeError
from crossforge.models.platforms import PlatformTriple


def package_cmd(
    binary: Path = typer.Argument(
        ...,
        help="Path to the built server binary.",
    ),
    triple: Optional[str] = typer.Option(
        None,
        "--triple",
        help="Triple the binary was built for (defaults to the native triple).",
    ),
    name: Optional[str] = typer.Option(
        None,
        "--name",
        "-n",
        help="Image name (defaults to the configured binary name).",
    ),
    tag: str = typer.Option("main", "--tag", help="Image tag."),
    output: Optional[Path] = typer.Option(
        None,
        "--output",
        "-o",
        help="Archive path (defaults to <workdir>/images/<name>-<tag>.tar).",
    ),
    base_layer: Optional[List[Path]] = typer.Option(
        None,
        "--base-layer",
        help="Layer tarball placed under the image. Repeatable.",
    ),
    complement: bool = typer.Option(
        False,
        "--complement",
        help="Build the Complement test image for this binary.",
    ),
    store: bool = typer.Option(
        False,
        "--store",
        help="Also store the archive in the artifact store.",
    ),
    config_path: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help=CONFIG_OPTION_HELP,
    ),
) -> None:
    """Package a built binary into a loadable image archive."""
    config = load_config(config_path)
    try:
        platform = PlatformTriple.parse(triple) if triple else config.native
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc

    try:
        packager = ImagePackager(
            ca_bundle=config.ca_bundle,
            init_binary=config.init_binary,
            created=source_date_epoch(config.project_root),
        )
        if complement:
            spec = packager.complement_image_spec(
                binary,
                triple=platform,
                config_file=config.resolve_path(config.complement_config),
                ext_file=config.resolve_path(config.complement_ext),
                base_layers=base_layer or (),
            )
        else:
            spec = packager.image_spec(
                binary,
                name=name or config.binary_name,
                tag=tag,
                triple=platform,
                base_layers=base_layer or (),
            )
        dest = output or settings.workdir / "images" / f"{spec.name}-{spec.tag}.tar"
        image = packager.write_archive(spec, dest)
    except CrossforgeError as exc:
        abort(exc)

    lines = [
        f"[bold]Reference:[/bold] {image.spec.reference}",
        f"[bold]Archive:[/bold]   {image.path}",
        f"[bold]SHA-256:[/bold]   {image.sha256}",
        f"[bold]Size:[/bold]      {image.size_bytes} bytes",
    ]
    if store:
        stored = ContentAddressedStore(settings.artifact_store_path).store_file(
            image.path,
            name=image.spec.reference,
            artifact_type="image-archive",
            metadata={"reference": image.spec.reference},
        )
        lines.append(f"[bold]Stored:[/bold]    {stored.content_address}")

    console.print(
        Panel("\n".join(lines), title="[bold green]Image packaged[/bold green]", padding=(1, 2)),
        highlight=False,
    )

"""Minimal layered container images around one server binary.

Images are written as ``docker load`` archives: one uncompressed tar per
layer, an image config JSON and a ``manifest.json``.  Every tar member
gets the source revision's timestamp, uid/gid 0 and a sorted position, and
all JSON is canonical, so the same inputs produce a byte-identical archive.

Layer order: base layers, CA bundle, init process, server binary, extra
files.  The entrypoint is ``tini --`` so signals reach the server instead
of being dropped by PID 1; Darwin targets get no init wrapper.
"""

from __future__ import annotations

import io
import json
import logging
import os
import shlex
import tarfile
import tempfile
from collections.abc import Sequence
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath

from crossforge.core.hasher import canonical_json_bytes, file_sha256, sha256_hex
from crossforge.errors import ArtifactMissing
from crossforge.models.images import (
    DEFAULT_EXPOSED_PORTS,
    EmbeddedFile,
    ImageArchive,
    ImageLayer,
    ImageSpec,
)
from crossforge.models.platforms import PlatformTriple

logger = logging.getLogger(__name__)

CA_BUNDLE_PATH = "/etc/ssl/certs/ca-certificates.crt"
INIT_PATH = "/sbin/tini"
BINARY_DIR = "/bin"
CONFIG_ENV_VAR = "CONDUIT_CONFIG"

_OCI_ARCH = {"x86_64": "amd64", "aarch64": "arm64", "i686": "386", "riscv64": "riscv64"}


def oci_architecture(triple: PlatformTriple) -> str:
    return _OCI_ARCH.get(triple.architecture, triple.architecture)


def _iso8601(epoch: int) -> str:
    return datetime.fromtimestamp(epoch, tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _require_file(path: Path, what: str, subject: str, *, executable: bool = False) -> None:
    if not path.is_file():
        raise ArtifactMissing(f"{what} not found at {path}", subject=subject)
    if executable and not os.access(path, os.X_OK):
        raise ArtifactMissing(f"{what} at {path} is not executable", subject=subject)


class ImagePackager:
    """Builds ImageSpecs and writes them as loadable archives.

    Parameters
    ----------
    ca_bundle:
        Trusted CA certificates embedded for outbound TLS.
    init_binary:
        Signal-forwarding init process (tini).
    created:
        Image timestamp, seconds since epoch, from the source revision.
    """

    def __init__(self, *, ca_bundle: Path, init_binary: Path, created: int) -> None:
        self._ca_bundle = Path(ca_bundle)
        self._init = Path(init_binary)
        self._created = int(created)

    @property
    def created(self) -> int:
        return self._created

    # ------------------------------------------------------------------
    # Spec construction
    # ------------------------------------------------------------------

    def image_spec(
        self,
        binary: Path,
        *,
        name: str,
        triple: PlatformTriple,
        tag: str = "main",
        label: str = "",
        base_layers: Sequence[Path] = (),
        extra_files: Sequence[EmbeddedFile] = (),
        env: dict[str, str] | None = None,
        cmd: Sequence[str] | None = None,
        exposed_ports: Sequence[str] = DEFAULT_EXPOSED_PORTS,
    ) -> ImageSpec:
        """Describe an image wrapping *binary*.

        Raises ``ArtifactMissing`` if the binary (or the init process, CA
        bundle, a base layer or an extra file) is missing; the binary and
        init process must also be executable.
        """
        binary = Path(binary)
        subject = label or str(binary)
        _require_file(binary, "server binary", subject, executable=True)
        _require_file(self._ca_bundle, "CA bundle", subject)
        use_init = not triple.is_darwin
        if use_init:
            _require_file(self._init, "init binary", subject, executable=True)
        for tarball in base_layers:
            _require_file(Path(tarball), "base layer", subject)
        for extra in extra_files:
            _require_file(extra.source, "embedded file", subject)

        binary_dest = str(PurePosixPath(BINARY_DIR) / binary.name)
        layers: list[ImageLayer] = [
            ImageLayer(name=f"base-{i}", tarball=Path(t)) for i, t in enumerate(base_layers)
        ]
        layers.append(
            ImageLayer(
                name="ca-certificates",
                files=(EmbeddedFile(source=self._ca_bundle, destination=CA_BUNDLE_PATH),),
            )
        )
        if use_init:
            layers.append(
                ImageLayer(
                    name="init",
                    files=(EmbeddedFile(source=self._init, destination=INIT_PATH, mode=0o755),),
                )
            )
        layers.append(
            ImageLayer(
                name="server",
                files=(EmbeddedFile(source=binary, destination=binary_dest, mode=0o755),),
            )
        )
        if extra_files:
            layers.append(ImageLayer(name="files", files=tuple(extra_files)))

        image_env = {"SSL_CERT_FILE": CA_BUNDLE_PATH}
        image_env.update(env or {})

        return ImageSpec(
            name=name,
            tag=tag,
            created=self._created,
            architecture=oci_architecture(triple),
            layers=tuple(layers),
            entrypoint=(INIT_PATH, "--") if use_init else (),
            cmd=tuple(cmd) if cmd is not None else (binary_dest,),
            exposed_ports=tuple(exposed_ports),
            env=image_env,
        )

    def complement_image_spec(
        self,
        binary: Path,
        *,
        triple: PlatformTriple,
        config_file: Path,
        ext_file: Path,
        base_layers: Sequence[Path] = (),
        label: str = "",
    ) -> ImageSpec:
        """Describe the image the conformance suite runs against.

        Embeds the server config at ``/conduwuit/conduit.toml`` and the
        certificate extension template at ``/v3.ext``.  On start the
        container signs a certificate for ``$SERVER_NAME`` with the suite's
        CA, then runs the server.  *base_layers* must provide ``sh``,
        ``openssl`` and ``awk``.
        """
        binary_dest = str(PurePosixPath(BINARY_DIR) / Path(binary).name)
        script = " && ".join(
            [
                'echo "Starting server as $SERVER_NAME"',
                "export CONDUIT_SERVER_NAME=$SERVER_NAME"
                ' CONDUIT_WELL_KNOWN_SERVER="$SERVER_NAME:8448"',
                "openssl genrsa -out /conduwuit/private_key.key 2048",
                "openssl req -new -sha256 -key /conduwuit/private_key.key"
                ' -subj "/C=US/ST=CA/O=MyOrg, Inc./CN=$SERVER_NAME"'
                " -out /conduwuit/signing_request.csr",
                'echo "DNS.1 = $SERVER_NAME" >> /v3.ext',
                "echo \"IP.1 = $(awk 'END{print $1}' /etc/hosts)\" >> /v3.ext",
                "openssl x509 -req -extfile /v3.ext -in /conduwuit/signing_request.csr"
                " -CA /complement/ca/ca.crt -CAkey /complement/ca/ca.key -CAcreateserial"
                " -out /conduwuit/certificate.crt -days 1 -sha256",
                f"exec {shlex.quote(binary_dest)}",
            ]
        )
        return self.image_spec(
            binary,
            name=f"complement-{Path(binary).name}",
            tag="dev",
            triple=triple,
            label=label,
            base_layers=base_layers,
            extra_files=[
                EmbeddedFile(source=Path(config_file), destination="/conduwuit/conduit.toml"),
                EmbeddedFile(source=Path(ext_file), destination="/v3.ext"),
            ],
            env={
                "PATH": "/usr/local/bin:/usr/bin:/bin",
                "SSL_CERT_FILE": "/complement/ca/ca.crt",
                "SERVER_NAME": "localhost",
                CONFIG_ENV_VAR: "/conduwuit/conduit.toml",
            },
            cmd=["/bin/sh", "-c", script],
        )

    # ------------------------------------------------------------------
    # Archive writing
    # ------------------------------------------------------------------

    def write_archive(self, spec: ImageSpec, dest: Path) -> ImageArchive:
        """Write *spec* as a ``docker load`` archive at *dest*."""
        dest = Path(dest)
        dest.parent.mkdir(parents=True, exist_ok=True)

        with tempfile.TemporaryDirectory(dir=dest.parent) as scratch:
            layer_files: list[tuple[str, Path]] = []
            for layer in spec.layers:
                path = Path(scratch) / f"{layer.name}.tar"
                if layer.tarball is not None:
                    path.write_bytes(Path(layer.tarball).read_bytes())
                else:
                    self._write_layer(layer, path, spec.created)
                layer_files.append((file_sha256(path), path))

            config = self._image_config(spec, [digest for digest, _ in layer_files])
            config_bytes = canonical_json_bytes(config)
            config_name = f"{sha256_hex(config_bytes)}.json"
            manifest = [
                {
                    "Config": config_name,
                    "RepoTags": [spec.reference],
                    "Layers": [f"{digest}/layer.tar" for digest, _ in layer_files],
                }
            ]

            with tarfile.open(dest, "w", format=tarfile.GNU_FORMAT) as archive:
                written: set[str] = set()
                for digest, path in layer_files:
                    if digest in written:
                        continue
                    written.add(digest)
                    self._add_dir(archive, f"{digest}/", spec.created)
                    self._add_bytes(archive, f"{digest}/VERSION", b"1.0", spec.created)
                    info = self._tarinfo(f"{digest}/layer.tar", spec.created, 0o644)
                    info.size = path.stat().st_size
                    with path.open("rb") as fh:
                        archive.addfile(info, fh)
                self._add_bytes(archive, config_name, config_bytes, spec.created)
                self._add_bytes(
                    archive, "manifest.json", canonical_json_bytes(manifest), spec.created
                )

        archive_sha = file_sha256(dest)
        size = dest.stat().st_size
        logger.info("Wrote image %s to %s (sha256:%s)", spec.reference, dest, archive_sha)
        return ImageArchive(spec=spec, path=dest, sha256=archive_sha, size_bytes=size)

    def package(self, binary: Path, dest: Path, **kwargs) -> ImageArchive:
        """``image_spec`` followed by ``write_archive``."""
        return self.write_archive(self.image_spec(binary, **kwargs), dest)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _image_config(spec: ImageSpec, diff_ids: list[str]) -> dict:
        created = _iso8601(spec.created)
        runtime: dict = {
            "Env": [f"{k}={v}" for k, v in sorted(spec.env.items())],
            "ExposedPorts": {port: {} for port in sorted(spec.exposed_ports)},
        }
        if spec.entrypoint:
            runtime["Entrypoint"] = list(spec.entrypoint)
        if spec.cmd:
            runtime["Cmd"] = list(spec.cmd)
        return {
            "architecture": spec.architecture,
            "os": "linux",
            "created": created,
            "config": runtime,
            "rootfs": {"type": "layers", "diff_ids": [f"sha256:{d}" for d in diff_ids]},
            "history": [
                {"created": created, "created_by": f"crossforge layer {layer.name}"}
                for layer in spec.layers
            ],
        }

    def _write_layer(self, layer: ImageLayer, path: Path, mtime: int) -> None:
        entries: dict[str, EmbeddedFile | None] = {}
        for embedded in layer.files:
            dest = PurePosixPath(embedded.destination.lstrip("/"))
            for parent in reversed(dest.parents):
                if str(parent) != ".":
                    entries.setdefault(f"{parent}/", None)
            entries[str(dest)] = embedded

        with tarfile.open(path, "w", format=tarfile.GNU_FORMAT) as tar:
            for name in sorted(entries):
                embedded = entries[name]
                if embedded is None:
                    self._add_dir(tar, name, mtime)
                    continue
                info = self._tarinfo(name, mtime, embedded.mode)
                info.size = embedded.source.stat().st_size
                with embedded.source.open("rb") as fh:
                    tar.addfile(info, fh)

    @staticmethod
    def _tarinfo(name: str, mtime: int, mode: int) -> tarfile.TarInfo:
        info = tarfile.TarInfo(name)
        info.mtime = mtime
        info.mode = mode
        info.uid = info.gid = 0
        info.uname = info.gname = ""
        return info

    def _add_dir(self, tar: tarfile.TarFile, name: str, mtime: int) -> None:
        info = self._tarinfo(name, mtime, 0o755)
        info.type = tarfile.DIRTYPE
        tar.addfile(info)

    def _add_bytes(self, tar: tarfile.TarFile, name: str, data: bytes, mtime: int) -> None:
        info = self._tarinfo(name, mtime, 0o644)
        info.size = len(data)
        tar.addfile(info, io.BytesIO(data))


def read_image_reference(archive: Path) -> str:
    """Return the first ``name:tag`` recorded in an image archive's manifest."""
    archive = Path(archive)
    if not archive.is_file():
        raise ArtifactMissing(f"image archive not found at {archive}", subject=str(archive))
    try:
        with tarfile.open(archive, "r") as tar:
            member = tar.extractfile("manifest.json")
            manifest = json.loads(member.read()) if member is not None else []
    except KeyError as exc:
        raise ArtifactMissing("image archive has no manifest.json", subject=str(archive)) from exc
    except (tarfile.TarError, ValueError) as exc:
        raise ArtifactMissing(
            f"image archive manifest is unreadable: {exc}", subject=str(archive)
        ) from exc
    tags = None
    if isinstance(manifest, list) and manifest and isinstance(manifest[0], dict):
        tags = manifest[0].get("RepoTags")
    if not tags:
        raise ArtifactMissing("image archive has no RepoTags", subject=str(archive))
    return tags[0]

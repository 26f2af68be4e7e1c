"""Container image models: immutable once created."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_EXPOSED_PORTS: tuple[str, ...] = ("8008/tcp", "8448/tcp")


class EmbeddedFile(BaseModel):
    """A file copied from the build host into the image filesystem."""

    model_config = ConfigDict(frozen=True)

    source: Path
    destination: str  # absolute path inside the image
    mode: int = 0o644


class ImageLayer(BaseModel):
    """One filesystem layer, in the order it is stacked.

    Either a set of files to embed, or a prebuilt base layer tarball.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    files: tuple[EmbeddedFile, ...] = ()
    tarball: Path | None = None


class ImageSpec(BaseModel):
    """Descriptor of a minimal layered image wrapping one server binary."""

    model_config = ConfigDict(frozen=True)

    name: str
    tag: str = "main"
    created: int  # seconds since epoch, from the source revision
    architecture: str = "amd64"
    layers: tuple[ImageLayer, ...]
    entrypoint: tuple[str, ...] = ()
    cmd: tuple[str, ...] = ()
    exposed_ports: tuple[str, ...] = DEFAULT_EXPOSED_PORTS
    env: dict[str, str] = Field(default_factory=dict)

    @property
    def reference(self) -> str:
        return f"{self.name}:{self.tag}"

    @property
    def embedded_files(self) -> tuple[EmbeddedFile, ...]:
        return tuple(f for layer in self.layers for f in layer.files)


class ImageArchive(BaseModel):
    """A written, loadable image archive."""

    model_config = ConfigDict(frozen=True)

    spec: ImageSpec
    path: Path
    sha256: str  # hex digest of the archive bytes
    size_bytes: int

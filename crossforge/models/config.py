"""Project-level matrix configuration.

Loaded from ``crossforge.toml`` or ``pyproject.toml`` ``[tool.crossforge]``.
Every toolchain, triple and dependency prefix is passed explicitly from
here into the composer and generator; nothing is looked up ambiently.
"""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from crossforge.errors import ConfigError
from crossforge.models.platforms import CcToolchain, PlatformTriple

DEFAULT_CROSS_TARGETS: tuple[str, ...] = (
    "x86_64-unknown-linux-musl",
    "aarch64-unknown-linux-musl",
)


class NativeDependencyConfig(BaseModel):
    """A native library the server links against, located per flavour and triple.

    ``prefixes[flavor][triple]`` is an install prefix holding ``include/``
    and ``lib/``.
    """

    model_config = ConfigDict(frozen=True)

    env_prefix: str
    prefixes: dict[str, dict[str, Path]] = Field(default_factory=dict)


class MatrixConfig(BaseModel):
    """Build matrix configuration for one project checkout."""

    model_config = ConfigDict(frozen=True)

    project_root: Path = Path(".")
    binary_name: str = "conduit"

    # Toolchain pin
    toolchain_file: Path = Path("rust-toolchain.toml")
    toolchain_sha256: str = ""
    toolchain_root: Path = Path("toolchain")

    # Platforms
    native_triple: str = "x86_64-unknown-linux-gnu"
    host_triple: str | None = None  # defaults to the native triple
    cross_targets: list[str] = Field(default_factory=lambda: list(DEFAULT_CROSS_TARGETS))
    toolchains: dict[str, CcToolchain] = Field(default_factory=dict)
    # C++ runtime install for the conventional toolchains; libstdc++ for a
    # static link is taken from <root>/<triple>/lib.
    cxx_runtime_root: Path | None = None

    # Native dependencies, keyed by name (e.g. "rocksdb")
    dependencies: dict[str, NativeDependencyConfig] = Field(default_factory=dict)

    # Embedded into CONDUIT_VERSION_EXTRA; taken from git when unset.
    version_extra: str | None = None
    extra_cargo_args: list[str] = Field(default_factory=list)

    # Image packaging
    ca_bundle: Path = Path("/etc/ssl/certs/ca-certificates.crt")
    init_binary: Path = Path("/usr/bin/tini")

    # Complement
    complement_dir: Path = Path("complement")
    complement_config: Path = Path("tests/complement/conduwuit-complement.toml")
    complement_ext: Path = Path("tests/complement/v3.ext")

    @property
    def native(self) -> PlatformTriple:
        return PlatformTriple.parse(self.native_triple)

    @property
    def host(self) -> PlatformTriple:
        return PlatformTriple.parse(self.host_triple or self.native_triple)

    def toolchain_for(self, triple: PlatformTriple) -> CcToolchain:
        """Return the configured C toolchain for *triple*.

        Falls back to conventional names: plain ``cc`` for the native
        triple, ``<triple>-cc`` for anything else, with the project-wide
        ``cxx_runtime_root``.
        """
        configured = self.toolchains.get(triple.rustc_target)
        if configured is not None:
            return configured
        runtime = str(self.resolve_path(self.cxx_runtime_root)) if self.cxx_runtime_root else ""
        return CcToolchain.for_triple(
            triple, cross=triple != self.native, cxx_runtime_root=runtime
        )

    def resolve_path(self, path: Path) -> Path:
        """Resolve *path* against the project root unless absolute."""
        return path if path.is_absolute() else self.project_root / path


def load_matrix_config(path: Path) -> MatrixConfig:
    """Load and validate a MatrixConfig from a TOML file.

    Relative ``project_root`` values are resolved against the file's
    directory.  Raises ``ConfigError`` on a missing file, bad TOML or an
    invalid schema.
    """
    path = Path(path)
    if not path.exists():
        raise ConfigError("matrix configuration not found", subject=str(path))
    try:
        with path.open("rb") as fh:
            raw: dict[str, Any] = tomllib.load(fh)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"invalid TOML: {exc}", subject=str(path)) from exc

    if path.name == "pyproject.toml":
        raw = raw.get("tool", {}).get("crossforge", {})

    root = Path(raw.get("project_root", "."))
    if not root.is_absolute():
        raw["project_root"] = (path.parent / root).resolve()

    try:
        return MatrixConfig.model_validate(raw)
    except ValidationError as exc:
        raise ConfigError(f"invalid matrix configuration: {exc}", subject=str(path)) from exc

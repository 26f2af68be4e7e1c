"""Native dependency location (include/lib directories per triple)."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict

from crossforge.errors import DependencyNotFound
from crossforge.models.config import NativeDependencyConfig
from crossforge.models.platforms import PlatformTriple


class LocatedDependency(BaseModel):
    """A native dependency whose directories exist for one triple."""

    model_config = ConfigDict(frozen=True)

    name: str
    env_prefix: str
    flavor: str
    include_dir: Path
    lib_dir: Path


class DependencyLocator:
    """Finds install prefixes of native dependencies.

    Parameters
    ----------
    dependencies:
        Name -> configuration, from ``MatrixConfig.dependencies``.
    """

    def __init__(self, dependencies: dict[str, NativeDependencyConfig]) -> None:
        self._deps = dict(dependencies)

    @property
    def names(self) -> list[str]:
        return sorted(self._deps)

    def locate(
        self, name: str, triple: PlatformTriple, flavor: str = "default"
    ) -> LocatedDependency:
        """Return the include/lib directories of *name* for *triple*.

        Raises ``DependencyNotFound`` when the dependency, the flavour, the
        triple's prefix, or either directory is missing.
        """
        target = triple.rustc_target
        config = self._deps.get(name)
        if config is None:
            raise DependencyNotFound(name, target, "not configured")

        prefixes = config.prefixes.get(flavor)
        if prefixes is None:
            raise DependencyNotFound(name, target, f"no {flavor!r} flavour configured")

        prefix = prefixes.get(target)
        if prefix is None:
            raise DependencyNotFound(name, target, "no install prefix for this triple")

        include_dir = Path(prefix) / "include"
        lib_dir = Path(prefix) / "lib"
        for directory in (include_dir, lib_dir):
            if not directory.is_dir():
                raise DependencyNotFound(name, target, f"missing directory {directory}")

        return LocatedDependency(
            name=name,
            env_prefix=config.env_prefix,
            flavor=flavor,
            include_dir=include_dir,
            lib_dir=lib_dir,
        )

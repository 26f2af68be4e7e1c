"""Compiler/linker environment derivation for build, host and target roles.

``EnvironmentComposer.compose`` is a pure function of its inputs (apart
from checking that native dependency directories exist).  It starts from
an empty ``EnvironmentBuilder`` and applies these rules in this order,
later rules overriding keys set by earlier ones:

0. base: version extra, native dependency include/lib dirs, static marker
1. target: ``CC_<T>``, ``CXX_<T>``, ``CARGO_TARGET_<T>_LINKER`` (only if target != host)
2. host: the same three for the host triple, plus ``CARGO_BUILD_TARGET``
3. build: the same three for the build triple; ``HOST_CC``/``HOST_CXX``
   when build != host
4. rustflags: ``CARGO_BUILD_RUSTFLAGS`` for static binaries

The result is an immutable ``EnvironmentMap``.  Nothing downstream looks at
platform triples again; jobs only see these variables.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Mapping, Sequence
from pathlib import Path

from crossforge.core.dependencies import DependencyLocator
from crossforge.errors import DependencyNotFound
from crossforge.models.platforms import CcToolchain, PlatformRoles, PlatformTriple, RoleBinding

logger = logging.getLogger(__name__)

RUSTFLAGS_VAR = "CARGO_BUILD_RUSTFLAGS"
VERSION_EXTRA_VAR = "CONDUIT_VERSION_EXTRA"
CXX_RUNTIME = "c++ runtime"

# Architectures for which static non-LLVM links need libstdc++ spelled out.
_STDCXX_ARCHES = frozenset({"aarch64", "x86_64"})


class EnvironmentMap(Mapping[str, str]):
    """Immutable variable name -> value mapping, iterated in key order."""

    __slots__ = ("_data",)

    def __init__(self, items: Mapping[str, str] | Iterable[tuple[str, str]] = ()) -> None:
        self._data: dict[str, str] = dict(sorted(dict(items).items()))

    def __getitem__(self, key: str) -> str:
        return self._data[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"EnvironmentMap({self._data!r})"

    def as_dict(self) -> dict[str, str]:
        return dict(self._data)

    @property
    def rustflags(self) -> list[str]:
        """The space-separated ``CARGO_BUILD_RUSTFLAGS`` as a list."""
        return self._data.get(RUSTFLAGS_VAR, "").split()


class EnvironmentBuilder:
    """Ordered, single-use builder for an ``EnvironmentMap``."""

    def __init__(self) -> None:
        self._values: dict[str, str] = {}
        self._origins: dict[str, str] = {}

    def set(self, key: str, value: str, *, rule: str) -> None:
        previous = self._values.get(key)
        if previous is not None and previous != value:
            logger.debug(
                "Rule %s overrides %s=%r (set by %s) with %r",
                rule,
                key,
                previous,
                self._origins[key],
                value,
            )
        self._values[key] = value
        self._origins[key] = rule

    def bind_compilers(self, triple: PlatformTriple, toolchain: CcToolchain, *, rule: str) -> None:
        """Emit compiler, C++ compiler and linker for one triple."""
        suffix = triple.cargo_env_suffix
        self.set(f"CC_{suffix}", toolchain.cc, rule=rule)
        self.set(f"CXX_{suffix}", toolchain.cxx, rule=rule)
        self.set(f"CARGO_TARGET_{suffix}_LINKER", toolchain.linker, rule=rule)

    def build(self) -> EnvironmentMap:
        return EnvironmentMap(self._values)


def cxx_runtime_lib_dir(target: RoleBinding) -> Path:
    """Directory holding the static C++ runtime for *target*."""
    triple = target.triple.rustc_target
    root = target.toolchain.cxx_runtime_root
    if not root:
        raise DependencyNotFound(CXX_RUNTIME, triple, "cxx_runtime_root is not configured")
    lib_dir = Path(root) / triple / "lib"
    if not lib_dir.is_dir():
        raise DependencyNotFound(CXX_RUNTIME, triple, f"{lib_dir} does not exist")
    return lib_dir


def static_rustflags(roles: PlatformRoles, *, static: bool) -> list[str]:
    """Rust compiler flags needed for a (possibly) static link.

    - ``-C relocation-model=static``: disables PIE.  The C++ runtime in the
      static dependency closure is not built position-independent, so the
      link fails with PIE on.  This weakens ASLR for static binaries.
    - ``-l c`` when the build platform differs from the platform the binary
      runs on; the inferred link line can drop libc in that constellation.
    - ``-l stdc++ -L <runtime>/<triple>/lib`` only for static aarch64/x86_64
      targets that are not Darwin and are not linked by an LLVM linker.
      Found empirically; the root cause is not understood, so the condition
      must stay exactly this narrow.  The runtime directory must exist
      (``DependencyNotFound`` otherwise).
    """
    if not static:
        return []

    target = roles.target
    flags = ["-C", "relocation-model=static"]

    if roles.build_differs_from_target:
        flags += ["-l", "c"]

    # TODO: find out why non-LLVM static links need libstdc++ named
    # explicitly and whether other architectures are affected.
    if (
        target.triple.architecture in _STDCXX_ARCHES
        and not target.triple.is_darwin
        and not target.toolchain.is_llvm
    ):
        flags += ["-l", "stdc++", "-L", str(cxx_runtime_lib_dir(target))]
    return flags


class EnvironmentComposer:
    """Derives the EnvironmentMap for a set of platform roles.

    Parameters
    ----------
    locator:
        Finds native dependency directories. Without one, no dependency
        variables are emitted.
    version_extra:
        Short source revision exported as ``CONDUIT_VERSION_EXTRA``.
    """

    def __init__(
        self,
        locator: DependencyLocator | None = None,
        *,
        version_extra: str = "",
    ) -> None:
        self._locator = locator
        self._version_extra = version_extra

    def compose(
        self,
        roles: PlatformRoles,
        *,
        static: bool = False,
        dependencies: Sequence[tuple[str, str]] = (),
    ) -> EnvironmentMap:
        """Build the environment for *roles*.

        Parameters
        ----------
        roles:
            Build, host and target platforms with their C toolchains.
        static:
            Whether a fully static binary is requested.
        dependencies:
            ``(name, flavor)`` pairs of native dependencies to expose.

        Raises ``DependencyNotFound`` if a dependency cannot be located for
        the target triple.
        """
        env = EnvironmentBuilder()
        self._apply_base(env, roles, static=static, dependencies=dependencies)
        self._apply_target(env, roles)
        self._apply_host(env, roles)
        self._apply_build(env, roles)
        self._apply_rustflags(env, roles, static=static)
        return env.build()

    # ------------------------------------------------------------------
    # Rules, in application order
    # ------------------------------------------------------------------

    def _apply_base(
        self,
        env: EnvironmentBuilder,
        roles: PlatformRoles,
        *,
        static: bool,
        dependencies: Sequence[tuple[str, str]],
    ) -> None:
        if self._version_extra:
            env.set(VERSION_EXTRA_VAR, self._version_extra, rule="base")
        if not dependencies:
            return
        if self._locator is None:
            raise ValueError("dependencies requested but no DependencyLocator configured")
        for name, flavor in dependencies:
            dep = self._locator.locate(name, roles.target.triple, flavor)
            env.set(f"{dep.env_prefix}_INCLUDE_DIR", str(dep.include_dir), rule="base")
            env.set(f"{dep.env_prefix}_LIB_DIR", str(dep.lib_dir), rule="base")
            if static:
                env.set(f"{dep.env_prefix}_STATIC", "", rule="base")

    @staticmethod
    def _apply_target(env: EnvironmentBuilder, roles: PlatformRoles) -> None:
        if roles.target_differs_from_host:
            env.bind_compilers(roles.target.triple, roles.target.toolchain, rule="target")

    @staticmethod
    def _apply_host(env: EnvironmentBuilder, roles: PlatformRoles) -> None:
        env.bind_compilers(roles.host.triple, roles.host.toolchain, rule="host")
        env.set("CARGO_BUILD_TARGET", roles.target.triple.rustc_target, rule="host")

    @staticmethod
    def _apply_build(env: EnvironmentBuilder, roles: PlatformRoles) -> None:
        env.bind_compilers(roles.build.triple, roles.build.toolchain, rule="build")
        if roles.build_differs_from_host:
            # Native code generators run by build scripts execute on the
            # build platform and must use its compiler.
            env.set("HOST_CC", roles.build.toolchain.cc, rule="build")
            env.set("HOST_CXX", roles.build.toolchain.cxx, rule="build")

    @staticmethod
    def _apply_rustflags(env: EnvironmentBuilder, roles: PlatformRoles, *, static: bool) -> None:
        flags = static_rustflags(roles, static=static)
        if not flags:
            return
        logger.warning(
            "Static build for %s: PIE disabled (relocation-model=static).",
            roles.target.triple,
        )
        env.set(RUSTFLAGS_VAR, " ".join(flags), rule="rustflags")

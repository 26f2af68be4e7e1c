"""Platform models: triples, per-role C toolchains, role assignments."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict


class PlatformTriple(BaseModel):
    """An architecture/vendor/OS-ABI descriptor.

    Parsed from rustc-style target strings such as
    ``x86_64-unknown-linux-musl`` or ``aarch64-apple-darwin``.
    """

    model_config = ConfigDict(frozen=True)

    architecture: str
    vendor: str = "unknown"
    system: str
    abi: str = ""

    @classmethod
    def parse(cls, triple: str) -> PlatformTriple:
        """Parse ``arch-vendor-os[-abi]`` into a PlatformTriple."""
        parts = triple.strip().split("-")
        if len(parts) == 3:
            arch, vendor, system = parts
            abi = ""
        elif len(parts) == 4:
            arch, vendor, system, abi = parts
        else:
            raise ValueError(f"Not a platform triple: {triple!r}")
        if not all(parts):
            raise ValueError(f"Not a platform triple: {triple!r}")
        return cls(architecture=arch, vendor=vendor, system=system, abi=abi)

    @property
    def rustc_target(self) -> str:
        """The canonical ``arch-vendor-os[-abi]`` string."""
        parts = [self.architecture, self.vendor, self.system]
        if self.abi:
            parts.append(self.abi)
        return "-".join(parts)

    @property
    def cargo_env_suffix(self) -> str:
        """Suffix for per-triple variables, e.g. ``X86_64_UNKNOWN_LINUX_MUSL``."""
        return self.rustc_target.upper().replace("-", "_").replace(".", "_")

    @property
    def is_aarch64(self) -> bool:
        return self.architecture == "aarch64"

    @property
    def is_x86_64(self) -> bool:
        return self.architecture == "x86_64"

    @property
    def is_darwin(self) -> bool:
        return self.system == "darwin" or self.vendor == "apple"

    @property
    def is_musl(self) -> bool:
        return self.abi.startswith("musl")

    def __str__(self) -> str:
        return self.rustc_target


class LinkerFamily(str, Enum):
    """Which linker family a C toolchain's bintools belong to."""

    GNU = "gnu"
    LLVM = "llvm"


class CcToolchain(BaseModel):
    """The C/C++ compiler and linker serving one platform role."""

    model_config = ConfigDict(frozen=True)

    cc: str = "cc"
    cxx: str = "c++"
    linker: str = "cc"
    linker_family: LinkerFamily = LinkerFamily.GNU
    # Root of the C++ runtime install; libstdc++ lives under <root>/<triple>/lib.
    cxx_runtime_root: str = ""

    @classmethod
    def for_triple(
        cls,
        triple: PlatformTriple,
        prefix_dir: str = "",
        *,
        cross: bool = True,
        linker_family: LinkerFamily = LinkerFamily.GNU,
        cxx_runtime_root: str = "",
    ) -> CcToolchain:
        """Derive conventional compiler paths for *triple*.

        Cross compilers are named ``<triple>-cc`` / ``<triple>-c++``; native
        ones are plain ``cc`` / ``c++``.  With *prefix_dir* the names are
        placed under ``<prefix_dir>/bin``.
        """
        stem = f"{triple.rustc_target}-" if cross else ""
        bindir = f"{prefix_dir.rstrip('/')}/bin/" if prefix_dir else ""
        return cls(
            cc=f"{bindir}{stem}cc",
            cxx=f"{bindir}{stem}c++",
            linker=f"{bindir}{stem}cc",
            linker_family=linker_family,
            cxx_runtime_root=cxx_runtime_root,
        )

    @property
    def is_llvm(self) -> bool:
        return self.linker_family == LinkerFamily.LLVM


class RoleBinding(BaseModel):
    """One platform role: which triple it is and which toolchain serves it."""

    model_config = ConfigDict(frozen=True)

    triple: PlatformTriple
    toolchain: CcToolchain = CcToolchain()


class PlatformRoles(BaseModel):
    """The three platforms involved in one (cross-)compilation.

    build: where the compiler runs.
    host: the platform the compiler itself was built for; build-script
        tooling runs here.
    target: where the produced binary runs.
    """

    model_config = ConfigDict(frozen=True)

    build: RoleBinding
    host: RoleBinding
    target: RoleBinding

    @classmethod
    def native(cls, binding: RoleBinding) -> PlatformRoles:
        """All three roles on the same platform."""
        return cls(build=binding, host=binding, target=binding)

    @property
    def is_native(self) -> bool:
        return self.build.triple == self.host.triple == self.target.triple

    @property
    def target_differs_from_host(self) -> bool:
        return self.target.triple != self.host.triple

    @property
    def build_differs_from_host(self) -> bool:
        return self.build.triple != self.host.triple

    @property
    def build_differs_from_target(self) -> bool:
        return self.build.triple != self.target.triple

"""Build variant models: allocator × profile × target cells and their jobs."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from crossforge.models.platforms import PlatformTriple

NATIVE_TARGET = "native"


class AllocatorKind(str, Enum):
    """Memory allocator linked into the server binary."""

    DEFAULT = "default"
    JEMALLOC = "jemalloc"
    HARDENED = "hmalloc"


class BuildProfile(str, Enum):
    """Cargo build profile."""

    DEV = "dev"
    RELEASE = "release"

    @property
    def output_dir(self) -> str:
        """Directory name cargo uses under ``target/<triple>/``."""
        return "debug" if self is BuildProfile.DEV else "release"


class TargetSpec(BaseModel):
    """A build target: the native platform or a statically linked cross triple."""

    model_config = ConfigDict(frozen=True)

    name: str  # "native" or the triple string
    triple: PlatformTriple
    static: bool = False

    @classmethod
    def native(cls, triple: PlatformTriple) -> TargetSpec:
        return cls(name=NATIVE_TARGET, triple=triple, static=False)

    @classmethod
    def static_cross(cls, triple: str | PlatformTriple) -> TargetSpec:
        parsed = triple if isinstance(triple, PlatformTriple) else PlatformTriple.parse(triple)
        return cls(name=parsed.rustc_target, triple=parsed, static=True)

    @property
    def is_native(self) -> bool:
        return self.name == NATIVE_TARGET


class BuildVariant(BaseModel):
    """One cell of the build matrix. Maps to exactly one build job."""

    model_config = ConfigDict(frozen=True)

    allocator: AllocatorKind = AllocatorKind.DEFAULT
    profile: BuildProfile = BuildProfile.RELEASE
    target: TargetSpec
    extra_cargo_args: tuple[str, ...] = ()

    @property
    def key(self) -> tuple[str, str, str, tuple[str, ...]]:
        return (
            self.allocator.value,
            self.profile.value,
            self.target.name,
            self.extra_cargo_args,
        )

    @property
    def output_name(self) -> str:
        """Selection-surface name: ``<variant>`` or ``<variant>-<target>``."""
        if self.target.is_native:
            return self.allocator.value
        return f"{self.allocator.value}-{self.target.name}"

    @property
    def image_output_name(self) -> str:
        return f"oci-image-{self.output_name}"

    @property
    def image_tag(self) -> str:
        """Image tag; unique per output and profile."""
        return f"{self.output_name}-{self.profile.value}"

    @property
    def image_archive_name(self) -> str:
        return f"{self.image_output_name}-{self.profile.value}.tar"

    def describe(self) -> str:
        """Human-readable cell label used in error messages and logs."""
        return f"{self.output_name} ({self.profile.value}, {self.target.triple})"


class BuildJob(BaseModel):
    """A fully resolved build job: everything needed to invoke cargo."""

    model_config = ConfigDict(frozen=True)

    job_id: str
    variant: BuildVariant
    features: tuple[str, ...] = ()
    dependency_flavor: str = "default"
    cargo_args: tuple[str, ...]
    environment: dict[str, str] = Field(default_factory=dict)
    toolchain_sha256: str = ""

    @property
    def output_name(self) -> str:
        return self.variant.output_name

    @property
    def triple(self) -> PlatformTriple:
        return self.variant.target.triple

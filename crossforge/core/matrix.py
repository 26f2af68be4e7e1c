"""Variant matrix expansion: allocator × profile × target into build jobs.

Named outputs follow ``<variant>`` for native builds and
``<variant>-<triple>`` for static cross builds, with variant one of
``default``, ``jemalloc``, ``hmalloc``.  ``oci-image-<output>`` names the
image built from that output.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from crossforge.core.environment import EnvironmentComposer
from crossforge.core.hasher import compute_job_id
from crossforge.models.config import MatrixConfig
from crossforge.models.platforms import PlatformRoles, PlatformTriple, RoleBinding
from crossforge.models.variants import (
    NATIVE_TARGET,
    AllocatorKind,
    BuildJob,
    BuildProfile,
    BuildVariant,
    TargetSpec,
)

logger = logging.getLogger(__name__)

STORAGE_DEPENDENCY = "rocksdb"

# Cargo features and storage-engine flavour implied by each allocator.
_ALLOCATOR_FEATURES: dict[AllocatorKind, tuple[str, ...]] = {
    AllocatorKind.DEFAULT: (),
    AllocatorKind.JEMALLOC: ("jemalloc",),
    AllocatorKind.HARDENED: ("hardened_malloc",),
}
_DEPENDENCY_FLAVORS: dict[AllocatorKind, str] = {
    AllocatorKind.DEFAULT: "default",
    AllocatorKind.JEMALLOC: "jemalloc",
    AllocatorKind.HARDENED: "default",
}


def features_for(allocator: AllocatorKind) -> tuple[str, ...]:
    """Cargo features enabled by *allocator*."""
    return _ALLOCATOR_FEATURES[allocator]


def dependency_flavor_for(allocator: AllocatorKind) -> str:
    """Storage-engine build flavour required by *allocator*."""
    return _DEPENDENCY_FLAVORS[allocator]


@dataclass(frozen=True)
class MatrixSelection:
    """The subset of the matrix a caller wants built.

    Empty sequences mean "all known values" for that axis.
    """

    allocators: Sequence[AllocatorKind] = ()
    profiles: Sequence[BuildProfile] = ()
    targets: Sequence[str] = ()  # "native" or triple strings
    extra_cargo_args: tuple[str, ...] = field(default_factory=tuple)


def parse_output_name(name: str) -> tuple[AllocatorKind, str]:
    """Split ``<variant>[-<target>]`` into allocator and target name.

    ``oci-image-`` prefixes are accepted and ignored.
    """
    name = name.removeprefix("oci-image-")
    head, sep, rest = name.partition("-")
    try:
        allocator = AllocatorKind(head)
    except ValueError as exc:
        known = ", ".join(a.value for a in AllocatorKind)
        raise ValueError(f"Unknown variant in output {name!r}; expected one of {known}") from exc
    if not sep or rest == NATIVE_TARGET:
        return allocator, NATIVE_TARGET
    PlatformTriple.parse(rest)
    return allocator, rest


class VariantMatrixGenerator:
    """Expands matrix selections into BuildVariants and BuildJobs.

    Parameters
    ----------
    config:
        The project's matrix configuration (triples, toolchains, dependencies).
    composer:
        Derives each job's environment.
    toolchain_sha256:
        Hash of the resolved Rust toolchain; folded into job identities.
    """

    def __init__(
        self,
        config: MatrixConfig,
        composer: EnvironmentComposer,
        *,
        toolchain_sha256: str = "",
    ) -> None:
        self._config = config
        self._composer = composer
        self._toolchain_sha256 = toolchain_sha256
        native = config.native
        self._targets: dict[str, TargetSpec] = {NATIVE_TARGET: TargetSpec.native(native)}
        for triple in config.cross_targets:
            spec = TargetSpec.static_cross(triple)
            self._targets[spec.name] = spec

    @property
    def targets(self) -> list[TargetSpec]:
        return list(self._targets.values())

    def target(self, name: str) -> TargetSpec:
        try:
            return self._targets[name]
        except KeyError:
            known = ", ".join(self._targets)
            raise ValueError(f"Unknown target {name!r}; expected one of {known}") from None

    # ------------------------------------------------------------------
    # Expansion
    # ------------------------------------------------------------------

    def expand(self, selection: MatrixSelection | None = None) -> list[BuildVariant]:
        """Return the distinct variants of *selection*, in matrix order.

        Order is allocator, then profile, then target, each as declared.
        """
        selection = selection or MatrixSelection()
        allocators = _unique(selection.allocators or list(AllocatorKind))
        profiles = _unique(selection.profiles or list(BuildProfile))
        targets = [self.target(t) for t in _unique(selection.targets or list(self._targets))]
        extra = tuple(self._config.extra_cargo_args) + tuple(selection.extra_cargo_args)

        variants = [
            BuildVariant(
                allocator=allocator,
                profile=profile,
                target=target,
                extra_cargo_args=extra,
            )
            for allocator in allocators
            for profile in profiles
            for target in targets
        ]
        logger.debug("Expanded selection into %d variants", len(variants))
        return variants

    def variant_for_output(
        self,
        output_name: str,
        profile: BuildProfile = BuildProfile.RELEASE,
    ) -> BuildVariant:
        """Resolve a named output to its variant."""
        allocator, target = parse_output_name(output_name)
        return BuildVariant(
            allocator=allocator,
            profile=profile,
            target=self.target(target),
            extra_cargo_args=tuple(self._config.extra_cargo_args),
        )

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    def roles_for(self, target: TargetSpec) -> PlatformRoles:
        """Platform roles for building *target* on this machine."""
        config = self._config
        build = RoleBinding(triple=config.native, toolchain=config.toolchain_for(config.native))
        host = RoleBinding(triple=config.host, toolchain=config.toolchain_for(config.host))
        target_binding = RoleBinding(
            triple=target.triple, toolchain=config.toolchain_for(target.triple)
        )
        return PlatformRoles(build=build, host=host, target=target_binding)

    def job_for(self, variant: BuildVariant) -> BuildJob:
        """Resolve *variant* into a BuildJob.

        Raises ``DependencyNotFound`` if the storage engine cannot be
        located for the variant's triple.
        """
        features = features_for(variant.allocator)
        flavor = dependency_flavor_for(variant.allocator)
        dependencies = [
            (name, flavor) for name in sorted(self._config.dependencies)
        ]
        environment = self._composer.compose(
            self.roles_for(variant.target),
            static=variant.target.static,
            dependencies=dependencies,
        )

        cargo_args = [
            "build",
            "--locked",
            "--profile",
            variant.profile.value,
            "--target",
            variant.target.triple.rustc_target,
        ]
        if features:
            cargo_args += ["--features", ",".join(features)]
        cargo_args += list(variant.extra_cargo_args)

        job_id = compute_job_id(
            {
                "variant": variant.model_dump(mode="json"),
                "features": list(features),
                "flavor": flavor,
                "cargo_args": cargo_args,
                "environment": environment.as_dict(),
                "toolchain": self._toolchain_sha256,
            }
        )
        return BuildJob(
            job_id=job_id,
            variant=variant,
            features=features,
            dependency_flavor=flavor,
            cargo_args=tuple(cargo_args),
            environment=environment.as_dict(),
            toolchain_sha256=self._toolchain_sha256,
        )

    def generate(self, selection: MatrixSelection | None = None) -> list[BuildJob]:
        """Expand *selection* and resolve every variant into a job."""
        return [self.job_for(variant) for variant in self.expand(selection)]


def _unique(values: Iterable) -> list:
    seen: dict = {}
    for value in values:
        seen.setdefault(value, None)
    return list(seen)

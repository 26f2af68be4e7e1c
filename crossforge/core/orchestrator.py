"""Matrix orchestrator: the central coordinator for Crossforge runs.

Wires the ToolchainResolver, EnvironmentComposer, VariantMatrixGenerator,
BuildExecutor, ImagePackager and ContentAddressedStore into one pipeline:

    resolve toolchain (once, fatal) -> expand selection
        -> per cell, in a bounded worker pool:
           compose job -> build -> package -> store

A failure inside one cell is recorded in that cell's ``JobOutcome``; its
siblings keep going.  A toolchain failure aborts before any cell starts.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict

from crossforge.config import CrossforgeSettings
from crossforge.core.artifact_store import ContentAddressedStore
from crossforge.core.builder import BuildExecutor, CargoExecutor
from crossforge.core.dependencies import DependencyLocator
from crossforge.core.environment import EnvironmentComposer
from crossforge.core.matrix import MatrixSelection, VariantMatrixGenerator
from crossforge.core.packager import ImagePackager
from crossforge.core.revision import short_revision, source_date_epoch
from crossforge.core.toolchain import ToolchainResolver, read_toolchain_channel
from crossforge.errors import CrossforgeError
from crossforge.models.artifacts import StoredArtifact
from crossforge.models.config import MatrixConfig
from crossforge.models.images import ImageArchive
from crossforge.models.variants import BuildJob, BuildProfile, BuildVariant
from crossforge.models.versioning import ResolvedToolchain, ToolchainSpec

logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class JobOutcome(BaseModel):
    """Result of one matrix cell."""

    model_config = ConfigDict(frozen=True)

    variant: BuildVariant
    status: JobStatus
    job_id: str = ""
    binary_path: Path | None = None
    image: ImageArchive | None = None
    stored_image: StoredArtifact | None = None
    error: str | None = None
    error_kind: str | None = None

    @property
    def output_name(self) -> str:
        return self.variant.output_name


class MatrixOrchestrator:
    """Runs a matrix selection end to end.

    Parameters
    ----------
    config:
        Project matrix configuration.
    settings:
        Process settings (worker limit, paths). Defaults are used if not given.
    resolver:
        Toolchain resolver; built from *config* if not provided.
    executor_factory:
        ``(resolved_toolchain) -> BuildExecutor``; defaults to ``CargoExecutor``.
    packager_factory:
        ``() -> ImagePackager``; defaults to one built from *config* and the
        source revision's timestamp.
    """

    def __init__(
        self,
        config: MatrixConfig,
        *,
        settings: CrossforgeSettings | None = None,
        resolver: ToolchainResolver | None = None,
        executor_factory: Callable[[ResolvedToolchain], BuildExecutor] | None = None,
        packager_factory: Callable[[], ImagePackager] | None = None,
        version_extra: str | None = None,
    ) -> None:
        self.config = config
        self.settings = settings or CrossforgeSettings()
        self._resolver = resolver
        self._executor_factory = executor_factory
        self._packager_factory = packager_factory
        self._version_extra = version_extra
        self._artifact_store: ContentAddressedStore | None = None
        self.toolchain: ResolvedToolchain | None = None

    @property
    def artifact_store(self) -> ContentAddressedStore:
        if self._artifact_store is None:
            self._artifact_store = ContentAddressedStore(self.settings.artifact_store_path)
        return self._artifact_store

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def resolve_toolchain(self) -> ResolvedToolchain:
        """Resolve the pinned toolchain. Raises ``ToolchainMismatch``."""
        if self.toolchain is not None:
            return self.toolchain
        resolver = self._resolver
        if resolver is None:
            channel = read_toolchain_channel(self.config.resolve_path(self.config.toolchain_file))
            resolver = ToolchainResolver(
                ToolchainSpec(version=channel, sha256=self.config.toolchain_sha256),
                self.config.resolve_path(self.config.toolchain_root),
            )
        self.toolchain = resolver.resolve()
        return self.toolchain

    def version_extra(self) -> str:
        if self._version_extra is None:
            self._version_extra = self.config.version_extra or short_revision(
                self.config.project_root
            )
        return self._version_extra

    def generator(self, toolchain_sha256: str = "") -> VariantMatrixGenerator:
        composer = EnvironmentComposer(
            DependencyLocator(self.config.dependencies),
            version_extra=self.version_extra(),
        )
        return VariantMatrixGenerator(self.config, composer, toolchain_sha256=toolchain_sha256)

    def _executor(self, toolchain: ResolvedToolchain) -> BuildExecutor:
        if self._executor_factory is not None:
            return self._executor_factory(toolchain)
        return CargoExecutor(
            toolchain.cargo,
            self.config.project_root,
            self.config.binary_name,
            log_dir=self.settings.workdir / "logs",
        )

    def _packager(self) -> ImagePackager:
        if self._packager_factory is not None:
            return self._packager_factory()
        return ImagePackager(
            ca_bundle=self.config.ca_bundle,
            init_binary=self.config.init_binary,
            created=source_date_epoch(self.config.project_root),
        )

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def run(
        self,
        selection: MatrixSelection | None = None,
        *,
        outputs: Sequence[str] = (),
        profile: BuildProfile = BuildProfile.RELEASE,
        package: bool = False,
    ) -> list[JobOutcome]:
        """Build (and optionally package) every cell of *selection*.

        With *outputs*, build exactly those named outputs in *profile*
        instead.  Outcomes are returned in matrix order.  Raises only for
        shared prerequisites (toolchain, source revision); per-cell errors
        are in the outcomes.
        """
        toolchain = self.resolve_toolchain()
        generator = self.generator(toolchain.actual_sha256)
        if outputs:
            variants = list(
                dict.fromkeys(generator.variant_for_output(name, profile) for name in outputs)
            )
        else:
            variants = generator.expand(selection)
        executor = self._executor(toolchain)
        packager = self._packager() if package else None

        logger.info(
            "Running %d matrix cell(s) with up to %d worker(s)",
            len(variants),
            self.settings.max_workers,
        )
        with ThreadPoolExecutor(max_workers=self.settings.max_workers) as pool:
            futures = [
                pool.submit(self._run_cell, generator, executor, packager, variant)
                for variant in variants
            ]
            outcomes = [future.result() for future in futures]

        failed = sum(1 for o in outcomes if o.status is JobStatus.FAILED)
        logger.info("Matrix finished: %d succeeded, %d failed", len(outcomes) - failed, failed)
        return outcomes

    def _run_cell(
        self,
        generator: VariantMatrixGenerator,
        executor: BuildExecutor,
        packager: ImagePackager | None,
        variant: BuildVariant,
    ) -> JobOutcome:
        job: BuildJob | None = None
        try:
            job = generator.job_for(variant)
            result = executor.build(job)
            image = stored = None
            if packager is not None:
                image = packager.package(
                    result.binary_path,
                    self.settings.workdir / "images" / variant.image_archive_name,
                    name=self.config.binary_name,
                    tag=variant.image_tag,
                    triple=variant.target.triple,
                    label=variant.describe(),
                )
                stored = self.artifact_store.store_file(
                    image.path,
                    name=variant.image_archive_name,
                    artifact_type="image-archive",
                    metadata={"job_id": job.job_id, "reference": image.spec.reference},
                )
        except (CrossforgeError, OSError) as exc:
            logger.error("Cell %s failed: %s", variant.describe(), exc)
            return JobOutcome(
                variant=variant,
                status=JobStatus.FAILED,
                job_id=job.job_id if job else "",
                error=str(exc),
                error_kind=type(exc).__name__,
            )
        return JobOutcome(
            variant=variant,
            status=JobStatus.SUCCEEDED,
            job_id=job.job_id,
            binary_path=result.binary_path,
            image=image,
            stored_image=stored,
        )

"""Crossforge data models: all Pydantic v2, all frozen (immutable)."""

from crossforge.models.artifacts import StoredArtifact
from crossforge.models.config import MatrixConfig, NativeDependencyConfig, load_matrix_config
from crossforge.models.images import EmbeddedFile, ImageArchive, ImageLayer, ImageSpec
from crossforge.models.platforms import (
    CcToolchain,
    LinkerFamily,
    PlatformRoles,
    PlatformTriple,
    RoleBinding,
)
from crossforge.models.results import (
    VALID_TRANSITIONS,
    HarnessReport,
    HarnessState,
    HarnessTransition,
    TestAction,
    TestResultRecord,
)
from crossforge.models.variants import (
    AllocatorKind,
    BuildJob,
    BuildProfile,
    BuildVariant,
    TargetSpec,
)
from crossforge.models.versioning import ResolvedToolchain, ToolchainSpec

__all__ = [
    # platforms
    "PlatformTriple",
    "LinkerFamily",
    "CcToolchain",
    "RoleBinding",
    "PlatformRoles",
    # versioning
    "ToolchainSpec",
    "ResolvedToolchain",
    # variants
    "AllocatorKind",
    "BuildProfile",
    "TargetSpec",
    "BuildVariant",
    "BuildJob",
    # images
    "EmbeddedFile",
    "ImageLayer",
    "ImageSpec",
    "ImageArchive",
    # results
    "TestAction",
    "TestResultRecord",
    "HarnessState",
    "HarnessTransition",
    "HarnessReport",
    "VALID_TRANSITIONS",
    # artifacts
    "StoredArtifact",
    # config
    "MatrixConfig",
    "NativeDependencyConfig",
    "load_matrix_config",
]

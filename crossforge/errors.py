"""Error taxonomy for Crossforge.

Every fatal condition names the component that raised it and the input it
was working on (a triple, an output name, an artifact path).  The CLI
prints ``str(exc)`` and exits non-zero.

Scope of each error:

- ``ToolchainMismatch``: shared prerequisite, aborts the whole run.
- ``DependencyNotFound``: one matrix cell.
- ``BuildFailed``: one matrix cell.
- ``ArtifactMissing``: packaging of one variant.
- ``ImageLoadFailed``: one harness run.
- ``SuiteProcessUnstartable``: one harness run.
- ``SuiteProcessCrashed``: one harness run.
- ``SuiteCancelled``: one harness run (timeout or cancel()).
- ``RuntimeNamespaceConflict``: one harness run.

Individual conformance test failures are never errors; they are data in
the normalized result artifact.
"""

from __future__ import annotations


class CrossforgeError(RuntimeError):
    """Base class for all fatal Crossforge conditions."""

    component: str = "crossforge"

    def __init__(self, message: str, *, subject: str = "") -> None:
        self.subject = subject
        super().__init__(message)

    def __str__(self) -> str:
        base = super().__str__()
        if self.subject:
            return f"[{self.component}] {base} (input: {self.subject})"
        return f"[{self.component}] {base}"


class ConfigError(CrossforgeError):
    """Raised when the matrix configuration file is missing or invalid."""

    component = "config"


class ToolchainMismatch(CrossforgeError):
    """Raised when the resolved toolchain differs from the declared pin."""

    component = "toolchain-resolver"


class DependencyNotFound(CrossforgeError):
    """Raised when a native dependency cannot be located for a triple."""

    component = "environment-composer"

    def __init__(self, dependency: str, triple: str, detail: str = "") -> None:
        self.dependency = dependency
        self.triple = triple
        message = f"native dependency {dependency!r} not found for {triple}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message, subject=f"{dependency}@{triple}")


class BuildFailed(CrossforgeError):
    """Raised when the cargo invocation for one job exits unsuccessfully."""

    component = "build-executor"


class ArtifactMissing(CrossforgeError):
    """Raised when a file to be packaged is missing or not executable."""

    component = "image-packager"


class ImageLoadFailed(CrossforgeError):
    """Raised when the container runtime refuses to load an image."""

    component = "complement-harness"


class SuiteProcessUnstartable(CrossforgeError):
    """Raised when the conformance suite process cannot be started."""

    component = "complement-harness"


class SuiteProcessCrashed(CrossforgeError):
    """Raised when the suite process dies from a signal the harness did not send."""

    component = "complement-harness"


class SuiteCancelled(CrossforgeError):
    """Raised after a timeout or explicit cancellation of the suite."""

    component = "complement-harness"


class RuntimeNamespaceConflict(CrossforgeError):
    """Raised when two harness runs would share one image reference."""

    component = "complement-harness"

"""Crossforge: reproducible build matrix orchestration for a Rust server.

Resolves a pinned Rust toolchain, composes per-variant cross-compilation
environments, expands the allocator × profile × target matrix into build
jobs, packages binaries into minimal reproducible container images and
runs the Complement conformance suite against them.
"""

__version__ = "0.1.0"
__description__ = "Build matrix, image packaging and Complement harness for a Rust server"

from crossforge.core.orchestrator import MatrixOrchestrator
from crossforge.cli.app import app as cli

__all__ = ["MatrixOrchestrator", "cli", "__version__"]

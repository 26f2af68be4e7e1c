"""Runtime settings: env-driven.

Centralized settings using pydantic-settings. Reads from a .env file and
CROSSFORGE_* environment variables. Project-level build configuration
(triples, toolchains, dependency prefixes) lives in ``MatrixConfig``
instead, see ``crossforge.models.config``.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class CrossforgeSettings(BaseSettings):
    """Process-wide settings with environment variable overrides.

    Examples
    --------
    Override via environment::

        export CROSSFORGE_MAX_WORKERS=2
        export CROSSFORGE_LOG_LEVEL=DEBUG
        export CROSSFORGE_SUITE_TIMEOUT_SECONDS=1800

    Or via .env file::

        CROSSFORGE_ALLOW_CONCURRENT_HARNESS_RUNS=true
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="CROSSFORGE_",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    log_level: str = "INFO"

    # Paths
    workdir: Path = Path(".crossforge")
    artifact_store_path: Path = Path(".crossforge/artifacts")
    matrix_config_path: Path = Path("crossforge.toml")

    # Build pool
    max_workers: int = Field(default=4, ge=1)

    # Complement harness
    suite_timeout_seconds: float = Field(default=3600.0, gt=0)
    suite_kill_grace_seconds: float = Field(default=10.0, ge=0)
    # Separate harness runs share the container runtime's image namespace.
    # Off: every run in this process is serialised.  On: runs may overlap
    # but must use distinct image references.
    allow_concurrent_harness_runs: bool = False

    @property
    def results_dir(self) -> Path:
        """Directory for raw and normalized harness artifacts."""
        return self.workdir / "complement"


# Module-level singleton: import as `from crossforge.config import settings`
settings = CrossforgeSettings()

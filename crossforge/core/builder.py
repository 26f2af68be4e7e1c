"""Pluggable build executors.

``BuildExecutor`` is the Protocol the orchestrator drives; ``CargoExecutor``
runs the job's cargo argv with the job's environment layered over a
minimal inherited environment.
"""

from __future__ import annotations

import logging
import os
import subprocess
from pathlib import Path
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict

from crossforge.errors import BuildFailed
from crossforge.models.variants import BuildJob

logger = logging.getLogger(__name__)

# Variables passed through from the caller's environment to cargo.
_INHERITED_VARS = ("PATH", "HOME", "TMPDIR", "CARGO_HOME", "RUSTUP_HOME", "SOURCE_DATE_EPOCH")
_STDERR_TAIL = 40


class BuildResult(BaseModel):
    """The compiled artifact produced by one job."""

    model_config = ConfigDict(frozen=True)

    job_id: str
    binary_path: Path
    log_path: Path | None = None


@runtime_checkable
class BuildExecutor(Protocol):
    """Anything that can turn a BuildJob into a compiled binary."""

    def build(self, job: BuildJob) -> BuildResult:
        """Run *job*; raise ``BuildFailed`` if it does not produce a binary."""
        ...


def target_dir(project_root: Path, job: BuildJob) -> Path:
    """Cargo target directory for *job*.

    One directory per named output; no two concurrent jobs share one.
    """
    return Path(project_root) / "target" / job.output_name


def artifact_path(project_root: Path, job: BuildJob, binary_name: str) -> Path:
    """Where cargo leaves the binary for *job*."""
    variant = job.variant
    return (
        target_dir(project_root, job)
        / variant.target.triple.rustc_target
        / variant.profile.output_dir
        / binary_name
    )


class CargoExecutor:
    """Runs cargo for a job in the project checkout.

    Parameters
    ----------
    cargo:
        Path to the pinned cargo binary.
    project_root:
        The checkout containing ``Cargo.toml``.
    binary_name:
        Name of the produced executable.
    log_dir:
        Where per-job build logs are written.
    timeout:
        Seconds before a build is abandoned.
    """

    def __init__(
        self,
        cargo: str,
        project_root: Path,
        binary_name: str,
        *,
        log_dir: Path | None = None,
        timeout: float | None = None,
    ) -> None:
        self._cargo = cargo
        self._root = Path(project_root)
        self._binary = binary_name
        self._log_dir = log_dir
        self._timeout = timeout

    def _environment(self, job: BuildJob) -> dict[str, str]:
        env = {k: os.environ[k] for k in _INHERITED_VARS if k in os.environ}
        env.update(job.environment)
        env["CARGO_PROFILE"] = job.variant.profile.value
        env["CARGO_TARGET_DIR"] = str(target_dir(self._root, job))
        return env

    def build(self, job: BuildJob) -> BuildResult:
        command = [self._cargo, *job.cargo_args]
        logger.info("Building %s [%s]: %s", job.output_name, job.job_id, " ".join(command))
        try:
            result = subprocess.run(
                command,
                cwd=self._root,
                env=self._environment(job),
                capture_output=True,
                text=True,
                timeout=self._timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            raise BuildFailed(
                f"cargo timed out after {self._timeout}s", subject=job.variant.describe()
            ) from exc
        except OSError as exc:
            raise BuildFailed(f"cannot start cargo: {exc}", subject=job.variant.describe()) from exc

        log_path = None
        if self._log_dir is not None:
            self._log_dir.mkdir(parents=True, exist_ok=True)
            log_path = self._log_dir / f"{job.output_name}-{job.job_id}.log"
            log_path.write_text(result.stdout + result.stderr, encoding="utf-8")

        if result.returncode != 0:
            tail = "\n".join(result.stderr.splitlines()[-_STDERR_TAIL:])
            raise BuildFailed(
                f"cargo exited with {result.returncode}:\n{tail}",
                subject=job.variant.describe(),
            )

        binary = artifact_path(self._root, job, self._binary)
        logger.info("Built %s -> %s", job.output_name, binary)
        return BuildResult(job_id=job.job_id, binary_path=binary, log_path=log_path)

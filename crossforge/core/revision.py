"""Source revision metadata: short revision and commit timestamp.

Both come from the source checkout, never from the wall clock, so
rebuilding the same revision yields the same version string and the same
image timestamps.
"""

from __future__ import annotations

import logging
import os
import subprocess
from pathlib import Path

from crossforge.errors import ConfigError

logger = logging.getLogger(__name__)


def _git(project_root: Path, *args: str) -> str:
    try:
        result = subprocess.run(
            ["git", "-C", str(project_root), *args],
            capture_output=True,
            text=True,
            timeout=30,
            check=False,
        )
    except (OSError, subprocess.SubprocessError) as exc:
        raise ConfigError(f"cannot run git: {exc}", subject=str(project_root)) from exc
    if result.returncode != 0:
        raise ConfigError(
            f"git {' '.join(args)} failed: {result.stderr.strip()}",
            subject=str(project_root),
        )
    return result.stdout.strip()


def source_date_epoch(project_root: Path) -> int:
    """Commit time of the checkout's HEAD, in seconds since the epoch.

    ``SOURCE_DATE_EPOCH`` takes precedence when set.
    """
    override = os.environ.get("SOURCE_DATE_EPOCH")
    if override:
        try:
            return int(override)
        except ValueError as exc:
            raise ConfigError("SOURCE_DATE_EPOCH is not an integer", subject=override) from exc
    return int(_git(project_root, "log", "-1", "--format=%ct"))


def short_revision(project_root: Path) -> str:
    """Short HEAD revision, suffixed ``-dirty`` for modified checkouts."""
    rev = _git(project_root, "rev-parse", "--short", "HEAD")
    if _git(project_root, "status", "--porcelain", "--untracked-files=no"):
        rev = f"{rev}-dirty"
    logger.debug("Source revision %s", rev)
    return rev

"""Toolchain resolution: pins and verifies the Rust toolchain once per run.

The declared toolchain (channel from ``rust-toolchain.toml`` plus the
expected content hash) is compared against what is actually installed.
Any difference is fatal: the hash pin is what makes job identities and
image layers reproducible, so a different toolchain must never be used
silently.
"""

from __future__ import annotations

import logging
import re
import subprocess
import tomllib
from pathlib import Path
from typing import Protocol, runtime_checkable

from crossforge.core.hasher import normalize_sha256, to_sri, tree_sha256
from crossforge.errors import ConfigError, ToolchainMismatch
from crossforge.models.versioning import ResolvedToolchain, ToolchainSpec

logger = logging.getLogger(__name__)

_NUMERIC_VERSION = re.compile(r"^\d+\.\d+(\.\d+)?$")
_RUSTC_VERSION = re.compile(r"^rustc\s+(\S+)")


def read_toolchain_channel(toolchain_file: Path) -> str:
    """Read ``[toolchain] channel`` from a rust-toolchain.toml file."""
    path = Path(toolchain_file)
    try:
        with path.open("rb") as fh:
            data = tomllib.load(fh)
    except FileNotFoundError as exc:
        raise ConfigError("toolchain file not found", subject=str(path)) from exc
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"invalid toolchain file: {exc}", subject=str(path)) from exc
    channel = data.get("toolchain", {}).get("channel", "")
    if not channel:
        raise ConfigError("toolchain file has no [toolchain] channel", subject=str(path))
    return str(channel)


@runtime_checkable
class ToolchainProbe(Protocol):
    """Reports what is actually installed at a toolchain root."""

    def version(self, root: Path) -> str:
        """Return the installed compiler version, e.g. ``1.79.0``."""
        ...

    def content_hash(self, root: Path) -> str:
        """Return the hex SHA-256 of the installed toolchain."""
        ...


class LocalToolchainProbe:
    """Probe a toolchain installed on the local filesystem."""

    def __init__(self, timeout: float = 60.0) -> None:
        self._timeout = timeout

    def version(self, root: Path) -> str:
        rustc = Path(root) / "bin" / "rustc"
        try:
            result = subprocess.run(
                [str(rustc), "--version"],
                capture_output=True,
                text=True,
                timeout=self._timeout,
                check=False,
            )
        except (OSError, subprocess.SubprocessError) as exc:
            raise ToolchainMismatch(
                f"toolchain unavailable: cannot run rustc ({exc})", subject=str(rustc)
            ) from exc
        match = _RUSTC_VERSION.match(result.stdout.strip())
        if result.returncode != 0 or match is None:
            raise ToolchainMismatch(
                f"toolchain unavailable: unexpected rustc output {result.stdout.strip()!r}",
                subject=str(rustc),
            )
        return match.group(1)

    def content_hash(self, root: Path) -> str:
        return tree_sha256(root)


class ToolchainResolver:
    """Resolves and verifies one declared toolchain.

    Parameters
    ----------
    spec:
        The declared version and expected content hash.
    root:
        Where the toolchain is installed.
    probe:
        Inspects the installed toolchain. Defaults to ``LocalToolchainProbe``.
    """

    def __init__(
        self,
        spec: ToolchainSpec,
        root: Path,
        probe: ToolchainProbe | None = None,
    ) -> None:
        self._spec = spec
        self._root = Path(root)
        self._probe = probe or LocalToolchainProbe()

    @property
    def spec(self) -> ToolchainSpec:
        return self._spec

    def resolve(self) -> ResolvedToolchain:
        """Verify the installed toolchain against the pin.

        Raises ``ToolchainMismatch`` if the toolchain is absent, its version
        differs from a numeric declared version, or its content hash differs.
        """
        if not self._root.is_dir():
            raise ToolchainMismatch(
                f"toolchain {self._spec.version} unavailable", subject=str(self._root)
            )

        try:
            expected = normalize_sha256(self._spec.sha256)
        except ValueError as exc:
            raise ToolchainMismatch(str(exc), subject=self._spec.sha256) from exc

        actual_version = self._probe.version(self._root)
        if _NUMERIC_VERSION.match(self._spec.version):
            if actual_version != self._spec.version:
                raise ToolchainMismatch(
                    f"declared version {self._spec.version}, installed {actual_version}",
                    subject=str(self._root),
                )
        else:
            logger.debug(
                "Channel %r is not a numeric version; relying on the hash pin only.",
                self._spec.version,
            )

        actual = f"sha256:{self._probe.content_hash(self._root)}"
        if actual != expected:
            raise ToolchainMismatch(
                f"declared hash {to_sri(expected)}, actual {to_sri(actual)}",
                subject=str(self._root),
            )

        logger.info(
            "Toolchain %s resolved at %s (%s)",
            actual_version,
            self._root,
            to_sri(actual),
        )
        return ResolvedToolchain(
            spec=self._spec,
            root=self._root,
            actual_version=actual_version,
            actual_sha256=actual,
        )

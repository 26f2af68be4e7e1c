"""Toolchain pinning models: the declared pin and the resolved toolchain."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict, field_validator


class ToolchainSpec(BaseModel):
    """A declared toolchain: version identifier plus expected content hash.

    The hash may be given in SRI form (``sha256-<base64>``, as used by the
    toolchain file pinning) or as ``sha256:<hex>``.
    """

    model_config = ConfigDict(frozen=True)

    version: str
    sha256: str

    @field_validator("version", "sha256")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be empty")
        return value.strip()


class ResolvedToolchain(BaseModel):
    """A toolchain verified against its pin. Shared read-only by all jobs."""

    model_config = ConfigDict(frozen=True)

    spec: ToolchainSpec
    root: Path
    actual_version: str
    actual_sha256: str  # normalized "sha256:<hex>"

    @property
    def cargo(self) -> str:
        return str(self.root / "bin" / "cargo")

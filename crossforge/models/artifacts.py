"""Content-addressed artifact models (immutable)."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict


class StoredArtifact(BaseModel):
    """Metadata for an artifact held in the store.

    The content_address is both the identity and the integrity check.
    """

    model_config = ConfigDict(frozen=True)

    content_address: str  # "sha256:<hex>"
    artifact_type: str  # "image-archive", "complement-raw", "complement-normalized", ...
    name: str
    size_bytes: int
    metadata: dict[str, Any] = {}

"""Content-addressed, immutable artifact store.

Holds packaged image archives and harness result files so runs against
different builds can be compared by address.

Storage layout: {base_path}/{sha256[0:2]}/{sha256[2:4]}/{sha256}.dat
No delete method: artifacts are immutable once stored.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Any

from crossforge.core.hasher import file_sha256, sha256_hex
from crossforge.models.artifacts import StoredArtifact

logger = logging.getLogger(__name__)


class ArtifactIntegrityError(RuntimeError):
    """Raised when a stored artifact's hash does not match its address."""


class ContentAddressedStore:
    """SHA-256 keyed, immutable artifact store.

    Storing the same content twice is a no-op (idempotent).  Writes go
    through a temporary file and an atomic rename, so concurrent build
    workers may store into the same base path.

    Parameters
    ----------
    base_path:
        Root directory for artifact storage.
    """

    def __init__(self, base_path: Path) -> None:
        self._base = Path(base_path)
        self._base.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def _extract_digest(content_address: str) -> str:
        """Strip the ``sha256:`` prefix from a content address, if present."""
        return content_address.removeprefix("sha256:")

    def _artifact_path(self, sha256_digest: str) -> Path:
        return self._base / sha256_digest[:2] / sha256_digest[2:4] / f"{sha256_digest}.dat"

    # ------------------------------------------------------------------
    # Store
    # ------------------------------------------------------------------

    def store_bytes(
        self,
        data: bytes,
        *,
        name: str = "",
        artifact_type: str = "generic",
        metadata: dict[str, Any] | None = None,
    ) -> StoredArtifact:
        """Store *data* and return its metadata."""
        digest = sha256_hex(data)
        path = self._artifact_path(digest)
        if path.exists():
            self._check_existing(digest)
        else:
            self._atomic_write(path, lambda fh: fh.write(data))
        return self._describe(digest, len(data), name, artifact_type, metadata)

    def store_file(
        self,
        source: Path,
        *,
        name: str = "",
        artifact_type: str = "generic",
        metadata: dict[str, Any] | None = None,
    ) -> StoredArtifact:
        """Copy the file at *source* into the store, streamed."""
        source = Path(source)
        digest = file_sha256(source)
        path = self._artifact_path(digest)
        if path.exists():
            self._check_existing(digest)
        else:
            with source.open("rb") as src:
                self._atomic_write(path, lambda fh: shutil.copyfileobj(src, fh))
        size = source.stat().st_size
        logger.debug("Stored %s as sha256:%s", source, digest)
        return self._describe(digest, size, name or source.name, artifact_type, metadata)

    # ------------------------------------------------------------------
    # Retrieve
    # ------------------------------------------------------------------

    def path_of(self, content_address: str) -> Path:
        """Filesystem path of a stored artifact."""
        path = self._artifact_path(self._extract_digest(content_address))
        if not path.exists():
            raise FileNotFoundError(f"Artifact not found: {content_address}")
        return path

    def retrieve(self, content_address: str) -> bytes:
        """Retrieve artifact bytes by content address."""
        return self.path_of(content_address).read_bytes()

    def exists(self, content_address: str) -> bool:
        return self._artifact_path(self._extract_digest(content_address)).exists()

    def verify(self, content_address: str) -> bool:
        """Re-hash stored data and compare against the content address."""
        digest = self._extract_digest(content_address)
        path = self._artifact_path(digest)
        if not path.exists():
            return False
        return file_sha256(path) == digest

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _check_existing(self, digest: str) -> None:
        if not self.verify(digest):
            raise ArtifactIntegrityError(
                f"Existing artifact at {digest} failed integrity check"
            )

    def _atomic_write(self, path: Path, write) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as fh:
                write(fh)
            os.replace(tmp, path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    @staticmethod
    def _describe(
        digest: str,
        size: int,
        name: str,
        artifact_type: str,
        metadata: dict[str, Any] | None,
    ) -> StoredArtifact:
        return StoredArtifact(
            content_address=f"sha256:{digest}",
            artifact_type=artifact_type,
            name=name or digest[:16],
            size_bytes=size,
            metadata=metadata or {},
        )

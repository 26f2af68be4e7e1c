"""Canonical hashing helpers for job identity, toolchain pins and artifacts."""

from __future__ import annotations

import base64
import hashlib
import json
import os
from pathlib import Path
from typing import Any

_CHUNK = 1 << 20


def canonical_json_bytes(obj: Any) -> bytes:
    """Produce canonical JSON bytes: deterministic, sorted, compact.

    - sorted keys
    - no whitespace separators (",", ":")
    - ensure_ascii=True
    - UTF-8 encoding
    """
    return json.dumps(
        obj, sort_keys=True, separators=(",", ":"), ensure_ascii=True
    ).encode("utf-8")


def sha256_hex(data: bytes) -> str:
    """Return the SHA-256 hex digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()


def file_sha256(path: Path) -> str:
    """SHA-256 hex digest of a file, streamed."""
    digest = hashlib.sha256()
    with Path(path).open("rb") as fh:
        for chunk in iter(lambda: fh.read(_CHUNK), b""):
            digest.update(chunk)
    return digest.hexdigest()


def content_address(obj: Any) -> str:
    """Content-address a JSON-serializable object as ``sha256:<hex>``."""
    return f"sha256:{sha256_hex(canonical_json_bytes(obj))}"


def normalize_sha256(value: str) -> str:
    """Normalize a SHA-256 given as SRI or prefixed hex to ``sha256:<hex>``.

    Accepted forms: ``sha256-<base64>`` (SRI), ``sha256:<hex>`` and bare
    64-character hex.
    """
    value = value.strip()
    if value.startswith("sha256-"):
        try:
            raw = base64.b64decode(value.removeprefix("sha256-"), validate=True)
        except ValueError as exc:
            raise ValueError(f"Malformed SRI hash: {value!r}") from exc
        if len(raw) != 32:
            raise ValueError(f"Malformed SRI hash: {value!r}")
        return f"sha256:{raw.hex()}"
    digest = value.removeprefix("sha256:").lower()
    if len(digest) != 64 or any(c not in "0123456789abcdef" for c in digest):
        raise ValueError(f"Malformed sha256 hash: {value!r}")
    return f"sha256:{digest}"


def to_sri(hex_digest: str) -> str:
    """Render a hex SHA-256 digest in SRI form."""
    raw = bytes.fromhex(hex_digest.removeprefix("sha256:"))
    return "sha256-" + base64.b64encode(raw).decode("ascii")


def tree_sha256(root: Path) -> str:
    """Deterministic SHA-256 over a directory tree.

    Each regular file contributes its relative POSIX path, its executable
    bit and its content digest; symlinks contribute their target.  Entries
    are visited in sorted order so the result is independent of filesystem
    iteration order.
    """
    root = Path(root)
    digest = hashlib.sha256()
    for dirpath, dirnames, filenames in os.walk(root, followlinks=False):
        dirnames.sort()
        for name in sorted(filenames + [d for d in dirnames if (Path(dirpath) / d).is_symlink()]):
            path = Path(dirpath) / name
            rel = path.relative_to(root).as_posix()
            if path.is_symlink():
                entry = f"link\0{rel}\0{os.readlink(path)}\n"
            else:
                executable = "x" if os.access(path, os.X_OK) else "-"
                entry = f"file\0{rel}\0{executable}\0{file_sha256(path)}\n"
            digest.update(entry.encode("utf-8"))
    return digest.hexdigest()


def compute_job_id(payload: dict[str, Any]) -> str:
    """Short, stable identifier of a build job's full input set."""
    return sha256_hex(canonical_json_bytes(payload))[:16]

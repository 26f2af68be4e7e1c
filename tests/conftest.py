"""Shared test fixtures for Crossforge."""

from __future__ import annotations

import stat
from collections.abc import Callable
from pathlib import Path

import pytest

from crossforge.config import CrossforgeSettings
from crossforge.core.artifact_store import ContentAddressedStore
from crossforge.models.config import MatrixConfig, NativeDependencyConfig

NATIVE = "x86_64-unknown-linux-gnu"
CROSS_TARGETS = ("x86_64-unknown-linux-musl", "aarch64-unknown-linux-musl")
FIXED_EPOCH = 1_700_000_000


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test artifacts."""
    return tmp_path


@pytest.fixture
def artifact_store(tmp_dir: Path) -> ContentAddressedStore:
    """Provide a fresh ContentAddressedStore in a temp directory."""
    return ContentAddressedStore(tmp_dir / "artifacts")


@pytest.fixture
def test_settings(tmp_dir: Path) -> CrossforgeSettings:
    """Settings rooted in the temp directory."""
    return CrossforgeSettings(
        workdir=tmp_dir / ".crossforge",
        artifact_store_path=tmp_dir / ".crossforge" / "artifacts",
        max_workers=2,
        suite_timeout_seconds=30.0,
        suite_kill_grace_seconds=1.0,
    )


@pytest.fixture
def make_executable() -> Callable[[Path, str], Path]:
    """Factory fixture: write an executable script at *path*."""

    def _factory(path: Path, body: str) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(body, encoding="utf-8")
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return path

    return _factory


@pytest.fixture
def rocksdb_prefixes(tmp_dir: Path) -> dict[str, dict[str, Path]]:
    """Install-prefix layout for the storage engine: flavour -> triple -> prefix."""
    prefixes: dict[str, dict[str, Path]] = {}
    for flavor in ("default", "jemalloc"):
        prefixes[flavor] = {}
        for triple in (NATIVE, *CROSS_TARGETS):
            prefix = tmp_dir / "deps" / flavor / triple
            (prefix / "include").mkdir(parents=True)
            (prefix / "lib").mkdir(parents=True)
            prefixes[flavor][triple] = prefix
    return prefixes


@pytest.fixture
def cxx_runtime_root(tmp_dir: Path) -> Path:
    """C++ runtime install with a lib directory per cross triple."""
    root = tmp_dir / "gcc"
    for triple in CROSS_TARGETS:
        (root / triple / "lib").mkdir(parents=True)
    return root


@pytest.fixture
def matrix_config(
    tmp_dir: Path, rocksdb_prefixes: dict[str, dict[str, Path]], cxx_runtime_root: Path
) -> MatrixConfig:
    """A MatrixConfig with every storage-engine prefix and C++ runtime present."""
    return MatrixConfig(
        project_root=tmp_dir,
        native_triple=NATIVE,
        cross_targets=list(CROSS_TARGETS),
        cxx_runtime_root=cxx_runtime_root,
        toolchain_sha256="sha256:" + "ab" * 32,
        dependencies={
            "rocksdb": NativeDependencyConfig(env_prefix="ROCKSDB", prefixes=rocksdb_prefixes),
        },
        version_extra="abc1234",
    )


@pytest.fixture
def source_epoch(monkeypatch: pytest.MonkeyPatch) -> int:
    """Pin SOURCE_DATE_EPOCH so no git checkout is needed."""
    monkeypatch.setenv("SOURCE_DATE_EPOCH", str(FIXED_EPOCH))
    return FIXED_EPOCH


@pytest.fixture
def image_inputs(tmp_dir: Path, make_executable) -> dict[str, Path]:
    """A fake server binary, init process and CA bundle."""
    return {
        "binary": make_executable(tmp_dir / "build" / "conduit", "#!/bin/sh\necho conduit\n"),
        "init": make_executable(tmp_dir / "tools" / "tini", "#!/bin/sh\nexec \"$@\"\n"),
        "ca": _write(tmp_dir / "tools" / "ca-certificates.crt", "-----BEGIN CERTIFICATE-----\n"),
    }


def _write(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path

"""Tests for ToolchainResolver: version and hash pin verification."""

from __future__ import annotations

from pathlib import Path

import pytest

from crossforge.core.hasher import to_sri, tree_sha256
from crossforge.core.toolchain import (
    LocalToolchainProbe,
    ToolchainResolver,
    read_toolchain_channel,
)
from crossforge.errors import ConfigError, ToolchainMismatch
from crossforge.models.versioning import ToolchainSpec

DIGEST = "cd" * 32


class FakeProbe:
    def __init__(self, version: str = "1.79.0", digest: str = DIGEST) -> None:
        self._version = version
        self._digest = digest
        self.calls = 0

    def version(self, root: Path) -> str:
        self.calls += 1
        return self._version

    def content_hash(self, root: Path) -> str:
        return self._digest


@pytest.fixture
def toolchain_root(tmp_dir: Path) -> Path:
    root = tmp_dir / "toolchain"
    (root / "bin").mkdir(parents=True)
    return root


class TestToolchainResolver:
    def test_resolves_matching_pin(self, toolchain_root):
        spec = ToolchainSpec(version="1.79.0", sha256=f"sha256:{DIGEST}")
        resolved = ToolchainResolver(spec, toolchain_root, FakeProbe()).resolve()
        assert resolved.actual_version == "1.79.0"
        assert resolved.actual_sha256 == f"sha256:{DIGEST}"
        assert resolved.cargo == str(toolchain_root / "bin" / "cargo")

    def test_accepts_sri_pin(self, toolchain_root):
        spec = ToolchainSpec(version="1.79.0", sha256=to_sri(DIGEST))
        resolved = ToolchainResolver(spec, toolchain_root, FakeProbe()).resolve()
        assert resolved.actual_sha256 == f"sha256:{DIGEST}"

    def test_hash_mismatch_is_fatal(self, toolchain_root):
        spec = ToolchainSpec(version="1.79.0", sha256=f"sha256:{'00' * 32}")
        with pytest.raises(ToolchainMismatch) as excinfo:
            ToolchainResolver(spec, toolchain_root, FakeProbe()).resolve()
        message = str(excinfo.value)
        assert to_sri("00" * 32) in message
        assert to_sri(DIGEST) in message
        assert "toolchain-resolver" in message

    def test_version_mismatch_is_fatal(self, toolchain_root):
        spec = ToolchainSpec(version="1.80.0", sha256=f"sha256:{DIGEST}")
        with pytest.raises(ToolchainMismatch, match="1.80.0"):
            ToolchainResolver(spec, toolchain_root, FakeProbe()).resolve()

    def test_named_channel_relies_on_hash(self, toolchain_root):
        spec = ToolchainSpec(version="stable", sha256=f"sha256:{DIGEST}")
        resolved = ToolchainResolver(spec, toolchain_root, FakeProbe("1.81.0")).resolve()
        assert resolved.actual_version == "1.81.0"

    def test_missing_root_is_unavailable(self, tmp_dir):
        spec = ToolchainSpec(version="1.79.0", sha256=f"sha256:{DIGEST}")
        probe = FakeProbe()
        with pytest.raises(ToolchainMismatch, match="unavailable"):
            ToolchainResolver(spec, tmp_dir / "missing", probe).resolve()
        assert probe.calls == 0

    def test_malformed_pin(self, toolchain_root):
        spec = ToolchainSpec(version="1.79.0", sha256="sha256:nothex")
        with pytest.raises(ToolchainMismatch):
            ToolchainResolver(spec, toolchain_root, FakeProbe()).resolve()

    def test_blank_spec_rejected(self):
        with pytest.raises(ValueError):
            ToolchainSpec(version=" ", sha256=DIGEST)


class TestLocalToolchainProbe:
    def test_reads_rustc_version(self, toolchain_root, make_executable):
        make_executable(
            toolchain_root / "bin" / "rustc",
            "#!/bin/sh\necho 'rustc 1.79.0 (129f3b996 2024-06-10)'\n",
        )
        assert LocalToolchainProbe().version(toolchain_root) == "1.79.0"

    def test_missing_rustc(self, toolchain_root):
        with pytest.raises(ToolchainMismatch, match="unavailable"):
            LocalToolchainProbe().version(toolchain_root)

    def test_content_hash_is_tree_hash(self, toolchain_root):
        (toolchain_root / "bin" / "cargo").write_bytes(b"cargo")
        assert LocalToolchainProbe().content_hash(toolchain_root) == tree_sha256(toolchain_root)

    def test_end_to_end_with_local_probe(self, toolchain_root, make_executable):
        make_executable(toolchain_root / "bin" / "rustc", "#!/bin/sh\necho 'rustc 1.79.0'\n")
        digest = tree_sha256(toolchain_root)
        spec = ToolchainSpec(version="1.79.0", sha256=to_sri(digest))
        assert ToolchainResolver(spec, toolchain_root).resolve().actual_sha256 == f"sha256:{digest}"


class TestToolchainFile:
    def test_reads_channel(self, tmp_dir):
        path = tmp_dir / "rust-toolchain.toml"
        path.write_text('[toolchain]\nchannel = "1.79.0"\ncomponents = ["rustfmt"]\n')
        assert read_toolchain_channel(path) == "1.79.0"

    def test_missing_file(self, tmp_dir):
        with pytest.raises(ConfigError):
            read_toolchain_channel(tmp_dir / "rust-toolchain.toml")

    def test_missing_channel(self, tmp_dir):
        path = tmp_dir / "rust-toolchain.toml"
        path.write_text("[toolchain]\n")
        with pytest.raises(ConfigError, match="channel"):
            read_toolchain_channel(path)

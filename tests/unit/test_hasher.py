"""Tests for hashing helpers: canonical JSON, SRI conversion, tree hashes."""

from __future__ import annotations

import base64
import hashlib

import pytest

from crossforge.core.hasher import (
    canonical_json_bytes,
    compute_job_id,
    file_sha256,
    normalize_sha256,
    sha256_hex,
    to_sri,
    tree_sha256,
)


class TestCanonicalJson:
    def test_key_order_independent(self):
        assert canonical_json_bytes({"b": 1, "a": 2}) == canonical_json_bytes({"a": 2, "b": 1})

    def test_job_id_stable_and_short(self):
        payload = {"variant": "default", "args": ["build", "--locked"]}
        assert compute_job_id(payload) == compute_job_id(dict(payload))
        assert len(compute_job_id(payload)) == 16

    def test_job_id_changes_with_input(self):
        assert compute_job_id({"a": 1}) != compute_job_id({"a": 2})


class TestSha256Forms:
    def test_hex_passthrough(self):
        digest = "AB" * 32
        assert normalize_sha256(digest) == "sha256:" + "ab" * 32
        assert normalize_sha256("sha256:" + "ab" * 32) == "sha256:" + "ab" * 32

    def test_sri_round_trip(self):
        raw = hashlib.sha256(b"toolchain").digest()
        sri = "sha256-" + base64.b64encode(raw).decode()
        assert normalize_sha256(sri) == f"sha256:{raw.hex()}"
        assert to_sri(raw.hex()) == sri

    @pytest.mark.parametrize("bad", ["", "sha256:xyz", "sha256-notbase64!", "ab" * 31])
    def test_malformed(self, bad):
        with pytest.raises(ValueError):
            normalize_sha256(bad)


class TestTreeHash:
    def test_file_sha256_matches_bytes(self, tmp_dir):
        path = tmp_dir / "blob"
        path.write_bytes(b"x" * 100_000)
        assert file_sha256(path) == sha256_hex(b"x" * 100_000)

    def test_tree_hash_deterministic(self, tmp_dir):
        for root in (tmp_dir / "a", tmp_dir / "b"):
            (root / "bin").mkdir(parents=True)
            (root / "bin" / "rustc").write_bytes(b"rustc")
            (root / "lib").mkdir()
            (root / "lib" / "libstd.rlib").write_bytes(b"std")
        assert tree_sha256(tmp_dir / "a") == tree_sha256(tmp_dir / "b")

    def test_tree_hash_sees_content_change(self, tmp_dir):
        root = tmp_dir / "tc"
        root.mkdir()
        (root / "f").write_bytes(b"one")
        before = tree_sha256(root)
        (root / "f").write_bytes(b"two")
        assert tree_sha256(root) != before

    def test_tree_hash_sees_executable_bit(self, tmp_dir):
        root = tmp_dir / "tc"
        root.mkdir()
        path = root / "tool"
        path.write_bytes(b"#!/bin/sh\n")
        before = tree_sha256(root)
        path.chmod(0o755)
        assert tree_sha256(root) != before

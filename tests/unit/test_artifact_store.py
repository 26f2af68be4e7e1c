"""Tests for ContentAddressedStore: immutability, integrity, content addressing."""

from __future__ import annotations

import pytest

from crossforge.core.artifact_store import ArtifactIntegrityError, ContentAddressedStore
from crossforge.core.hasher import sha256_hex


class TestContentAddressedStore:
    def test_store_and_retrieve(self, artifact_store: ContentAddressedStore):
        data = b"hello crossforge"
        artifact = artifact_store.store_bytes(data, name="test.txt")
        assert artifact.content_address.startswith("sha256:")
        assert artifact.size_bytes == len(data)
        assert artifact_store.retrieve(artifact.content_address) == data

    def test_content_addressing(self, artifact_store: ContentAddressedStore):
        data = b"deterministic content"
        artifact = artifact_store.store_bytes(data)
        assert artifact.content_address == f"sha256:{sha256_hex(data)}"

    def test_idempotent_store(self, artifact_store: ContentAddressedStore):
        a1 = artifact_store.store_bytes(b"store me twice", name="first")
        a2 = artifact_store.store_bytes(b"store me twice", name="second")
        assert a1.content_address == a2.content_address

    def test_store_file(self, artifact_store: ContentAddressedStore, tmp_dir):
        source = tmp_dir / "image.tar"
        source.write_bytes(b"\0" * 4096)
        artifact = artifact_store.store_file(
            source, artifact_type="image-archive", metadata={"reference": "conduit:main"}
        )
        assert artifact.name == "image.tar"
        assert artifact.artifact_type == "image-archive"
        assert artifact.metadata == {"reference": "conduit:main"}
        assert artifact_store.path_of(artifact.content_address).read_bytes() == source.read_bytes()

    def test_exists(self, artifact_store: ContentAddressedStore):
        artifact = artifact_store.store_bytes(b"check existence")
        assert artifact_store.exists(artifact.content_address) is True
        assert artifact_store.exists("sha256:" + "0" * 64) is False

    def test_retrieve_nonexistent(self, artifact_store: ContentAddressedStore):
        with pytest.raises(FileNotFoundError):
            artifact_store.retrieve("sha256:" + "0" * 64)

    def test_tampered_artifact_detected(self, artifact_store: ContentAddressedStore):
        artifact = artifact_store.store_bytes(b"original")
        artifact_store.path_of(artifact.content_address).write_bytes(b"tampered")
        assert artifact_store.verify(artifact.content_address) is False
        with pytest.raises(ArtifactIntegrityError):
            artifact_store.store_bytes(b"original")

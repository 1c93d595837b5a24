"""Tests for LocalArtifactStore — layout, consistency, access bookkeeping."""

from __future__ import annotations

import json
import os
from collections.abc import Callable
from pathlib import Path

import pytest

from gitcache.core.hasher import integrity_of
from gitcache.core.layout import lock_path
from gitcache.core.local_store import LocalArtifactStore
from gitcache.errors import NotFoundError, StoreError
from gitcache.models.artifacts import PackageInfo
from gitcache.models.keys import ArtifactKey


class TestStoreAndGet:
    def test_round_trip(self, store: LocalArtifactStore, make_key: Callable[..., ArtifactKey]):
        key = make_key()
        store.store(key, b"artifact-bytes")
        assert store.has(key)
        assert store.get(key) == b"artifact-bytes"

    def test_unknown_key_misses(self, store: LocalArtifactStore, make_key: Callable[..., ArtifactKey]):
        key = make_key("b")
        assert store.has(key) is False
        with pytest.raises(NotFoundError):
            store.get(key)

    def test_layout(self, store: LocalArtifactStore, make_key: Callable[..., ArtifactKey]):
        key = make_key()
        store.store(key, b"x")
        entry = store.root / f"{'a' * 40}-linux-x64"
        assert (entry / "package.tgz").read_bytes() == b"x"
        sidecar = json.loads((entry / "metadata.json").read_text())
        assert sidecar["gitUrl"] == "https://github.com/acme/widget"
        assert sidecar["commitSha"] == "a" * 40
        assert sidecar["platform"] == "linux-x64"
        assert sidecar["integrity"] == integrity_of(b"x")
        assert "buildTime" in sidecar

    def test_package_info_recorded(self, store: LocalArtifactStore, make_key: Callable[..., ArtifactKey]):
        key = make_key()
        store.store(key, b"x", package_info=PackageInfo(name="widget", version="1.0.0"))
        metadata = store.get_metadata(key)
        assert metadata is not None
        assert metadata.package_info == PackageInfo(name="widget", version="1.0.0")

    def test_same_digest_is_noop(self, store: LocalArtifactStore, make_key: Callable[..., ArtifactKey]):
        key = make_key()
        first = store.store(key, b"x", package_info=PackageInfo(name="widget", version="1.0.0"))
        second = store.store(key, b"x")
        assert second.sequence == first.sequence
        assert second.package_info == first.package_info

    def test_new_content_replaces(self, store: LocalArtifactStore, make_key: Callable[..., ArtifactKey]):
        key = make_key()
        store.store(key, b"old")
        store.store(key, b"new")
        assert store.get(key) == b"new"
        assert store.get_metadata(key).integrity == integrity_of(b"new")

    def test_sequence_increases(self, store: LocalArtifactStore, make_key: Callable[..., ArtifactKey]):
        a = store.store(make_key("a"), b"1")
        b = store.store(make_key("b"), b"2")
        assert b.sequence > a.sequence

    def test_store_file_consumes_source(
        self, store: LocalArtifactStore, make_key: Callable[..., ArtifactKey], tmp_path: Path
    ):
        source = tmp_path / "widget-1.0.0.tgz"
        source.write_bytes(b"packed")
        key = make_key()
        metadata = store.store_file(key, source)
        assert not source.exists()
        assert store.get(key) == b"packed"
        assert metadata.size_bytes == len(b"packed")

    def test_write_failure_raises_store_error(
        self, store: LocalArtifactStore, make_key: Callable[..., ArtifactKey]
    ):
        store.root.parent.mkdir(parents=True, exist_ok=True)
        store.root.write_text("not a directory")
        with pytest.raises(StoreError):
            store.store(make_key(), b"x")


class TestConsistency:
    def test_missing_sidecar_is_miss(self, store: LocalArtifactStore, make_key: Callable[..., ArtifactKey]):
        key = make_key()
        store.store(key, b"x")
        store.metadata_path(key).unlink()
        assert store.has(key) is False

    def test_missing_artifact_is_miss(self, store: LocalArtifactStore, make_key: Callable[..., ArtifactKey]):
        key = make_key()
        store.store(key, b"x")
        store.path_for(key).unlink()
        assert store.has(key) is False
        with pytest.raises(NotFoundError):
            store.get(key)

    def test_corrupt_sidecar_is_miss(self, store: LocalArtifactStore, make_key: Callable[..., ArtifactKey]):
        key = make_key()
        store.store(key, b"x")
        store.metadata_path(key).write_text("{broken")
        assert store.has(key) is False

    def test_mismatched_sidecar_is_miss(self, store: LocalArtifactStore, make_key: Callable[..., ArtifactKey]):
        key = make_key()
        store.store(key, b"x")
        path = store.metadata_path(key)
        data = json.loads(path.read_text())
        data["platform"] = "darwin-arm64"
        path.write_text(json.dumps(data))
        assert store.has(key) is False

    def test_tampered_artifact_is_removed(
        self, store: LocalArtifactStore, make_key: Callable[..., ArtifactKey]
    ):
        key = make_key()
        store.store(key, b"original")
        store.path_for(key).write_bytes(b"tampered")
        with pytest.raises(NotFoundError, match="integrity"):
            store.get(key)
        assert store.has(key) is False
        assert not store.entry_dir(key).exists()


class TestAccessBookkeeping:
    def test_has_does_not_touch_access(self, store: LocalArtifactStore, make_key: Callable[..., ArtifactKey]):
        key = make_key()
        store.store(key, b"x")
        artifact = store.path_for(key)
        os.utime(artifact, (1_000_000, 1_000_000))
        store.has(key)
        assert artifact.stat().st_atime == pytest.approx(1_000_000)
        assert store.get_metadata(key).access_count == 0

    def test_get_records_access(self, store: LocalArtifactStore, make_key: Callable[..., ArtifactKey]):
        key = make_key()
        store.store(key, b"x")
        artifact = store.path_for(key)
        os.utime(artifact, (1_000_000, 1_000_000))
        store.get(key)
        st = artifact.stat()
        assert st.st_atime > 1_000_000
        assert st.st_mtime == pytest.approx(1_000_000)
        metadata = store.get_metadata(key)
        assert metadata.access_count == 1
        assert metadata.last_accessed is not None


class TestRemoval:
    def test_remove(self, store: LocalArtifactStore, make_key: Callable[..., ArtifactKey]):
        key = make_key()
        store.store(key, b"x")
        assert store.remove(key) is True
        assert store.has(key) is False
        assert store.remove(key) is False

    def test_remove_discards_lock_file(
        self, store: LocalArtifactStore, make_key: Callable[..., ArtifactKey]
    ):
        key = make_key()
        store.store(key, b"x")
        lock = lock_path(store.root, key.directory_name)
        lock.parent.mkdir(parents=True, exist_ok=True)
        lock.touch()
        store.remove(key)
        assert not lock.exists()

    def test_clear_removes_entries_only(
        self, store: LocalArtifactStore, make_key: Callable[..., ArtifactKey]
    ):
        store.store(make_key("a"), b"1")
        store.store(make_key("b"), b"2")
        (store.root / "notes").mkdir()
        store.clear()
        assert store.list_entries() == []
        assert (store.root / "notes").exists()

    def test_clear_discards_lock_files(
        self, store: LocalArtifactStore, make_key: Callable[..., ArtifactKey]
    ):
        key = make_key()
        store.store(key, b"x")
        locks = [lock_path(store.root, key.directory_name), lock_path(store.root, "orphan")]
        locks[0].parent.mkdir(parents=True, exist_ok=True)
        for lock in locks:
            lock.touch()
        store.clear()
        assert not any(lock.exists() for lock in locks)

    def test_clear_on_missing_root(self, tmp_path: Path):
        LocalArtifactStore(tmp_path / "nowhere").clear()


class TestWriteTimeEviction:
    def test_prunes_before_write(self, tmp_path: Path, make_key: Callable[..., ArtifactKey]):
        store = LocalArtifactStore(tmp_path / "tarballs", max_size_bytes=1000)
        old = make_key("a")
        store.store(old, b"x" * 600)
        os.utime(store.path_for(old), (1_000, 1_000))
        store.store(make_key("b"), b"y" * 600)
        # The existing 600 B fit under 1000 B before the second write.
        assert store.has(old)
        store.store(make_key("c"), b"z" * 10)
        # 1200 B > 1000 B: the oldest entry goes before the third write.
        assert not store.has(old)

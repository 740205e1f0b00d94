"""
Test the content-addressed block store.

Verifies idempotent, atomic and verified block ingestion.
"""

import os
import tempfile
from pathlib import Path

import pytest

from backup_vault.errors import BlockCorruptedError, BlockNotFoundError, StorageError
from backup_vault.integrity.hashing import compute_hash
from backup_vault.storage.content_store import ContentStore
from backup_vault.storage.layout import VaultLayout

CONTENT = b"some file content"


class TestContentStore:
    """Test storing and reading blocks."""

    @pytest.fixture
    def workdir(self):
        """Create a temporary working directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield Path(tmpdir)

    @pytest.fixture
    def store(self, workdir):
        """Create a content store inside a fresh vault."""
        layout = VaultLayout(workdir / "vault")
        layout.initialize()
        return ContentStore(layout)

    @pytest.fixture
    def source(self, workdir):
        """Create a source file to ingest."""
        path = workdir / "source.txt"
        path.write_bytes(CONTENT)
        return path

    def test_insert_stores_under_sharded_path(self, store, source):
        """A block lands at data/<first two hex>/<hash>."""
        block_hash = compute_hash(CONTENT)

        assert store.insert(source, block_hash) is True

        path = store.path_of(block_hash)
        assert path == store.layout.data_dir / block_hash[:2] / block_hash
        assert path.read_bytes() == CONTENT
        assert store.has(block_hash)

    def test_insert_is_idempotent(self, store, source, workdir):
        """Inserting an already stored hash copies nothing."""
        block_hash = compute_hash(CONTENT)
        store.insert(source, block_hash)

        other = workdir / "copy.txt"
        other.write_bytes(CONTENT)

        assert store.insert(other, block_hash) is False
        assert len(list(store.iter_blocks())) == 1

    def test_existing_block_is_not_rewritten(self, store, source):
        """A stored block is never touched by a repeated insert."""
        block_hash = compute_hash(CONTENT)
        store.insert(source, block_hash)
        mtime = store.path_of(block_hash).stat().st_mtime_ns

        store.insert(source, block_hash)

        assert store.path_of(block_hash).stat().st_mtime_ns == mtime

    def test_failed_copy_leaves_nothing(self, store, workdir):
        """An unreadable source leaves neither a block nor a temp file."""
        block_hash = compute_hash(b"never written")

        with pytest.raises(StorageError):
            store.insert(workdir / "missing", block_hash)

        assert not store.has(block_hash)
        shard = store.layout.data_dir / block_hash[:2]
        assert list(shard.iterdir()) == []

    def test_changed_source_is_rejected(self, store, source):
        """Bytes that no longer match the given hash are not stored."""
        stale_hash = compute_hash(b"content at scan time")

        with pytest.raises(BlockCorruptedError) as exc_info:
            store.insert(source, stale_hash)

        assert exc_info.value.actual == compute_hash(CONTENT)
        assert not store.has(stale_hash)
        assert list(store.iter_files()) == []

    def test_stored_block_matches_its_name(self, store, source):
        """Every inserted block rehashes to its own file name."""
        block_hash = compute_hash(CONTENT)
        store.insert(source, block_hash)

        with store.open(block_hash) as f:
            assert compute_hash(f.read()) == block_hash

    def test_no_temp_files_left(self, store, source):
        """A successful insert leaves only the block in its shard."""
        block_hash = compute_hash(CONTENT)
        store.insert(source, block_hash)

        names = os.listdir(store.path_of(block_hash).parent)
        assert names == [block_hash]

    def test_open_returns_content(self, store, source):
        """Opening a block yields the ingested bytes."""
        block_hash = compute_hash(CONTENT)
        store.insert(source, block_hash)

        with store.open(block_hash) as f:
            assert f.read() == CONTENT

    def test_open_missing_block(self, store):
        """Opening an unknown block raises BlockNotFoundError."""
        with pytest.raises(BlockNotFoundError):
            store.open(compute_hash(b"absent"))

    def test_delete(self, store, source):
        """Delete removes a block and reports whether it existed."""
        block_hash = compute_hash(CONTENT)
        store.insert(source, block_hash)

        assert store.delete(block_hash) is True
        assert not store.has(block_hash)
        assert store.delete(block_hash) is False

    def test_iter_blocks_skips_stray_files(self, store, source):
        """Temp leftovers and foreign files are not reported as blocks."""
        block_hash = compute_hash(CONTENT)
        store.insert(source, block_hash)

        shard = store.path_of(block_hash).parent
        (shard / ".tmp_leftover").write_bytes(b"partial")
        (store.layout.data_dir / "README").write_text("not a block")

        assert [h for h, _ in store.iter_blocks()] == [block_hash]
        assert len(list(store.iter_files())) == 3

    def test_misplaced_block_is_stray(self, store):
        """A hash-named file in the wrong shard is not a block."""
        block_hash = compute_hash(b"elsewhere")
        wrong_shard = store.layout.data_dir / "zz"
        wrong_shard.mkdir()
        (wrong_shard / block_hash).write_bytes(b"elsewhere")

        assert store.hash_of_path(wrong_shard / block_hash) is None
        assert list(store.iter_blocks()) == []

    def test_stats(self, store, source):
        """Stats count blocks and their bytes."""
        store.insert(source, compute_hash(CONTENT))

        stats = store.get_stats()

        assert stats['total_blocks'] == 1
        assert stats['total_size_bytes'] == len(CONTENT)

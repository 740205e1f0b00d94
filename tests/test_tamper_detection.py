"""
Test tamper detection.

Verifies that tampering with stored blocks is detected.
"""

import pytest
import tempfile
from pathlib import Path

from backup_vault import Vault
from backup_vault.errors import BlockCorruptedError, BlockNotFoundError
from backup_vault.integrity.hashing import compute_hash
from backup_vault.integrity.verification import verify_block


class TestTamperDetection:
    """Test detection of tampered blocks."""

    @pytest.fixture
    def vault(self):
        """Create a temporary vault holding one backup."""
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            source = root / "source"
            source.mkdir()
            (source / "a.txt").write_bytes(b"alpha")
            (source / "b.txt").write_bytes(b"beta")

            Vault.init(root / "vault")
            with Vault.open(root / "vault") as v:
                v.backup("s1", source)
                yield v

    def test_clean_vault_verifies(self, vault):
        """An untouched vault verifies every block."""
        result = vault.verify()

        assert result['valid']
        assert result['verified'] == 2
        assert result['corrupted'] == []
        assert result['missing'] == []

    def test_detect_modified_content(self, vault):
        """Detect when block content is modified."""
        block_hash = compute_hash(b"alpha")
        vault.store.path_of(block_hash).write_bytes(b"alphA")

        with pytest.raises(BlockCorruptedError):
            verify_block(vault.store, block_hash)

        result = vault.verify()
        assert not result['valid']
        assert result['corrupted'] == [block_hash]
        assert result['verified'] == 1

    def test_detect_truncated_block(self, vault):
        """Detect when a block file is emptied."""
        block_hash = compute_hash(b"beta")
        vault.store.path_of(block_hash).write_bytes(b"")

        result = vault.verify()

        assert block_hash in result['corrupted']

    def test_detect_deleted_block(self, vault):
        """Detect when a referenced block file is deleted."""
        block_hash = compute_hash(b"alpha")
        vault.store.path_of(block_hash).unlink()

        with pytest.raises(BlockNotFoundError):
            verify_block(vault.store, block_hash)

        result = vault.verify()
        assert not result['valid']
        assert result['missing'] == [block_hash]
        assert any("a.txt" in error for error in result['errors'])

    def test_detect_missing_metadata(self, vault):
        """Detect a referenced hash with no block metadata."""
        block_hash = compute_hash(b"alpha")
        vault.database.blocks.remove(block_hash)

        result = vault.verify()

        assert not result['valid']
        assert any("no block metadata" in error for error in result['errors'])

"""
Test hash determinism.

Verifies that same input always produces same hash.
"""

import tempfile
from pathlib import Path

import pytest

from backup_vault.integrity.hashing import (
    CHUNK_SIZE,
    compute_hash,
    get_hash_prefix,
    hash_file,
    is_valid_hash,
)

EMPTY_BLAKE3 = "af1349b9f5f9a1a6a0404dea36dcc9499bcb25c9adc112b7cc9a93cae41f3262"


class TestHashDeterminism:
    """Test that hashing is deterministic."""

    @pytest.fixture
    def workdir(self):
        """Create a temporary directory for files to hash."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield Path(tmpdir)

    def test_same_data_same_hash(self):
        """Same bytes produce same hash."""
        assert compute_hash(b"Hello, World!") == compute_hash(b"Hello, World!")

    def test_different_data_different_hash(self):
        """Different bytes produce different hashes."""
        assert compute_hash(b"data1") != compute_hash(b"data2")

    def test_empty_input_is_blake3(self):
        """The digest is plain BLAKE3."""
        assert compute_hash(b"") == EMPTY_BLAKE3

    def test_hash_format(self):
        """Digests are 64 lowercase hex characters."""
        digest = compute_hash(b"x")
        assert len(digest) == 64
        assert is_valid_hash(digest)

    def test_file_hash_matches_bytes_hash(self, workdir):
        """Chunked file hashing agrees with hashing the whole content."""
        data = bytes(range(256)) * (CHUNK_SIZE // 256 * 2 + 7)
        path = workdir / "big"
        path.write_bytes(data)

        assert hash_file(path) == compute_hash(data)

    def test_file_hash_ignores_name_and_location(self, workdir):
        """Only content feeds the hash."""
        (workdir / "a").write_bytes(b"same")
        (workdir / "sub").mkdir()
        (workdir / "sub" / "b").write_bytes(b"same")

        assert hash_file(workdir / "a") == hash_file(workdir / "sub" / "b")

    def test_missing_file_raises_oserror(self, workdir):
        """Unreadable files surface the OS error."""
        with pytest.raises(OSError):
            hash_file(workdir / "absent")


class TestHashValidation:
    """Test validation of hash strings used to build store paths."""

    def test_rejects_bad_hashes(self):
        """Short, long, uppercase and non-string values are not hashes."""
        assert not is_valid_hash("")
        assert not is_valid_hash("ab")
        assert not is_valid_hash(EMPTY_BLAKE3.upper())
        assert not is_valid_hash(EMPTY_BLAKE3 + "0")
        assert not is_valid_hash(None)

    def test_prefix(self):
        """The shard prefix is the first byte in hex."""
        assert get_hash_prefix(EMPTY_BLAKE3) == "af"

    def test_prefix_of_invalid_hash_raises(self):
        """No store path is derived from an invalid hash."""
        with pytest.raises(ValueError):
            get_hash_prefix("../etc/passwd")

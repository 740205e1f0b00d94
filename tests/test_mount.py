"""
Test materializing a backup as a symlink tree.
"""

import os
import tempfile
from pathlib import Path

import pytest

from backup_vault import Vault, mount_backup
from backup_vault.errors import BackupNotFoundError, DirectoryNotEmptyError, StorageError


class TestMount:
    """Test recreating backups under a mount point."""

    @pytest.fixture
    def workdir(self):
        """Create a temporary working directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield Path(tmpdir)

    @pytest.fixture
    def vault(self, workdir):
        """Create a vault holding one backup of a small tree."""
        source = workdir / "source"
        (source / "a" / "dir").mkdir(parents=True)
        (source / "a" / "file1").write_bytes(b"x")
        (source / "b.txt").write_bytes(b"bee")
        os.symlink("file1", source / "a" / "link")

        Vault.init(workdir / "vault")
        with Vault.open(workdir / "vault") as v:
            v.backup("s1", source)
            yield v

    @pytest.fixture
    def mount_point(self, workdir):
        """Create an empty mount point."""
        path = workdir / "mnt"
        path.mkdir()
        return path

    def test_mount_recreates_tree(self, vault, mount_point):
        """Directories, file contents and symlinks reappear under the mount point."""
        counts = mount_backup(vault, "s1", mount_point)

        assert counts == {'directories': 2, 'files': 2, 'symlinks': 1}
        assert (mount_point / "a" / "dir").is_dir()
        assert (mount_point / "a" / "file1").is_symlink()
        assert (mount_point / "a" / "file1").read_bytes() == b"x"
        assert (mount_point / "b.txt").read_bytes() == b"bee"
        assert os.readlink(mount_point / "a" / "link") == "file1"
        assert (mount_point / "a" / "link").read_bytes() == b"x"

    def test_file_links_are_relative(self, vault, mount_point):
        """File links point into the store by relative path."""
        mount_backup(vault, "s1", mount_point)

        target = os.readlink(mount_point / "b.txt")
        block_hash = next(
            f.hash for f in vault.get_backup("s1").iter_files() if f.path == "b.txt"
        )
        assert not os.path.isabs(target)
        assert (mount_point / target).resolve() == vault.store.path_of(block_hash).resolve()

    def test_mount_point_must_be_empty(self, vault, mount_point):
        """A mount point with entries is refused."""
        (mount_point / "existing").write_text("x")

        with pytest.raises(DirectoryNotEmptyError):
            mount_backup(vault, "s1", mount_point)

    def test_mount_point_must_exist(self, vault, workdir):
        """A missing mount point is a storage error."""
        with pytest.raises(StorageError):
            mount_backup(vault, "s1", workdir / "absent")

    def test_unknown_backup(self, vault, mount_point):
        """Mounting an unknown name creates nothing."""
        with pytest.raises(BackupNotFoundError):
            mount_backup(vault, "nope", mount_point)

        assert list(mount_point.iterdir()) == []

"""
Materialize a backup as a tree of symlinks.

Every backed-up file becomes a relative symlink to its block in the
content store; every backed-up symlink is recreated with its recorded
target. The vault itself is only read.
"""

import logging
import os
from pathlib import Path

from .errors import DirectoryNotEmptyError, StorageError

logger = logging.getLogger(__name__)


def ensure_empty_directory(path: Path) -> None:
    """
    Raise unless path is an existing, empty directory.

    Raises StorageError if it cannot be listed, DirectoryNotEmptyError if
    it has entries.
    """
    try:
        with os.scandir(path) as it:
            if next(it, None) is not None:
                raise DirectoryNotEmptyError(str(path))
    except OSError as e:
        raise StorageError("read_dir", str(path), e)


def mount_backup(vault, name: str, mount_point: str | Path) -> dict:
    """
    Recreate backup `name` under mount_point.

    Args:
        vault: an open Vault
        name: backup name
        mount_point: existing empty directory

    Returns dict with counts of directories, files and symlinks created.

    Raises BackupNotFoundError, DirectoryNotEmptyError or StorageError.
    """
    mount_point = Path(mount_point).resolve()
    ensure_empty_directory(mount_point)
    view = vault.get_backup(name)

    counts = {'directories': 0, 'files': 0, 'symlinks': 0}

    for rel_dir in sorted(view.directories):
        dest = mount_point / rel_dir
        try:
            dest.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError("mkdir", str(dest), e)
        counts['directories'] += 1

    for file_view in view.iter_files():
        dest = mount_point / file_view.path
        block_path = vault.store.path_of(file_view.hash).resolve()
        link_target = os.path.relpath(block_path, dest.parent)
        _symlink(link_target, dest)
        counts['files'] += 1

    for rel_link, target in sorted(view.symlinks.items()):
        _symlink(target, mount_point / rel_link)
        counts['symlinks'] += 1

    logger.info(
        "Mounted backup %r at %s: %d directories, %d files, %d symlinks",
        name, mount_point, counts['directories'], counts['files'], counts['symlinks'],
    )
    return counts


def _symlink(target: str, dest: Path) -> None:
    try:
        dest.parent.mkdir(parents=True, exist_ok=True)
        os.symlink(target, dest)
    except OSError as e:
        raise StorageError("symlink", f"{dest} -> {target}", e)

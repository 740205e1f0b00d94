"""
Vault database.

Persists the named backups of a vault together with the shared block
metadata table, as one JSON document.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Set, Tuple

from .errors import (
    BlockSizeMismatchError,
    InvalidDatabaseError,
    MissingBlockMetadataError,
    StorageError,
    VaultError,
)
from .model.backup import Backup, BackupBuilder, BackupFile, BackupView
from .model.block import BlockTable
from .storage.layout import VaultLayout

logger = logging.getLogger(__name__)

FORMAT_VERSION = 1


class VaultDatabase:
    """
    Map of backup name to Backup, plus vault-wide block metadata.

    The whole document is read and written at once. Saving goes through a
    temp file, fsync and rename, so a crash leaves either the old or the
    new database, never a truncated one.
    """

    def __init__(
        self,
        backups: Optional[Dict[str, Backup]] = None,
        blocks: Optional[BlockTable] = None,
    ):
        self._backups: Dict[str, Backup] = dict(backups or {})
        self.blocks = blocks if blocks is not None else BlockTable()

    # ========== Persistence ==========

    @classmethod
    def load(cls, vault_dir: str | Path) -> 'VaultDatabase':
        """
        Load the database of a vault.

        Raises StorageError if the file cannot be read, InvalidDatabaseError
        if its content is malformed.
        """
        path = VaultLayout(vault_dir).database_path
        try:
            with path.open('r', encoding='utf-8') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise InvalidDatabaseError(str(path), f"not valid JSON: {e}")
        except OSError as e:
            raise StorageError("read_database", str(path), e)

        try:
            db = cls.from_dict(data)
        except (TypeError, ValueError, VaultError) as e:
            raise InvalidDatabaseError(str(path), str(e))

        logger.debug("Loaded database %s: %r", path, db)
        return db

    def save(self, vault_dir: str | Path) -> None:
        """
        Write the database of a vault atomically.

        Uses temp file + fsync + rename for atomicity.
        """
        path = VaultLayout(vault_dir).database_path
        data = json.dumps(self.to_dict(), indent=2, sort_keys=True).encode('utf-8')

        temp_path = None
        try:
            fd, temp_path = tempfile.mkstemp(
                dir=str(path.parent),
                prefix='.tmp_',
                suffix='.json',
            )
            with os.fdopen(fd, 'wb') as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())

            os.replace(temp_path, path)
            temp_path = None
            self._fsync_directory(path.parent)

        except OSError as e:
            if temp_path is not None and os.path.exists(temp_path):
                os.unlink(temp_path)
            raise StorageError("write_database", str(path), e)

        logger.debug("Saved database %s", path)

    @staticmethod
    def _fsync_directory(dir_path: Path) -> None:
        fd = os.open(str(dir_path), os.O_RDONLY)
        try:
            os.fsync(fd)
        finally:
            os.close(fd)

    # ========== Backups ==========

    def get_backup(self, name: str) -> Optional[BackupView]:
        """Get a read-only view of a named backup, or None."""
        backup = self._backups.get(name)
        if backup is None:
            return None
        return BackupView(name, backup, self.blocks)

    def commit_builder(self, name: str, builder: BackupBuilder) -> BackupView:
        """
        Finish a builder and store its backup under name.

        New blocks' metadata is merged into the shared table first; any
        existing backup of the same name is then replaced. Nothing is
        changed if the merge fails.

        Raises:
            BlockSizeMismatchError: a new file's hash is known with another size.
            MissingBlockMetadataError: an unchanged file's hash is unknown.
        """
        backup, new_files = builder.finish()

        staged: Dict[str, int] = {}
        for new_file in new_files:
            recorded = staged.get(new_file.hash)
            if recorded is None and new_file.hash in self.blocks:
                recorded = self.blocks.get(new_file.hash).size
            if recorded is not None and recorded != new_file.size:
                raise BlockSizeMismatchError(new_file.hash, recorded, new_file.size)
            staged[new_file.hash] = new_file.size

        for backup_file in backup.iter_files():
            if backup_file.hash not in staged and backup_file.hash not in self.blocks:
                raise MissingBlockMetadataError(backup_file.hash, backup_file.inode)

        added = sum(1 for h, size in staged.items() if self.blocks.add(h, size))
        self._backups[name] = backup
        logger.info("Committed backup %r: %r, %d new blocks", name, backup, added)
        return BackupView(name, backup, self.blocks)

    def remove_backup(self, name: str) -> bool:
        """
        Forget a named backup.

        Its blocks stay in the store until garbage collection.
        Returns True if removed, False if it didn't exist.
        """
        return self._backups.pop(name, None) is not None

    def backup_names(self) -> List[str]:
        return sorted(self._backups)

    def iter_backups(self) -> Iterator[BackupView]:
        for name in self.backup_names():
            yield BackupView(name, self._backups[name], self.blocks)

    def iter_file_records(self) -> Iterator[Tuple[str, BackupFile]]:
        """Iterate over (backup name, file) for every file of every backup."""
        for name in self.backup_names():
            for backup_file in self._backups[name].iter_files():
                yield name, backup_file

    def referenced_hashes(self) -> Set[str]:
        """Get every hash referenced by any backup."""
        hashes = set()
        for backup in self._backups.values():
            hashes.update(backup.referenced_hashes())
        return hashes

    def __contains__(self, name: str) -> bool:
        return name in self._backups

    def __len__(self) -> int:
        return len(self._backups)

    # ========== Serialization ==========

    def to_dict(self) -> dict:
        return {
            'version': FORMAT_VERSION,
            'backups': {
                name: backup.to_dict()
                for name, backup in sorted(self._backups.items())
            },
            'blocks': self.blocks.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'VaultDatabase':
        """
        Reconstruct database from its stored dictionary.

        Raises ValueError if data is invalid.
        """
        if not isinstance(data, dict):
            raise ValueError("Database document must be a mapping")

        version = data.get('version')
        if version != FORMAT_VERSION:
            raise ValueError(f"Unsupported database version: {version!r}")

        backups_data = data.get('backups', {})
        if not isinstance(backups_data, dict):
            raise ValueError("Database backups must be a mapping")

        backups = {name: Backup.from_dict(b) for name, b in backups_data.items()}
        blocks = BlockTable.from_dict(data.get('blocks', {}))
        return cls(backups, blocks)

    def __repr__(self) -> str:
        return f"VaultDatabase(backups={len(self._backups)}, blocks={len(self.blocks)})"

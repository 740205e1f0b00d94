"""
Vault.

Main entry point coordinating the database, the content store and the
directory lock of one on-disk vault.
"""

import logging
import os
from pathlib import Path
from typing import Dict, List, Optional

from .database import VaultDatabase
from .engine import BackupEngine, BackupReport
from .errors import BackupNotFoundError, StorageError, VaultLockedError
from .integrity.verification import verify_vault
from .model.backup import BackupView
from .storage.content_store import ContentStore
from .storage.gc import GarbageCollector
from .storage.layout import VaultLayout
from .storage.lock import DirectoryLock

logger = logging.getLogger(__name__)

VAULT_DIR_ENV = "VAULT_DIR"


def resolve_vault_dir(vault_dir: Optional[str | Path] = None) -> Path:
    """
    Pick the vault directory.

    Order: explicit argument, the VAULT_DIR environment variable, the
    current working directory.
    """
    if vault_dir is not None:
        return Path(vault_dir)
    from_env = os.environ.get(VAULT_DIR_ENV)
    if from_env:
        return Path(from_env)
    return Path.cwd()


class Vault:
    """
    An opened vault.

    This is the primary interface for:
    - Creating vaults
    - Running backups
    - Listing and forgetting backups
    - Running garbage collection and verification

    The vault holds its directory lock from open() until close(). Use it
    as a context manager so the lock is released on every exit path.
    """

    def __init__(self, vault_dir: str | Path):
        """
        Bind to a vault directory without opening it.

        Args:
            vault_dir: filesystem path of the vault
        """
        self.layout = VaultLayout(vault_dir)
        self.root = self.layout.vault_root
        self.lock = DirectoryLock(self.root)
        self.store = ContentStore(self.layout)
        self.database: Optional[VaultDatabase] = None

    # ========== Lifecycle ==========

    @classmethod
    def init(cls, vault_dir: Optional[str | Path] = None) -> Path:
        """
        Create a new, empty vault.

        The directory is created if missing; otherwise it must be empty.

        Returns the vault root.
        """
        layout = VaultLayout(resolve_vault_dir(vault_dir))
        layout.initialize()
        VaultDatabase().save(layout.vault_root)
        logger.info("Initialized vault at %s", layout.vault_root)
        return layout.vault_root

    @classmethod
    def open(
        cls,
        vault_dir: Optional[str | Path] = None,
        blocking: bool = True,
        timeout: Optional[float] = None,
    ) -> 'Vault':
        """
        Lock a vault and load its database.

        Args:
            vault_dir: vault path; see resolve_vault_dir() for defaults
            blocking: wait for another writer to finish instead of failing
            timeout: with blocking, maximum seconds to wait

        Raises:
            VaultLockedError: non-blocking and the vault is locked.
            LockTimeoutError: blocking and the wait exceeded timeout.
            StorageError: the directory is not an initialized vault.
        """
        vault = cls(resolve_vault_dir(vault_dir))
        if not vault.layout.is_vault():
            raise StorageError(
                "open_vault", str(vault.root),
                FileNotFoundError("not an initialized vault"),
            )

        if blocking:
            vault.lock.lock_blocking(timeout)
        elif not vault.lock.try_lock():
            raise VaultLockedError(str(vault.root), vault.lock.read_holder())

        try:
            vault.database = VaultDatabase.load(vault.root)
        except BaseException:
            vault.lock.unlock()
            raise

        logger.debug("Opened vault %s", vault.root)
        return vault

    def close(self) -> None:
        """Release the vault lock. Safe to call more than once."""
        if self.lock.locked:
            self.lock.unlock()
            logger.debug("Closed vault %s", self.root)
        self.database = None

    @property
    def is_open(self) -> bool:
        return self.database is not None and self.lock.locked

    def __enter__(self) -> 'Vault':
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ========== Backups ==========

    def backup(self, name: str, source_dir: str | Path) -> BackupReport:
        """
        Back up a directory under name and persist the database.

        Nothing is committed unless every new block was stored.
        """
        self._check_open()
        report = BackupEngine(self.database, self.store).run(name, source_dir)
        self.database.save(self.root)
        return report

    def get_backup(self, name: str) -> BackupView:
        """
        Get a named backup.

        Raises BackupNotFoundError if it doesn't exist.
        """
        self._check_open()
        view = self.database.get_backup(name)
        if view is None:
            raise BackupNotFoundError(name)
        return view

    def list_backups(self) -> List[Dict[str, object]]:
        """
        Summarize all backups.

        Returns list of dicts with name, files, directories and symlinks,
        sorted by name.
        """
        self._check_open()
        return [
            {
                'name': view.name,
                'files': view.file_count(),
                'directories': len(view.directories),
                'symlinks': len(view.symlinks),
            }
            for view in self.database.iter_backups()
        ]

    def forget(self, name: str) -> None:
        """
        Remove a named backup and persist the database.

        Its blocks are reclaimed by the next garbage collection.
        """
        self._check_open()
        if not self.database.remove_backup(name):
            raise BackupNotFoundError(name)
        self.database.save(self.root)
        logger.info("Forgot backup %r", name)

    # ========== Maintenance ==========

    def garbage_collect(self, dry_run: bool = False) -> dict:
        """
        Delete blocks no backup references.

        Args:
            dry_run: if True, only report what would be deleted

        Returns dict with GC results.
        """
        self._check_open()
        gc = GarbageCollector(self.store, self.database.blocks)
        result = gc.collect(self.database.referenced_hashes(), dry_run=dry_run)
        if not dry_run:
            self.database.save(self.root)
        return result

    def verify(self) -> dict:
        """
        Verify stored blocks and backup references.

        Returns dict with verification results.
        """
        self._check_open()
        return verify_vault(self.database, self.store)

    def get_statistics(self) -> dict:
        self._check_open()
        stats = self.store.get_stats()
        stats['backups'] = len(self.database)
        stats['known_blocks'] = len(self.database.blocks)
        return stats

    def _check_open(self) -> None:
        if not self.is_open:
            raise RuntimeError(f"Vault {self.root} is not open")

    def __repr__(self) -> str:
        state = "open" if self.is_open else "closed"
        return f"Vault(path={self.root}, {state})"

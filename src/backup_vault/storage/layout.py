"""
Filesystem layout of a vault.

Implements content-addressed storage with directory sharding.
"""

from pathlib import Path

from ..errors import DirectoryNotEmptyError, StorageError
from ..integrity.hashing import get_hash_prefix

DATABASE_NAME = "database.json"
DATA_DIR_NAME = "data"
LOCK_NAME = "lock"


class VaultLayout:
    """
    Manages the filesystem layout of one vault.

    Layout:
        vault_root/
            database.json    # backups + block metadata
            lock             # present while a writer holds the vault
            data/
                <prefix>/
                    <hash>   # block file
    """

    def __init__(self, vault_root: str | Path):
        """Initialize layout at given root."""
        self.vault_root = Path(vault_root).resolve()
        self.database_path = self.vault_root / DATABASE_NAME
        self.data_dir = self.vault_root / DATA_DIR_NAME
        self.lock_path = self.vault_root / LOCK_NAME

    def initialize(self) -> None:
        """
        Create the vault directory structure.

        The vault root is created if missing; if it exists it must be an
        empty directory.

        Raises DirectoryNotEmptyError or StorageError.
        """
        try:
            self.vault_root.mkdir(parents=True, exist_ok=True)
            if any(self.vault_root.iterdir()):
                raise DirectoryNotEmptyError(str(self.vault_root))
            self.data_dir.mkdir()
        except OSError as e:
            raise StorageError("initialize", str(self.vault_root), e)

    def get_block_path(self, block_hash: str) -> Path:
        """
        Get filesystem path for a block by its hash.

        Uses 2-character prefix for directory sharding.
        """
        prefix = get_hash_prefix(block_hash, 2)
        return self.data_dir / prefix / block_hash

    def ensure_block_directory(self, block_hash: str) -> None:
        """Ensure the shard directory for a block exists."""
        prefix_dir = self.data_dir / get_hash_prefix(block_hash, 2)
        try:
            prefix_dir.mkdir(exist_ok=True)
        except OSError as e:
            raise StorageError("mkdir", str(prefix_dir), e)

    def block_exists(self, block_hash: str) -> bool:
        """Check if a block exists in storage."""
        return self.get_block_path(block_hash).is_file()

    def is_vault(self) -> bool:
        """Check that the root looks like an initialized vault."""
        return self.database_path.is_file() and self.data_dir.is_dir()

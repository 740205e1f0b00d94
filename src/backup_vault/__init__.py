from .vault import Vault
from .database import VaultDatabase
from .engine import BackupEngine, BackupReport, scan_tree
from .mount import mount_backup
from .model.backup import Backup, BackupBuilder, BackupFile, BackupView, BackupFileView
from .model.block import BlockInfo, BlockTable
from .model.index import DualKeyIndex
from .storage.content_store import ContentStore
from .storage.lock import DirectoryLock
from .errors import (
    VaultError,
    StorageError,
    ScanError,
    SpecialFileError,
    DirectoryNotEmptyError,
    BackupNotFoundError,
    BlockNotFoundError,
    BlockCorruptedError,
    IntegrityError,
    MissingBlockMetadataError,
    BlockSizeMismatchError,
    DuplicateKeyError,
    InvalidDatabaseError,
    VaultLockedError,
    LockTimeoutError,
    LockNotHeldError,
)

__all__ = [
    'Vault',
    'VaultDatabase',
    'BackupEngine',
    'BackupReport',
    'scan_tree',
    'mount_backup',
    'Backup',
    'BackupBuilder',
    'BackupFile',
    'BackupView',
    'BackupFileView',
    'BlockInfo',
    'BlockTable',
    'DualKeyIndex',
    'ContentStore',
    'DirectoryLock',
    'VaultError',
    'StorageError',
    'ScanError',
    'SpecialFileError',
    'DirectoryNotEmptyError',
    'BackupNotFoundError',
    'BlockNotFoundError',
    'BlockCorruptedError',
    'IntegrityError',
    'MissingBlockMetadataError',
    'BlockSizeMismatchError',
    'DuplicateKeyError',
    'InvalidDatabaseError',
    'VaultLockedError',
    'LockTimeoutError',
    'LockNotHeldError',
]

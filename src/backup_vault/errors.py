"""
Error types for vault operations.

All errors are explicit and never silent.
"""


class VaultError(Exception):
    """Base exception for all vault errors."""
    pass


class StorageError(VaultError):
    """Raised when filesystem operations fail."""
    
    def __init__(self, operation: str, path: str, cause: Exception = None):
        self.operation = operation
        self.path = path
        self.cause = cause
        msg = f"Storage error during {operation}: {path}"
        if cause:
            msg += f"\nCause: {cause}"
        super().__init__(msg)


class ScanError(VaultError):
    """Raised when the source tree cannot be walked."""
    
    def __init__(self, path: str, cause: Exception):
        self.path = path
        self.cause = cause
        super().__init__(f"Failed to scan {path}: {cause}")


class SpecialFileError(VaultError):
    """Raised when a scan meets a device, socket, fifo or other special file."""
    
    def __init__(self, path: str):
        self.path = path
        super().__init__(f"{path}: special file")


class DirectoryNotEmptyError(VaultError):
    """Raised when a directory that must be empty is not."""
    
    def __init__(self, path: str):
        self.path = path
        super().__init__(f"{path} is not empty")


class BackupNotFoundError(VaultError):
    """Raised when a named backup does not exist."""
    
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Backup {name!r} does not exist")


class BlockNotFoundError(VaultError):
    """Raised when a requested block is not in the content store."""
    
    def __init__(self, block_hash: str):
        self.block_hash = block_hash
        super().__init__(f"Block not found: {block_hash}")


class BlockCorruptedError(VaultError):
    """Raised when block content does not match the hash it is stored under."""
    
    def __init__(self, block_hash: str, actual: str):
        self.block_hash = block_hash
        self.actual = actual
        super().__init__(
            f"Block corrupted: {block_hash}\n"
            f"Actual hash: {actual}"
        )


class IntegrityError(VaultError):
    """Raised when vault metadata is internally inconsistent."""
    pass


class MissingBlockMetadataError(IntegrityError):
    """Raised when a backup references a hash with no block metadata."""
    
    def __init__(self, block_hash: str, inode: int = None):
        self.block_hash = block_hash
        self.inode = inode
        msg = f"No block metadata for {block_hash}"
        if inode is not None:
            msg = f"inode {inode} in backup but has no block metadata ({block_hash})"
        super().__init__(msg)


class BlockSizeMismatchError(IntegrityError):
    """Raised when a known hash is observed with a different size."""
    
    def __init__(self, block_hash: str, recorded: int, observed: int):
        self.block_hash = block_hash
        self.recorded = recorded
        self.observed = observed
        super().__init__(
            f"Size mismatch for block {block_hash}: "
            f"recorded {recorded}, observed {observed}"
        )


class DuplicateKeyError(VaultError):
    """Raised when an index insert would make a key map to two records."""
    
    def __init__(self, existing, new):
        self.existing = existing
        self.new = new
        super().__init__(f"Insert of {new!r} overlaps with {existing!r}")


class InvalidDatabaseError(VaultError):
    """Raised when the database document is malformed."""
    
    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Invalid database {path}: {reason}")


class VaultLockedError(VaultError):
    """Raised by non-blocking open when another writer holds the vault."""
    
    def __init__(self, path: str, holder: dict = None):
        self.path = path
        self.holder = holder or {}
        msg = f"Vault already locked: {path}"
        if self.holder:
            msg += f" (pid {self.holder.get('pid')} on {self.holder.get('hostname')})"
        super().__init__(msg)


class LockTimeoutError(VaultLockedError):
    """Raised when a blocking lock wait runs past its deadline."""
    
    def __init__(self, path: str, timeout: float, holder: dict = None):
        self.path = path
        self.holder = holder or {}
        self.timeout = timeout
        msg = f"Still locked after {timeout}s: {path}"
        if self.holder:
            msg += f" (pid {self.holder.get('pid')} on {self.holder.get('hostname')})"
        VaultError.__init__(self, msg)


class LockNotHeldError(VaultError):
    """Raised when releasing a lock this handle does not own."""
    
    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Lock not held: {path}")

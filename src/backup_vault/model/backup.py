"""
Backup (snapshot) object model.

A backup records one named, point-in-time view of a directory tree: its
files (by source inode), directories and symlinks. File contents live in
the content store, addressed by hash.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Set, Tuple

from ..errors import MissingBlockMetadataError
from ..integrity.hashing import is_valid_hash
from .block import BlockTable
from .index import DualKeyIndex

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BackupFile:
    """
    One file entry of a backup.

    mtime_ns is the modification time observed when the entry was
    recorded, in integer nanoseconds.
    """

    inode: int
    path: str
    hash: str
    mtime_ns: int

    def to_dict(self) -> dict:
        return {
            'inode': self.inode,
            'path': self.path,
            'hash': self.hash,
            'mtime_ns': self.mtime_ns,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'BackupFile':
        if not isinstance(data, dict):
            raise ValueError(f"Backup file entry must be a mapping: {data!r}")
        try:
            entry = cls(
                inode=int(data['inode']),
                path=data['path'],
                hash=data['hash'],
                mtime_ns=int(data['mtime_ns']),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ValueError(f"Invalid backup file entry {data!r}: {e}")
        if not isinstance(entry.path, str) or not entry.path:
            raise ValueError(f"Invalid path in backup file entry: {entry.path!r}")
        if not is_valid_hash(entry.hash):
            raise ValueError(f"Invalid content hash in backup file entry: {entry.hash!r}")
        return entry


@dataclass(frozen=True)
class NewFile:
    """A file recorded with content that still has to be ingested."""

    source: str
    path: str
    hash: str
    inode: int
    mtime_ns: int
    size: int


def _file_index() -> DualKeyIndex[BackupFile]:
    return DualKeyIndex(lambda f: f.inode, lambda f: f.path)


class Backup:
    """
    Immutable record of a committed backup.

    Files are unique by source inode and by relative path.
    """

    def __init__(
        self,
        files: DualKeyIndex[BackupFile],
        directories: Set[str],
        symlinks: Dict[str, str],
    ):
        self._files = files
        self._directories = frozenset(directories)
        self._symlinks = dict(symlinks)

    @property
    def directories(self) -> frozenset:
        return self._directories

    @property
    def symlinks(self) -> Dict[str, str]:
        return dict(self._symlinks)

    def get_file(self, inode: int) -> Optional[BackupFile]:
        return self._files.get_by_key1(inode)

    def get_file_by_path(self, path: str) -> Optional[BackupFile]:
        return self._files.get_by_key2(path)

    def iter_files(self) -> Iterator[BackupFile]:
        return iter(self._files)

    def file_count(self) -> int:
        return len(self._files)

    def referenced_hashes(self) -> Set[str]:
        """Get every content hash this backup needs from the store."""
        return {f.hash for f in self._files}

    def to_dict(self) -> dict:
        """
        Convert backup to storable dictionary representation.

        Entries are sorted so the same backup always serializes the same way.
        """
        return {
            'files': [f.to_dict() for f in sorted(self._files, key=lambda f: f.path)],
            'directories': sorted(self._directories),
            'symlinks': dict(sorted(self._symlinks.items())),
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'Backup':
        """
        Reconstruct backup from stored dictionary.

        Raises ValueError if data is invalid.
        """
        if not isinstance(data, dict):
            raise ValueError("Backup must be a mapping")

        for field in ('files', 'directories', 'symlinks'):
            if field not in data:
                raise ValueError(f"Backup missing {field} field")

        if not isinstance(data['files'], list):
            raise ValueError("Backup files must be a list")
        files = _file_index()
        for entry in data['files']:
            files.insert(BackupFile.from_dict(entry))

        directories = data['directories']
        if not isinstance(directories, list) or not all(isinstance(d, str) for d in directories):
            raise ValueError("Backup directories must be a list of paths")

        symlinks = data['symlinks']
        if not isinstance(symlinks, dict) or not all(
            isinstance(target, str) for target in symlinks.values()
        ):
            raise ValueError("Backup symlinks must map paths to target strings")

        return cls(files, set(directories), symlinks)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Backup):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __repr__(self) -> str:
        return (
            f"Backup(files={len(self._files)}, "
            f"directories={len(self._directories)}, "
            f"symlinks={len(self._symlinks)})"
        )


class BackupBuilder:
    """
    Accumulates a new backup during a scan.

    Files recorded with insert_new_file() are also queued for ingestion;
    finish() hands back the backup together with that queue so content
    can be stored before anything is committed.
    """

    def __init__(self):
        self._files = _file_index()
        self._directories: Set[str] = set()
        self._symlinks: Dict[str, str] = {}
        self._new_files: List[NewFile] = []
        self._finished = False

    def insert_directory(self, path: str) -> None:
        self._check_open()
        self._directories.add(path)

    def insert_symlink(self, path: str, target: str) -> None:
        self._check_open()
        self._symlinks[path] = target

    def insert_new_file(
        self,
        source: str,
        path: str,
        block_hash: str,
        inode: int,
        mtime_ns: int,
        size: int,
    ) -> bool:
        """
        Record a file whose content must be ingested.

        Returns False if the inode was already recorded under another
        path (a hard link), in which case nothing is queued.
        """
        if not self._insert(BackupFile(inode, path, block_hash, mtime_ns)):
            return False
        self._new_files.append(NewFile(source, path, block_hash, inode, mtime_ns, size))
        return True

    def insert_unchanged_file(self, path: str, block_hash: str, inode: int, mtime_ns: int) -> bool:
        """Record a file whose content is already in the store."""
        return self._insert(BackupFile(inode, path, block_hash, mtime_ns))

    def has_inode(self, inode: int) -> bool:
        return self._files.get_by_key1(inode) is not None

    def iter_new_files(self) -> Iterator[NewFile]:
        return iter(self._new_files)

    def finish(self) -> Tuple[Backup, List[NewFile]]:
        """
        Freeze the builder.

        Returns (backup, new_files). The builder cannot be used afterwards.
        """
        self._check_open()
        self._finished = True
        backup = Backup(self._files, self._directories, self._symlinks)
        return backup, list(self._new_files)

    def _insert(self, record: BackupFile) -> bool:
        self._check_open()
        first = self._files.get_by_key1(record.inode)
        if first is not None:
            logger.debug(
                "Hard link %s collapsed into %s (inode %d)",
                record.path, first.path, record.inode,
            )
            return False
        self._files.insert(record)
        return True

    def _check_open(self) -> None:
        if self._finished:
            raise RuntimeError("BackupBuilder already finished")


class BackupFileView:
    """Read-only join of a backup file with its block metadata."""

    def __init__(self, backup_file: BackupFile, size: int):
        self._file = backup_file
        self._size = size

    @property
    def inode(self) -> int:
        return self._file.inode

    @property
    def path(self) -> str:
        return self._file.path

    @property
    def hash(self) -> str:
        return self._file.hash

    @property
    def mtime_ns(self) -> int:
        return self._file.mtime_ns

    @property
    def size(self) -> int:
        return self._size

    def __repr__(self) -> str:
        return f"BackupFileView(path={self.path!r}, hash={self.hash[:8]}..., size={self.size})"


class BackupView:
    """
    Read-only view of a named backup combined with the vault's block table.

    Views are built on demand by the database and are never stored.
    """

    def __init__(self, name: str, backup: Backup, blocks: BlockTable):
        self.name = name
        self._backup = backup
        self._blocks = blocks

    @property
    def directories(self) -> frozenset:
        return self._backup.directories

    @property
    def symlinks(self) -> Dict[str, str]:
        return self._backup.symlinks

    def file_count(self) -> int:
        return self._backup.file_count()

    def get_file(self, inode: int) -> Optional[BackupFileView]:
        """
        Get the file recorded for a source inode.

        Raises MissingBlockMetadataError if its hash has no block metadata.
        """
        backup_file = self._backup.get_file(inode)
        if backup_file is None:
            return None
        return self._join(backup_file)

    def iter_files(self) -> Iterator[BackupFileView]:
        for backup_file in self._backup.iter_files():
            yield self._join(backup_file)

    def _join(self, backup_file: BackupFile) -> BackupFileView:
        block = self._blocks.get(backup_file.hash)
        if block is None:
            raise MissingBlockMetadataError(backup_file.hash, backup_file.inode)
        return BackupFileView(backup_file, block.size)

    def __repr__(self) -> str:
        return f"BackupView(name={self.name!r}, {self._backup!r})"

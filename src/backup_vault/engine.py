"""
Backup engine.

Walks a source tree, decides per file whether its content must be
hashed and ingested, and commits the resulting backup.
"""

import logging
import os
import stat
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional

from .database import VaultDatabase
from .errors import ScanError, SpecialFileError, StorageError
from .integrity.hashing import hash_file
from .model.backup import BackupBuilder, BackupView
from .storage.content_store import ContentStore

logger = logging.getLogger(__name__)

FILE = 'file'
DIRECTORY = 'directory'
SYMLINK = 'symlink'
SPECIAL = 'special'


@dataclass(frozen=True)
class ScanEntry:
    """One classified entry of a source tree walk."""

    kind: str
    path: str
    rel_path: str
    inode: int = 0
    mtime_ns: int = 0
    size: int = 0
    target: Optional[str] = None


def _classify(path: str, rel_path: str) -> ScanEntry:
    try:
        st = os.lstat(path)
    except OSError as e:
        raise ScanError(path, e)

    mode = st.st_mode
    if stat.S_ISREG(mode):
        return ScanEntry(FILE, path, rel_path, st.st_ino, st.st_mtime_ns, st.st_size)
    if stat.S_ISDIR(mode):
        return ScanEntry(DIRECTORY, path, rel_path, st.st_ino)
    if stat.S_ISLNK(mode):
        try:
            target = os.readlink(path)
        except OSError as e:
            raise ScanError(path, e)
        return ScanEntry(SYMLINK, path, rel_path, st.st_ino, target=target)
    return ScanEntry(SPECIAL, path, rel_path, st.st_ino)


def scan_tree(root: str | Path) -> Iterator[ScanEntry]:
    """
    Walk a directory tree top-down, yielding every entry below root.

    The root itself is not yielded. Symlinks are reported, never followed.
    Entries within a directory come in name order.

    Raises ScanError if a directory cannot be listed or an entry cannot
    be examined.
    """
    root = os.fspath(root)
    stack = ['']
    while stack:
        rel_dir = stack.pop()
        abs_dir = os.path.join(root, rel_dir) if rel_dir else root
        try:
            names = sorted(os.listdir(abs_dir))
        except OSError as e:
            raise ScanError(abs_dir, e)

        subdirs = []
        for name in names:
            rel_path = f"{rel_dir}/{name}" if rel_dir else name
            entry = _classify(os.path.join(abs_dir, name), rel_path)
            yield entry
            if entry.kind == DIRECTORY:
                subdirs.append(rel_path)

        # Reversed so the stack pops them in name order.
        stack.extend(reversed(subdirs))


@dataclass
class BackupReport:
    """Summary of one backup run."""

    name: str
    files: int = 0
    directories: int = 0
    symlinks: int = 0
    hashed_files: int = 0
    reused_files: int = 0
    new_files: int = 0
    blocks_copied: int = 0
    bytes_copied: int = 0


class BackupEngine:
    """
    Produces a new backup of a source directory.

    Hash reuse rule for a file whose inode appears in the previous backup
    of the same name:
    - mtime not newer and size unchanged: reuse the old hash, no read
    - otherwise: hash the file; same hash means unchanged, else new

    Files with no previous record are always hashed. Content is ingested
    only after the whole walk succeeded, and the backup is committed only
    after every ingestion succeeded.
    """

    def __init__(self, database: VaultDatabase, store: ContentStore):
        self.database = database
        self.store = store

    def run(self, name: str, source_dir: str | Path) -> BackupReport:
        """
        Back up source_dir under name, replacing any backup of that name.

        The database is updated in memory; persisting it is up to the caller.

        Raises:
            ScanError: the tree could not be walked.
            SpecialFileError: the tree contains a special file.
            StorageError: a file could not be hashed or ingested.
            IntegrityError: vault metadata is inconsistent.
        """
        source = Path(source_dir).resolve()
        if not source.is_dir():
            raise ScanError(str(source), NotADirectoryError(f"{source} is not a directory"))

        old = self.database.get_backup(name)
        builder = BackupBuilder()
        report = BackupReport(name)

        logger.info(
            "Scanning %s for backup %r (%s)",
            source, name, "incremental" if old is not None else "full",
        )
        for entry in scan_tree(source):
            self._record_entry(entry, old, builder, report)

        # Ingest new content into storage
        for new_file in builder.iter_new_files():
            if self.store.insert(new_file.source, new_file.hash):
                report.blocks_copied += 1
                report.bytes_copied += new_file.size

        self.database.commit_builder(name, builder)
        logger.info(
            "Backup %r: %d files (%d new, %d reused, %d hashed), "
            "%d directories, %d symlinks, %d blocks / %d bytes stored",
            name, report.files, report.new_files, report.reused_files,
            report.hashed_files, report.directories, report.symlinks,
            report.blocks_copied, report.bytes_copied,
        )
        return report

    def _record_entry(
        self,
        entry: ScanEntry,
        old: Optional[BackupView],
        builder: BackupBuilder,
        report: BackupReport,
    ) -> None:
        if entry.kind == DIRECTORY:
            builder.insert_directory(entry.rel_path)
            report.directories += 1
        elif entry.kind == SYMLINK:
            builder.insert_symlink(entry.rel_path, entry.target)
            report.symlinks += 1
        elif entry.kind == FILE:
            self._record_file(entry, old, builder, report)
        else:
            raise SpecialFileError(entry.path)

    def _record_file(
        self,
        entry: ScanEntry,
        old: Optional[BackupView],
        builder: BackupBuilder,
        report: BackupReport,
    ) -> None:
        if builder.has_inode(entry.inode):
            logger.debug("%s: hard link to an already recorded inode, skipped", entry.rel_path)
            return

        prior = old.get_file(entry.inode) if old is not None else None

        if prior is not None and entry.mtime_ns <= prior.mtime_ns and entry.size == prior.size:
            logger.debug("%s: unchanged (inode %d)", entry.rel_path, entry.inode)
            builder.insert_unchanged_file(entry.rel_path, prior.hash, entry.inode, entry.mtime_ns)
            report.files += 1
            report.reused_files += 1
            return

        block_hash = self._hash(entry)
        report.hashed_files += 1

        if prior is not None and block_hash == prior.hash:
            logger.debug("%s: touched, content unchanged", entry.rel_path)
            builder.insert_unchanged_file(entry.rel_path, block_hash, entry.inode, entry.mtime_ns)
        else:
            logger.debug("%s: new content %s", entry.rel_path, block_hash)
            builder.insert_new_file(
                entry.path, entry.rel_path, block_hash,
                entry.inode, entry.mtime_ns, entry.size,
            )
            report.new_files += 1

        report.files += 1

    @staticmethod
    def _hash(entry: ScanEntry) -> str:
        try:
            return hash_file(entry.path)
        except OSError as e:
            raise StorageError("hash_file", entry.path, e)

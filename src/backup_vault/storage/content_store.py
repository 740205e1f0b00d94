"""
Content-addressed block storage.

Stores file contents once per distinct hash.
"""

import logging
import os
import tempfile
from pathlib import Path
from typing import BinaryIO, Iterator, Optional, Tuple

from ..errors import BlockCorruptedError, BlockNotFoundError, StorageError
from ..integrity.hashing import copy_and_hash, is_valid_hash
from .layout import VaultLayout

logger = logging.getLogger(__name__)


class ContentStore:
    """
    Content-addressed block store.

    A block is stored at a path derived only from its hash. The existence
    of that file is the single source of truth for "already stored".
    """

    def __init__(self, layout: VaultLayout):
        """Initialize block store with given layout."""
        self.layout = layout

    def insert(self, source: str | Path, block_hash: str) -> bool:
        """
        Store the contents of a source file under block_hash.

        The block is stored immutably:
        - If the hash is already stored, no action (idempotent)
        - Otherwise bytes are copied to a temp file and renamed into place

        The copied bytes are rehashed on the way in.

        Returns True if bytes were copied, False if the block already existed.

        Raises StorageError if the source cannot be read or the block
        cannot be written, BlockCorruptedError if the source no longer
        hashes to block_hash.
        """
        dest = self.path_of(block_hash)
        if dest.exists():
            return False

        self.layout.ensure_block_directory(block_hash)
        self._copy_atomic(Path(source), dest, block_hash)
        logger.debug("Stored block %s from %s", block_hash, source)
        return True

    def path_of(self, block_hash: str) -> Path:
        """Get the path a block is (or would be) stored at."""
        return self.layout.get_block_path(block_hash)

    def has(self, block_hash: str) -> bool:
        """Check if a block exists in the store."""
        return self.layout.block_exists(block_hash)

    def open(self, block_hash: str) -> BinaryIO:
        """
        Open a stored block for reading.

        Raises BlockNotFoundError if the block doesn't exist.
        """
        path = self.path_of(block_hash)
        try:
            return path.open('rb')
        except FileNotFoundError:
            raise BlockNotFoundError(block_hash)
        except OSError as e:
            raise StorageError("open_block", str(path), e)

    def delete(self, block_hash: str) -> bool:
        """
        Delete a block from the store.

        This is used by garbage collection.
        Use with extreme caution - only delete unreferenced blocks.

        Returns True if deleted, False if didn't exist.
        """
        path = self.path_of(block_hash)

        if not path.exists():
            return False

        try:
            path.unlink()
            return True
        except OSError as e:
            raise StorageError("delete_block", str(path), e)

    def iter_files(self) -> Iterator[Path]:
        """
        Iterate over every regular file under the data directory.

        The data directory itself and non-file entries are skipped. Each
        call starts a fresh walk.
        """
        data_dir = self.layout.data_dir

        def on_error(e: OSError) -> None:
            raise StorageError("list_blocks", e.filename or str(data_dir), e)

        for dirpath, _, filenames in os.walk(data_dir, onerror=on_error):
            for name in sorted(filenames):
                path = Path(dirpath) / name
                if path.is_file() and not path.is_symlink():
                    yield path

    def iter_blocks(self) -> Iterator[Tuple[str, Path]]:
        """
        Iterate over (hash, path) for files correctly placed in the store.

        Stray files (temp leftovers, misplaced names) are not yielded.
        """
        for path in self.iter_files():
            block_hash = self.hash_of_path(path)
            if block_hash is not None:
                yield block_hash, path

    def hash_of_path(self, path: str | Path) -> Optional[str]:
        """Get the hash a store path belongs to, or None for stray files."""
        path = Path(path)
        if is_valid_hash(path.name) and path == self.path_of(path.name):
            return path.name
        return None

    def get_stats(self) -> dict:
        """
        Get storage statistics.

        Returns dict with:
        - total_blocks: number of blocks
        - total_size_bytes: total size in bytes
        """
        stats = {
            'total_blocks': 0,
            'total_size_bytes': 0,
        }

        for _, path in self.iter_blocks():
            stats['total_blocks'] += 1
            stats['total_size_bytes'] += path.stat().st_size

        return stats

    def _copy_atomic(self, source: Path, dest: Path, block_hash: str) -> None:
        """
        Copy source to dest atomically, checking the bytes against block_hash.

        Uses temp file + rename, so a failed copy never leaves a partial
        block at dest. The content is rehashed while copying; if the source
        changed since block_hash was computed, nothing is stored.
        """
        temp_path = None
        try:
            fd, temp_path = tempfile.mkstemp(
                dir=str(dest.parent),
                prefix='.tmp_',
            )
            with os.fdopen(fd, 'wb') as out, source.open('rb') as src:
                actual = copy_and_hash(src, out)
                out.flush()
                os.fsync(out.fileno())

            if actual != block_hash:
                raise BlockCorruptedError(block_hash, actual)

            os.chmod(temp_path, 0o644)
            os.replace(temp_path, dest)
            temp_path = None  # Mark as moved so we don't try to clean up

        except OSError as e:
            raise StorageError("copy_block", f"{source} -> {dest}", e)
        finally:
            if temp_path is not None and os.path.exists(temp_path):
                os.unlink(temp_path)

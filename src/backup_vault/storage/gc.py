"""
Garbage collection for unreferenced blocks.

Implements mark-and-sweep over the content store.
"""

import logging
from pathlib import Path
from typing import Optional, Set

from ..model.block import BlockTable
from .content_store import ContentStore

logger = logging.getLogger(__name__)


class GarbageCollector:
    """
    Garbage collector for the content store.

    Uses mark-and-sweep algorithm:
    1. Mark: every hash referenced by a backup is reachable
    2. Sweep: delete stored blocks that are not, and their metadata

    Safety guarantees:
    - Never deletes reachable blocks
    - Never deletes files whose names are not block hashes
    - Single-threaded; callers hold the vault lock
    """

    def __init__(self, store: ContentStore, blocks: BlockTable):
        self.store = store
        self.blocks = blocks

    def collect(self, roots: Set[str], dry_run: bool = False) -> dict:
        """
        Run garbage collection.

        Args:
            roots: set of hashes referenced by any backup
            dry_run: if True, only report what would be deleted

        Returns dict with:
            - reachable: set of reachable hashes
            - unreachable: set of stored hashes nobody references
            - deleted: list of deleted hashes (empty if dry_run)
            - dropped_metadata: list of hashes whose metadata was dropped
            - stray: list of non-block files found in the store
            - errors: list of error messages
        """
        result = {
            'reachable': set(roots),
            'unreachable': set(),
            'deleted': [],
            'dropped_metadata': [],
            'stray': [],
            'errors': [],
        }

        stored = set()
        for path in self.store.iter_files():
            block_hash = self._hash_of(path)
            if block_hash is None:
                result['stray'].append(str(path))
                continue
            stored.add(block_hash)

        result['unreachable'] = stored - result['reachable']
        orphaned_metadata = {
            block.hash for block in self.blocks
            if block.hash not in result['reachable']
        }

        if dry_run:
            return result

        for block_hash in sorted(result['unreachable']):
            # Double-check it's not reachable (safety)
            if block_hash in result['reachable']:
                result['errors'].append(
                    f"Safety violation: attempted to delete reachable block {block_hash}"
                )
                continue

            if self.store.delete(block_hash):
                result['deleted'].append(block_hash)

        for block_hash in sorted(orphaned_metadata):
            self.blocks.remove(block_hash)
            result['dropped_metadata'].append(block_hash)

        logger.info(
            "Garbage collection deleted %d blocks, dropped %d metadata entries",
            len(result['deleted']), len(result['dropped_metadata']),
        )
        return result

    def _hash_of(self, path: Path) -> Optional[str]:
        block = self.blocks.get_by_store_path(
            path.relative_to(self.store.layout.data_dir).as_posix()
        )
        if block is not None:
            return block.hash
        # Blocks without metadata still count when correctly placed.
        return self.store.hash_of_path(path)

"""
Block metadata model.

A block is one distinct piece of file content, stored once and shared by
every backup that references its hash.
"""

from dataclasses import dataclass
from typing import Iterator, Optional

from ..errors import BlockSizeMismatchError
from ..integrity.hashing import get_hash_prefix, is_valid_hash
from .index import DualKeyIndex


def block_store_path(block_hash: str) -> str:
    """Store-relative path of a block: '<first byte hex>/<full hex>'."""
    return f"{get_hash_prefix(block_hash)}/{block_hash}"


@dataclass(frozen=True)
class BlockInfo:
    """Metadata recorded for a stored block. Fixed once known."""

    hash: str
    size: int

    def store_path(self) -> str:
        return block_store_path(self.hash)


class BlockTable:
    """
    Vault-wide table of block metadata, keyed by hash.

    Entries are append-only from the backup engine's point of view: a hash
    seen again must carry the same size.
    """

    def __init__(self):
        self._index: DualKeyIndex[BlockInfo] = DualKeyIndex(
            lambda block: block.hash,
            BlockInfo.store_path,
        )

    def add(self, block_hash: str, size: int) -> bool:
        """
        Record metadata for a block.

        Returns True if the hash was new, False if it was already known
        with the same size.

        Raises BlockSizeMismatchError if the hash is known with another size.
        """
        existing = self._index.get_by_key1(block_hash)
        if existing is not None:
            if existing.size != size:
                raise BlockSizeMismatchError(block_hash, existing.size, size)
            return False

        self._index.insert(BlockInfo(block_hash, size))
        return True

    def get(self, block_hash: str) -> Optional[BlockInfo]:
        return self._index.get_by_key1(block_hash)

    def get_by_store_path(self, rel_path: str) -> Optional[BlockInfo]:
        """Look up the block whose store-relative path is rel_path."""
        return self._index.get_by_key2(rel_path)

    def remove(self, block_hash: str) -> Optional[BlockInfo]:
        return self._index.remove_by_key1(block_hash)

    def __contains__(self, block_hash: str) -> bool:
        return self._index.get_by_key1(block_hash) is not None

    def __iter__(self) -> Iterator[BlockInfo]:
        return iter(self._index)

    def __len__(self) -> int:
        return len(self._index)

    def to_dict(self) -> dict:
        return {block.hash: {'size': block.size} for block in self._index}

    @classmethod
    def from_dict(cls, data: dict) -> 'BlockTable':
        """
        Reconstruct the table from its stored form.

        Raises ValueError if data is invalid.
        """
        if not isinstance(data, dict):
            raise ValueError("Blocks must be a mapping of hash to metadata")

        table = cls()
        for block_hash, meta in data.items():
            if not is_valid_hash(block_hash):
                raise ValueError(f"Invalid block hash: {block_hash!r}")
            size = meta.get('size') if isinstance(meta, dict) else None
            if not isinstance(size, int) or isinstance(size, bool) or size < 0:
                raise ValueError(f"Block {block_hash} has no valid size")
            table.add(block_hash, size)
        return table

    def __repr__(self) -> str:
        return f"BlockTable(blocks={len(self)})"

"""
Integrity verification for stored blocks and backups.

Provides tamper detection and referential integrity checks.
"""

import logging

from ..errors import BlockCorruptedError, BlockNotFoundError, StorageError, VaultError
from .hashing import hash_file

logger = logging.getLogger(__name__)


def verify_block(store, block_hash: str) -> int:
    """
    Verify that a stored block's content matches its hash.

    Returns the block size in bytes.

    Raises BlockNotFoundError if missing, BlockCorruptedError on mismatch.
    """
    path = store.path_of(block_hash)
    if not path.is_file():
        raise BlockNotFoundError(block_hash)

    try:
        actual = hash_file(path)
        size = path.stat().st_size
    except OSError as e:
        raise StorageError("verify_block", str(path), e)

    if actual != block_hash:
        raise BlockCorruptedError(block_hash, actual)
    return size


def verify_references(database, store) -> list:
    """
    Check that every hash referenced by a backup has metadata and a block.

    Returns list of error messages, one per broken reference.
    """
    errors = []
    for name, backup_file in database.iter_file_records():
        if backup_file.hash not in database.blocks:
            errors.append(
                f"{name}: {backup_file.path} references {backup_file.hash} "
                f"with no block metadata"
            )
        elif not store.has(backup_file.hash):
            errors.append(
                f"{name}: {backup_file.path} references missing block "
                f"{backup_file.hash}"
            )
    return errors


def verify_vault(database, store) -> dict:
    """
    Verify a whole vault.

    Rehashes every stored block and compares its size against recorded
    metadata, then checks backup references.

    Returns dict with:
        - verified: count of blocks whose content matched
        - corrupted: list of corrupted block hashes
        - missing: list of referenced hashes not in the store
        - errors: list of error messages
        - valid: bool, True if nothing was wrong
    """
    result = {
        'verified': 0,
        'corrupted': [],
        'missing': [],
        'errors': [],
    }

    for block_hash, _ in store.iter_blocks():
        try:
            size = verify_block(store, block_hash)
        except VaultError as e:
            result['corrupted'].append(block_hash)
            result['errors'].append(f"{block_hash}: {e}")
            continue

        block = database.blocks.get(block_hash)
        if block is not None and block.size != size:
            result['corrupted'].append(block_hash)
            result['errors'].append(
                f"{block_hash}: recorded size {block.size}, stored size {size}"
            )
            continue
        result['verified'] += 1

    for block_hash in sorted(database.referenced_hashes()):
        if not store.has(block_hash):
            result['missing'].append(block_hash)

    result['errors'].extend(verify_references(database, store))
    result['valid'] = not (result['corrupted'] or result['missing'] or result['errors'])

    logger.info(
        "Verified %d blocks: %d corrupted, %d missing",
        result['verified'], len(result['corrupted']), len(result['missing']),
    )
    return result

"""
Content hashing using BLAKE3.

Every stored block is addressed by the hex BLAKE3 digest of its bytes.
"""

import re
from pathlib import Path
from typing import BinaryIO

import blake3

HASH_HEX_LENGTH = 64
CHUNK_SIZE = 1024 * 1024

_HEX_RE = re.compile(r'^[0-9a-f]{64}$')


def compute_hash(data: bytes) -> str:
    """
    Compute hash of raw bytes.

    Returns hex-encoded hash string.
    """
    return blake3.blake3(data).hexdigest()


def hash_file(path: str | Path) -> str:
    """
    Hash a file's contents without loading it into memory at once.

    Reads the file in CHUNK_SIZE pieces. Raises OSError if the file
    cannot be opened or read.
    """
    hasher = blake3.blake3()
    with open(path, 'rb') as f:
        while True:
            chunk = f.read(CHUNK_SIZE)
            if not chunk:
                break
            hasher.update(chunk)
    return hasher.hexdigest()


def is_valid_hash(hash_str: str) -> bool:
    """Check that a string is a 64-character lowercase hex digest."""
    return isinstance(hash_str, str) and bool(_HEX_RE.match(hash_str))


def get_hash_prefix(hash_str: str, prefix_length: int = 2) -> str:
    """
    Get prefix of hash for directory sharding.

    Default is 2 characters (the first byte), creating at most 256
    subdirectories.
    """
    if not is_valid_hash(hash_str):
        raise ValueError(f"Not a valid content hash: {hash_str!r}")
    return hash_str[:prefix_length]


def copy_and_hash(src: BinaryIO, dst: BinaryIO) -> str:
    """
    Copy src to dst in CHUNK_SIZE pieces, hashing the bytes as they pass.

    Returns the hex hash of everything copied.
    """
    hasher = blake3.blake3()
    while True:
        chunk = src.read(CHUNK_SIZE)
        if not chunk:
            break
        hasher.update(chunk)
        dst.write(chunk)
    return hasher.hexdigest()

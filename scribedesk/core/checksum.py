from __future__ import annotations

import hashlib
import os
from typing import BinaryIO


def sha256_bytes(b: bytes) -> str:
    return hashlib.sha256(b).hexdigest()


def sha256_stream(fp: BinaryIO, *, chunk_size: int = 1024 * 1024) -> str:
    h = hashlib.sha256()
    for chunk in iter(lambda: fp.read(chunk_size), b""):
        h.update(chunk)
    return h.hexdigest()


def sha256_file(path: str) -> str:
    """Hex SHA-256 of a source media file; this is the record checksum."""
    with open(path, "rb") as f:
        return sha256_stream(f)


def validate_checksum(path: str, expected: str) -> bool:
    if not expected or not os.path.isfile(path):
        return False
    return sha256_file(path) == str(expected).strip().lower()

"""
ContentProof Content Hashing

Content fingerprints are SHA-256 digests of the raw bytes only. No file name,
metadata or timestamp takes part. The digest is rendered as ``0x`` followed by
64 lowercase hex characters so it can be passed to the registry as a bytes32.
"""

import hashlib
from pathlib import Path
from typing import BinaryIO, Iterable, Union

from .errors import ValidationError
from .util import is_hex, strip_0x

CHUNK_SIZE = 64 * 1024
DIGEST_HEX_LENGTH = 64


class HashReadError(IOError):
    """Reading the content source failed while hashing."""


def hash_bytes(data: Union[bytes, bytearray]) -> str:
    """Hash an in-memory byte string."""
    return "0x" + hashlib.sha256(bytes(data)).hexdigest()


def hash_stream(source: Union[BinaryIO, Iterable[bytes]], chunk_size: int = CHUNK_SIZE) -> str:
    """
    Hash a streaming byte source.

    Args:
        source: A binary file object (anything with ``read``) or an iterable
            of byte chunks
        chunk_size: Read size for file objects

    Returns:
        Content hash in ``0x``-prefixed hex form

    Raises:
        HashReadError: If the underlying source fails to read
    """
    h = hashlib.sha256()
    try:
        if hasattr(source, "read"):
            for chunk in iter(lambda: source.read(chunk_size), b""):
                h.update(chunk)
        else:
            for chunk in source:
                h.update(chunk)
    except OSError as e:
        raise HashReadError(f"Failed reading content: {e}") from e
    return "0x" + h.hexdigest()


def hash_file(path: Union[str, Path], chunk_size: int = CHUNK_SIZE) -> str:
    """Hash a file on disk without loading it into memory."""
    try:
        f = open(path, "rb")
    except OSError as e:
        raise HashReadError(f"Cannot open {path}: {e}") from e
    with f:
        return hash_stream(f, chunk_size)


def normalize_content_hash(value: str, field: str = "contentHash") -> str:
    """
    Validate and normalize a content hash to ``0x`` + 64 lowercase hex.

    Raises:
        ValidationError: If the value is empty or not a 32-byte hex digest
    """
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(field, "cannot be empty")
    raw = strip_0x(value.strip()).lower()
    if len(raw) != DIGEST_HEX_LENGTH or not is_hex(raw):
        raise ValidationError(field, "must be a 32-byte hex digest")
    return "0x" + raw


def content_hash_bytes32(value: str) -> bytes:
    """Convert a content hash to the 32 raw bytes expected by the registry."""
    return bytes.fromhex(strip_0x(normalize_content_hash(value)))


def verify_hash(declared_hash: str, data: Union[bytes, bytearray]) -> bool:
    """Recompute the hash of ``data`` and compare it with a declared hash."""
    try:
        declared = normalize_content_hash(declared_hash)
    except ValidationError:
        return False
    return hash_bytes(data) == declared

import hashlib
from typing import BinaryIO

CHECKSUM_PREFIX = "sha256:"
CHUNK_SIZE = 64 * 1024


def checksum_bytes(data: bytes) -> str:
    return CHECKSUM_PREFIX + hashlib.sha256(data).hexdigest()


def checksum_stream(stream: BinaryIO) -> str:
    """
    returns the sha256 checksum of a binary stream, read from its current position.

    the stream is left at EOF.
    """
    digest = hashlib.sha256()
    for chunk in iter(lambda: stream.read(CHUNK_SIZE), b""):
        digest.update(chunk)
    return CHECKSUM_PREFIX + digest.hexdigest()


def checksum_file(path) -> str:
    with open(path, "rb") as f:
        return checksum_stream(f)


def short_hash(value: str) -> str:
    """
    returns a short sha256 hash of a string, for directory names.
    """
    if not isinstance(value, str):
        raise TypeError(f"expected str, got {type(value).__name__}")
    digest = hashlib.sha256(value.encode()).hexdigest()
    return digest[:12]  # truncate for readability

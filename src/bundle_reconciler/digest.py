"""Content fingerprints for generated files.

A fingerprint is the hex SHA-256 of a file's bytes. A path that does not
exist (or is not a regular file) fingerprints to ABSENT, which compares
unequal to every real fingerprint.
"""

import hashlib
from pathlib import Path
from typing import Union

ABSENT = ""

_CHUNK_SIZE = 64 * 1024


def digest_file(path: Union[str, Path]) -> str:
    """Compute SHA256 of a file, or ABSENT if there is no such file."""
    path = Path(path)
    if not path.is_file():
        return ABSENT

    sha = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(_CHUNK_SIZE), b""):
            sha.update(chunk)
    return sha.hexdigest()


def digest_bytes(content: bytes) -> str:
    """Compute SHA256 of raw bytes."""
    return hashlib.sha256(content).hexdigest()


def digest_text(content: str) -> str:
    """Compute SHA256 of text content (UTF-8)."""
    return digest_bytes(content.encode("utf-8"))


def is_absent(fingerprint: str) -> bool:
    return fingerprint == ABSENT

"""
File utilities (content digests, comparison)
"""
import hashlib
from pathlib import Path
from typing import Union

PathLike = Union[str, Path]


def sha256_file(path: PathLike) -> str:
    """Compute the SHA-256 hex digest of a local file"""
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(65536), b""):
            h.update(chunk)
    return h.hexdigest()


def files_identical(a: PathLike, b: PathLike) -> bool:
    """True if both files have the same SHA-256 digest."""
    return sha256_file(a) == sha256_file(b)

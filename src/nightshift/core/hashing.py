"""
Deterministic hashing utilities for cache keys and content fingerprints.

Manifesto:
    Two Runs over the same dependency lock file must resolve to the same
    cache key, and any edit to the lock file must change it.  Hashes here
    are stable across machines: inputs are sorted by repository-relative
    path, contents are hashed in fixed-size blocks, and nothing that
    varies between checkouts (mtimes, absolute paths) is included.

Architecture:
    ::

        compute_hash(*values)           "|".join(values) → sha256 (truncated)

        hash_files(root, "**/Cargo.lock")
            for path in sorted(matches):
                outer.update(sha256(file_bytes).digest())
            → outer.hexdigest()          ("" when nothing matches)

Examples:
    >>> compute_hash("debian10.3", "2") == compute_hash("debian10.3", "2")
    True
    >>> hash_files(Path("/nonexistent"), "**/Cargo.lock")
    ''

Tags:
    hashing, cache-key, lock-file, determinism, nightshift

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import hashlib
import os
from pathlib import Path
from typing import Any

from nightshift.core.globs import match_any

_BLOCK_SIZE = 1 << 16

# Never descend into these when searching for files to hash
_SKIP_DIRS = frozenset({".git"})


def compute_hash(*values: Any, length: int = 32) -> str:
    """
    Compute deterministic hash from values.

    Values are joined with ``|`` and hashed with SHA-256, so the result is
    order-dependent: ``compute_hash("a", "b") != compute_hash("b", "a")``.

    Args:
        *values: Values to hash (converted to strings)
        length: Hex digest length (default 32 = 128 bits)
    """
    content = "|".join(str(v) for v in values)
    return hashlib.sha256(content.encode()).hexdigest()[:length]


def file_digest(path: Path) -> bytes:
    """SHA-256 digest of one file's contents."""
    digest = hashlib.sha256()
    with open(path, "rb") as fh:
        for block in iter(lambda: fh.read(_BLOCK_SIZE), b""):
            digest.update(block)
    return digest.digest()


def find_files(root: Path, *patterns: str) -> list[Path]:
    """Return files under ``root`` matching any pattern, sorted by relative path."""
    root = Path(root)
    if not root.is_dir():
        return []
    found: list[tuple[str, Path]] = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if d not in _SKIP_DIRS)
        for name in filenames:
            full = Path(dirpath) / name
            rel = full.relative_to(root).as_posix()
            if match_any(rel, patterns):
                found.append((rel, full))
    found.sort(key=lambda item: item[0])
    return [full for _, full in found]


def hash_files(root: Path, *patterns: str) -> str:
    """
    Hash every file under ``root`` matching ``patterns``.

    Each file contributes the SHA-256 of its contents, fed in path order to
    an outer SHA-256.  Returns an empty string when no file matches, so a
    project without a lock file still gets a well-defined key.
    """
    files = find_files(root, *patterns)
    if not files:
        return ""
    outer = hashlib.sha256()
    for path in files:
        outer.update(file_digest(path))
    return outer.hexdigest()


__all__ = [
    "compute_hash",
    "file_digest",
    "find_files",
    "hash_files",
]

"""Artifact selection: which packaged files the publisher uploads.

The packaging script drops its archives in the workspace root.  The
publisher takes a ``;``-separated glob list such as
``project-*.deb;project-*.xz;project-*.tar.gz`` and uploads every regular
file matching at least one pattern, and nothing else.

Patterns without a ``/`` are matched against the workspace root only, so
``project-*.deb`` never picks up a stale ``target/debian/project-old.deb``.
Patterns with a ``/`` are matched against workspace-relative paths.
"""

from __future__ import annotations

from pathlib import Path

from nightshift.core.globs import match_any, split_patterns
from nightshift.core.hashing import find_files


def select_artifacts(root: Path, pattern: str) -> list[Path]:
    """Files under ``root`` matching ``pattern``, sorted by relative path."""
    root = Path(root)
    patterns = split_patterns(pattern)
    if not patterns or not root.is_dir():
        return []

    if any("/" in p for p in patterns):
        return find_files(root, *patterns)

    return sorted(
        (p for p in root.iterdir() if p.is_file() and match_any(p.name, patterns)),
        key=lambda p: p.name,
    )


__all__ = ["select_artifacts"]

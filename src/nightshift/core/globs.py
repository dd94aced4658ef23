"""
Path glob matching with source-host filter-pattern semantics.

``fnmatch`` lets ``*`` cross directory separators, which makes
``docs/*`` and ``docs/**`` indistinguishable and lets ``*.md`` match
``docs/readme.md``.  Push filters, lock-file discovery and artifact
selection all need the stricter rules used by the source host:

    ``*``   any run of characters except ``/``
    ``**``  any run of characters including ``/`` (``**/`` may match nothing)
    ``?``   one character except ``/``
    ``[..]`` a character class

Examples:
    >>> glob_match("docs/guide/install.md", "docs/**")
    True
    >>> glob_match("README.md", "**/*.md")
    True
    >>> glob_match("src/main.rs", "*.rs")
    False

Tags:
    glob, path-filter, pattern-matching, nightshift
"""

from __future__ import annotations

import re
from functools import lru_cache


@lru_cache(maxsize=256)
def compile_glob(pattern: str) -> re.Pattern[str]:
    """Translate a filter glob into an anchored regular expression."""
    i = 0
    n = len(pattern)
    out: list[str] = []
    while i < n:
        ch = pattern[i]
        if ch == "*":
            if pattern.startswith("**", i):
                i += 2
                if i < n and pattern[i] == "/":
                    # "**/" matches zero or more whole directories
                    out.append("(?:.*/)?")
                    i += 1
                else:
                    out.append(".*")
                continue
            out.append("[^/]*")
        elif ch == "?":
            out.append("[^/]")
        elif ch == "[":
            end = pattern.find("]", i + 1)
            if end == -1:
                out.append(re.escape(ch))
            else:
                body = pattern[i + 1 : end]
                if body.startswith("!"):
                    body = "^" + body[1:]
                out.append(f"[{body}]")
                i = end
        else:
            out.append(re.escape(ch))
        i += 1
    return re.compile("".join(out) + r"\Z")


def normalize_path(path: str) -> str:
    """Normalise a repository-relative path (forward slashes, no ``./``)."""
    path = path.replace("\\", "/")
    while path.startswith("./"):
        path = path[2:]
    return path.lstrip("/")


def glob_match(path: str, pattern: str) -> bool:
    """Return ``True`` if ``path`` matches ``pattern``."""
    return compile_glob(normalize_path(pattern)).match(normalize_path(path)) is not None


def match_any(path: str, patterns: tuple[str, ...] | list[str]) -> bool:
    """Return ``True`` if ``path`` matches at least one pattern."""
    return any(glob_match(path, p) for p in patterns)


def split_patterns(spec: str) -> list[str]:
    """Split a ``;``-separated pattern list, dropping blanks."""
    return [p.strip() for p in spec.split(";") if p.strip()]


__all__ = [
    "compile_glob",
    "normalize_path",
    "glob_match",
    "match_any",
    "split_patterns",
]

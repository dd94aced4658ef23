"""
Cache store: keyed directory snapshots.

Provides a ``CacheStore`` protocol and a ``LocalCacheStore`` that keeps one
gzip tarball per key in a directory shared between Runs.

Manifesto:
    A cache entry is a pure function of the directories it snapshots.
    Archives are written deterministically (members sorted, timestamps
    and ownership zeroed, gzip header without a timestamp), so restoring
    an entry and saving it again unchanged produces the same bytes.

Architecture:
    ::

        CacheStore (Protocol)
        └── LocalCacheStore(root)      <root>/<key>.tar.gz

        API: contains(key) → bool
             save(key, paths, workspace=, home=) → Path | None
             restore(key, workspace=, home=) → int | None
             delete(key)
             keys() → list[str]

    Cache paths are written the way a workflow file writes them:
    ``~/.cargo/registry`` lives under ``home/`` in the archive,
    ``target`` under ``workspace/``.

    Writes go to a temporary file in the store directory and are swapped
    in with ``os.replace``: a reader never sees a half-written archive,
    and concurrent writers of the same key are last-writer-wins.

Guardrails:
    ❌ DON'T: write into ``<root>/<key>.tar.gz`` directly
    ✅ DO: write a temporary file and ``os.replace`` it into place

Tags:
    cache, tar, snapshot, deterministic, nightshift

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import gzip
import os
import stat
import tarfile
import tempfile
from collections.abc import Iterator, Sequence
from pathlib import Path
from typing import Protocol

from nightshift.core.errors import CacheError
from nightshift.core.logging import get_logger

logger = get_logger(__name__)

CARGO_CACHE_PATHS = ("~/.cargo/registry", "~/.cargo/git", "target")

_HOME_ROOT = "home"
_WORKSPACE_ROOT = "workspace"
_SUFFIX = ".tar.gz"


class CacheStore(Protocol):
    """Protocol for cache store implementations."""

    def contains(self, key: str) -> bool:
        """True if an entry exists for ``key``."""
        ...

    def save(self, key: str, paths: Sequence[str], *, workspace: Path, home: Path) -> Path | None:
        """Snapshot ``paths`` under ``key``; ``None`` if none of them exist."""
        ...

    def restore(self, key: str, *, workspace: Path, home: Path) -> int | None:
        """Unpack ``key``; number of members restored, ``None`` on a miss."""
        ...

    def delete(self, key: str) -> None:
        ...

    def keys(self) -> list[str]:
        ...


def resolve_cache_path(path: str, *, workspace: Path, home: Path) -> tuple[str, Path]:
    """Map a cache path to its archive name and its location on disk.

    >>> resolve_cache_path("~/.cargo/git", workspace=Path("/w"), home=Path("/h"))
    ('home/.cargo/git', PosixPath('/h/.cargo/git'))
    """
    if path == "~" or path.startswith("~/"):
        rel = path[2:].strip("/")
        arcname = f"{_HOME_ROOT}/{rel}" if rel else _HOME_ROOT
        return arcname, Path(home) / rel
    if os.path.isabs(path) or ".." in Path(path).parts:
        raise CacheError(f"Cache path must be relative to the workspace or home: {path!r}")
    rel = Path(path).as_posix().strip("/")
    return f"{_WORKSPACE_ROOT}/{rel}", Path(workspace) / rel


def _file_mode(mode: int) -> int:
    # Same normalisation the "data" extraction filter applies.
    mode &= 0o755
    if not mode & 0o100:
        mode &= ~0o111
    return mode | 0o600


def _tarinfo(arcname: str, path: Path) -> tarfile.TarInfo | None:
    st = os.lstat(path)
    info = tarfile.TarInfo(arcname)
    info.mtime = 0
    info.uid = info.gid = 0
    info.uname = info.gname = ""
    if stat.S_ISLNK(st.st_mode):
        info.type = tarfile.SYMTYPE
        info.linkname = os.readlink(path)
        info.mode = 0o777
    elif stat.S_ISDIR(st.st_mode):
        info.type = tarfile.DIRTYPE
        info.mode = 0o755
    elif stat.S_ISREG(st.st_mode):
        info.type = tarfile.REGTYPE
        info.size = st.st_size
        info.mode = _file_mode(st.st_mode)
    else:
        return None
    return info


def _walk(arcname: str, path: Path) -> Iterator[tuple[str, Path]]:
    """Yield ``path`` and everything below it, sorted, without following links."""
    yield arcname, path
    if path.is_dir() and not path.is_symlink():
        for child in sorted(os.listdir(path)):
            yield from _walk(f"{arcname}/{child}", path / child)


def _parents(arcname: str) -> list[str]:
    parts = arcname.split("/")
    return ["/".join(parts[:i]) for i in range(1, len(parts))]


class LocalCacheStore:
    """Directory of ``<key>.tar.gz`` archives.

    Args:
        root: Directory holding the archives (created on first save)
        compresslevel: gzip level; fixed per store so output is stable
    """

    def __init__(self, root: Path, *, compresslevel: int = 6) -> None:
        self.root = Path(root)
        self.compresslevel = compresslevel

    def archive_path(self, key: str) -> Path:
        if not key or "/" in key or key.startswith("."):
            raise CacheError(f"Invalid cache key: {key!r}")
        return self.root / f"{key}{_SUFFIX}"

    def contains(self, key: str) -> bool:
        return self.archive_path(key).is_file()

    def keys(self) -> list[str]:
        if not self.root.is_dir():
            return []
        return sorted(p.name[: -len(_SUFFIX)] for p in self.root.glob(f"*{_SUFFIX}"))

    def delete(self, key: str) -> None:
        self.archive_path(key).unlink(missing_ok=True)

    # ------------------------------------------------------------------
    # Save
    # ------------------------------------------------------------------

    def save(self, key: str, paths: Sequence[str], *, workspace: Path, home: Path) -> Path | None:
        target = self.archive_path(key)
        roots: list[tuple[str, Path]] = []
        for path in paths:
            arcname, location = resolve_cache_path(path, workspace=workspace, home=home)
            if location.exists() or location.is_symlink():
                roots.append((arcname, location))
            else:
                logger.debug("cache.path_missing", path=path)
        if not roots:
            logger.warning("cache.nothing_to_save", key=key, paths=list(paths))
            return None

        self.root.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{key}.", suffix=".tmp", dir=self.root)
        members = 0
        try:
            with os.fdopen(fd, "wb") as raw:
                with gzip.GzipFile(
                    filename="", mode="wb", fileobj=raw, mtime=0, compresslevel=self.compresslevel
                ) as gz:
                    with tarfile.open(fileobj=gz, mode="w", format=tarfile.PAX_FORMAT) as tar:
                        members = self._write_members(tar, sorted(roots))
            os.replace(tmp_name, target)
        except OSError as exc:
            Path(tmp_name).unlink(missing_ok=True)
            raise CacheError(f"Could not write cache entry {key}: {exc}", cause=exc) from exc
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

        logger.info("cache.saved", key=key, members=members, bytes=target.stat().st_size)
        return target

    def _write_members(self, tar: tarfile.TarFile, roots: list[tuple[str, Path]]) -> int:
        written: set[str] = set()
        count = 0
        for root_arcname, root_path in roots:
            # Parent directories first so extraction never creates them implicitly.
            for parent in _parents(root_arcname):
                if parent not in written:
                    info = tarfile.TarInfo(parent)
                    info.type, info.mode, info.mtime = tarfile.DIRTYPE, 0o755, 0
                    tar.addfile(info)
                    written.add(parent)
                    count += 1
            for arcname, path in _walk(root_arcname, root_path):
                if arcname in written:
                    continue
                info = _tarinfo(arcname, path)
                if info is None:
                    continue
                if info.isreg():
                    with open(path, "rb") as fh:
                        tar.addfile(info, fh)
                else:
                    tar.addfile(info)
                written.add(arcname)
                count += 1
        return count

    # ------------------------------------------------------------------
    # Restore
    # ------------------------------------------------------------------

    def restore(self, key: str, *, workspace: Path, home: Path) -> int | None:
        archive = self.archive_path(key)
        if not archive.is_file():
            return None
        destinations = {_HOME_ROOT: Path(home), _WORKSPACE_ROOT: Path(workspace)}
        restored = 0
        try:
            with tarfile.open(archive, mode="r:gz") as tar:
                for member in tar:
                    top, _, rest = member.name.partition("/")
                    if top not in destinations or not rest:
                        continue
                    dest = destinations[top]
                    dest.mkdir(parents=True, exist_ok=True)
                    tar.extract(member.replace(name=rest, deep=False), path=dest, filter="data")
                    restored += 1
        except (OSError, tarfile.TarError) as exc:
            raise CacheError(f"Could not restore cache entry {key}: {exc}", cause=exc) from exc

        logger.info("cache.restored", key=key, members=restored)
        return restored


__all__ = [
    "CARGO_CACHE_PATHS",
    "CacheStore",
    "LocalCacheStore",
    "resolve_cache_path",
]

"""
Structured cache key for dependency and build-output snapshots.

Manifesto:
    The key decides whether two Runs share a cache, so it must be built in
    one place from named parts, never by ad-hoc string concatenation in a
    stage definition.  Any edit to a lock file changes ``lock_hash`` and
    therefore the key; nothing else about the checkout does.

Architecture:
    ::

        CacheKey(platform="debian10.3", schema_version="2",
                 runner_os="Linux", lock_hash=hash_files(ws, "**/Cargo.lock"),
                 kind="cargo")
            .serialize()  →  "debian10.3-2-Linux-<lock_hash>-cargo"

    Bumping ``schema_version`` invalidates every existing entry without
    touching the lock file.

Tags:
    cache, cache-key, lock-file, nightshift
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

from nightshift.core.errors import ConfigError
from nightshift.core.hashing import hash_files

if TYPE_CHECKING:
    from nightshift.core.config import NightshiftSettings

_SAFE_PART = re.compile(r"^[A-Za-z0-9._]+$")


@dataclass(frozen=True)
class CacheKey:
    """Identity of one cache entry."""

    platform: str
    schema_version: str
    runner_os: str
    lock_hash: str
    kind: str = "cargo"

    def __post_init__(self):
        for name in ("platform", "schema_version", "runner_os", "kind"):
            value = getattr(self, name)
            if not _SAFE_PART.match(value):
                raise ConfigError(f"Cache key part {name}={value!r} must be non-empty [A-Za-z0-9._]")
        if self.lock_hash and not _SAFE_PART.match(self.lock_hash):
            raise ConfigError(f"Cache key lock_hash={self.lock_hash!r} is not a hex digest")

    def serialize(self) -> str:
        """Deterministic string form, stable across machines."""
        return "-".join(
            [self.platform, self.schema_version, self.runner_os, self.lock_hash, self.kind]
        )

    def __str__(self) -> str:
        return self.serialize()

    @classmethod
    def from_workspace(
        cls,
        workspace: Path,
        *,
        platform: str,
        schema_version: str,
        runner_os: str = "Linux",
        lock_pattern: str = "**/Cargo.lock",
        kind: str = "cargo",
    ) -> CacheKey:
        """Build the key for the lock files currently in ``workspace``."""
        return cls(
            platform=platform,
            schema_version=schema_version,
            runner_os=runner_os,
            lock_hash=hash_files(Path(workspace), lock_pattern),
            kind=kind,
        )

    @classmethod
    def from_settings(cls, settings: NightshiftSettings, workspace: Path | None = None) -> CacheKey:
        return cls.from_workspace(
            workspace if workspace is not None else settings.workspace_dir,
            platform=settings.platform_label,
            schema_version=settings.cache_schema_version,
            runner_os=settings.runner_os,
            lock_pattern=settings.lock_file_pattern,
            kind=settings.cache_kind,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.serialize(),
            "platform": self.platform,
            "schema_version": self.schema_version,
            "runner_os": self.runner_os,
            "lock_hash": self.lock_hash,
            "kind": self.kind,
        }


__all__ = ["CacheKey"]

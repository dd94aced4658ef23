"""
Cache manager: restore before the build, save after a successful Run.

``CacheManager`` supplies the two cache touch points of a pipeline:

- ``restore`` is an *action stage* handler.  It computes the key from the
  lock files in the fresh checkout and unpacks a matching entry.  A miss
  is a success; an error is raised as ``CacheError`` and, because the
  stage is declared non-fatal, only degrades the Run to a cold build.
- ``save`` is a *post-success hook*.  It runs only when every stage
  succeeded, so a failed build never poisons the cache, and it skips the
  write when the restore was an exact hit or the key is already stored.

Example:
    manager = CacheManager(LocalCacheStore(settings.cache_dir),
                           platform="debian10.3", schema_version="2")
    stages.append(Stage.action("restore-cache", manager.restore, fatal=False))
    pipeline.post_success.append(("save-cache", manager.save))
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

from nightshift.cache.key import CacheKey
from nightshift.cache.store import CARGO_CACHE_PATHS, CacheStore, LocalCacheStore
from nightshift.core.logging import get_logger
from nightshift.orchestration.stage_result import StageResult

if TYPE_CHECKING:
    from pathlib import Path

    from nightshift.core.config import NightshiftSettings
    from nightshift.orchestration.run_context import RunContext
    from nightshift.orchestration.stage_types import Stage

logger = get_logger(__name__)

RESTORE_STAGE = "restore-cache"


class CacheManager:
    """Restores and saves the dependency/build cache for one pipeline."""

    def __init__(
        self,
        store: CacheStore,
        *,
        platform: str,
        schema_version: str,
        runner_os: str = "Linux",
        lock_pattern: str = "**/Cargo.lock",
        kind: str = "cargo",
        paths: Sequence[str] = CARGO_CACHE_PATHS,
        restore_stage: str = RESTORE_STAGE,
    ) -> None:
        self.store = store
        self.platform = platform
        self.schema_version = schema_version
        self.runner_os = runner_os
        self.lock_pattern = lock_pattern
        self.kind = kind
        self.paths = tuple(paths)
        self.restore_stage = restore_stage

    @classmethod
    def from_settings(
        cls,
        settings: NightshiftSettings,
        *,
        paths: Sequence[str] = CARGO_CACHE_PATHS,
        restore_stage: str = RESTORE_STAGE,
    ) -> CacheManager:
        return cls(
            LocalCacheStore(settings.cache_dir),
            platform=settings.platform_label,
            schema_version=settings.cache_schema_version,
            runner_os=settings.runner_os,
            lock_pattern=settings.lock_file_pattern,
            kind=settings.cache_kind,
            paths=paths,
            restore_stage=restore_stage,
        )

    def __call__(self, ctx: RunContext, stage: Stage) -> StageResult:
        return self.restore(ctx, stage)

    def key_for(self, workspace: Path) -> CacheKey:
        return CacheKey.from_workspace(
            workspace,
            platform=self.platform,
            schema_version=self.schema_version,
            runner_os=self.runner_os,
            lock_pattern=self.lock_pattern,
            kind=self.kind,
        )

    # ------------------------------------------------------------------
    # Restore (action stage)
    # ------------------------------------------------------------------

    def restore(self, ctx: RunContext, stage: Stage) -> StageResult:
        """Unpack the entry for the checkout's lock files, if there is one."""
        key = self.key_for(ctx.workspace).serialize()
        output = {"key": key, "paths": list(self.paths)}

        if not self.store.contains(key):
            logger.info("cache.miss", key=key)
            return StageResult.ok({**output, "hit": False})

        restored = self.store.restore(key, workspace=ctx.workspace, home=ctx.home)
        if restored is None:
            # Removed between contains() and restore(); another Run pruned it.
            logger.info("cache.miss", key=key)
            return StageResult.ok({**output, "hit": False})

        logger.info("cache.hit", key=key, members=restored)
        return StageResult.ok({**output, "hit": True, "members": restored})

    # ------------------------------------------------------------------
    # Save (post-success hook)
    # ------------------------------------------------------------------

    def save(self, ctx: RunContext) -> None:
        """Snapshot the cache paths under the key computed at restore time."""
        key = ctx.get_output(self.restore_stage, "key") or self.key_for(ctx.workspace).serialize()

        if ctx.get_output(self.restore_stage, "hit", False):
            logger.info("cache.save_skipped", key=key, reason="exact hit on restore")
            return
        if self.store.contains(key):
            logger.info("cache.save_skipped", key=key, reason="entry already stored")
            return

        self.store.save(key, self.paths, workspace=ctx.workspace, home=ctx.home)


__all__ = ["RESTORE_STAGE", "CacheManager"]

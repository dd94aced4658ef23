"""Dependency and build-output cache: structured key, snapshot store, manager."""

from nightshift.cache.key import CacheKey
from nightshift.cache.manager import RESTORE_STAGE, CacheManager
from nightshift.cache.store import CARGO_CACHE_PATHS, CacheStore, LocalCacheStore, resolve_cache_path

__all__ = [
    "CARGO_CACHE_PATHS",
    "CacheKey",
    "CacheManager",
    "CacheStore",
    "LocalCacheStore",
    "RESTORE_STAGE",
    "resolve_cache_path",
]

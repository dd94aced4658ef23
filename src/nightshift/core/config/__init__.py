"""Centralized configuration.

Quick start::

    from nightshift.core.config import get_settings

    settings = get_settings()
    print(settings.container_image)   # debian:10.3

Guardrails:
    ❌ Parsing env vars ad-hoc in each module
    ✅ ``get_settings().release_tag`` from the cached singleton
"""

from nightshift.core.config.settings import (
    DEFAULT_PATHS_IGNORE,
    ExecutorKind,
    NightshiftSettings,
    clear_settings_cache,
    get_settings,
)

__all__ = [
    "DEFAULT_PATHS_IGNORE",
    "ExecutorKind",
    "NightshiftSettings",
    "clear_settings_cache",
    "get_settings",
]

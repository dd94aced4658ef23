"""
Centralized settings for nightshift.

Manifesto:
    The pipeline is one fixed instance for one project on one platform
    image, but the handful of values that name that instance (repository,
    image, cache schema version, release tag) must not be scattered
    through the stage catalog.  ``NightshiftSettings`` is the single,
    validated, cached source of truth; every field can be overridden with
    a ``NIGHTSHIFT_*`` environment variable or a ``.env`` file.

Tags:
    nightshift, configuration, settings, pydantic, caching, validation

Doc-Types:
    api-reference
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_PATHS_IGNORE = [
    ".cirrus.yml",
    "docs/**",
    "ci/build-docs.sh",
    "ci/generate-docs.py",
    "ci/subst-release-info.py",
    ".github/workflows/pages.yml",
    "**/*.md",
]


class ExecutorKind(str, Enum):
    """Where shell stages run."""

    LOCAL = "local"
    CONTAINER = "container"


class NightshiftSettings(BaseSettings):
    """Nightshift configuration.

    All fields can be set via ``NIGHTSHIFT_*`` environment variables (e.g.
    ``NIGHTSHIFT_REPOSITORY=wez/wezterm``) or a ``.env`` file.
    """

    model_config = SettingsConfigDict(
        env_prefix="NIGHTSHIFT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Pipeline identity ────────────────────────────────────────
    pipeline_name: str = Field(default="debian10.3_continuous")
    repository: str = Field(default="", description="owner/name slug on the source host")
    repository_url: str = Field(default="", description="Clone URL (derived from repository if empty)")
    main_branch: str = Field(default="main")

    # ── Triggers ─────────────────────────────────────────────────
    schedule_cron: str = Field(default="10 3 * * *")
    paths_ignore: list[str] = Field(default_factory=lambda: list(DEFAULT_PATHS_IGNORE))

    # ── Run environment ──────────────────────────────────────────
    build_reason: str = Field(default="Schedule", description="Value of BUILD_REASON in every stage")
    executor: ExecutorKind = Field(default=ExecutorKind.CONTAINER)
    container_image: str = Field(default="debian:10.3")
    container_runtime: str = Field(default="docker")
    workspace_dir: Path = Field(default=Path("workspace"))
    home_dir: Path = Field(default=Path("home"))
    command_timeout_seconds: int = Field(default=4 * 3600, ge=1)

    # ── Toolchain ────────────────────────────────────────────────
    toolchain_channel: str = Field(default="stable")
    toolchain_profile: str = Field(default="minimal")
    toolchain_components: list[str] = Field(default_factory=lambda: ["rustfmt"])

    # ── Cache ────────────────────────────────────────────────────
    cache_dir: Path = Field(default=Path(".nightshift/cache"))
    platform_label: str = Field(default="debian10.3")
    cache_schema_version: str = Field(default="2")
    runner_os: str = Field(default="Linux")
    lock_file_pattern: str = Field(default="**/Cargo.lock")
    cache_kind: str = Field(default="cargo")

    # ── Publishing ───────────────────────────────────────────────
    artifact_prefix: str = Field(default="project")
    release_tag: str = Field(default="nightly")
    token_secret: str = Field(default="GITHUB_TOKEN")
    api_url: str = Field(default="https://api.github.com")
    upload_url: str = Field(default="https://uploads.github.com")
    http_timeout_seconds: float = Field(default=300.0, gt=0)

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="auto", description="json, console or auto")

    @field_validator("log_format")
    @classmethod
    def _check_log_format(cls, value: str) -> str:
        value = value.lower()
        if value not in ("json", "console", "auto"):
            raise ValueError(f"log_format must be json, console or auto, got {value!r}")
        return value

    @field_validator("repository")
    @classmethod
    def _check_repository(cls, value: str) -> str:
        if value and value.count("/") != 1:
            raise ValueError(f"repository must look like 'owner/name', got {value!r}")
        return value

    # ── Derived properties ───────────────────────────────────────

    @property
    def clone_url(self) -> str:
        if self.repository_url:
            return self.repository_url
        if self.repository:
            return f"https://github.com/{self.repository}.git"
        return ""

    @property
    def artifact_pattern(self) -> str:
        p = self.artifact_prefix
        return f"{p}-*.deb;{p}-*.xz;{p}-*.tar.gz"

    @property
    def json_logs(self) -> bool | None:
        if self.log_format == "auto":
            return None
        return self.log_format == "json"


# ── Settings factory with caching ────────────────────────────────────────

_settings_cache: dict[str, NightshiftSettings] = {}


def get_settings(*, _force_reload: bool = False) -> NightshiftSettings:
    """Load, validate, and cache a :class:`NightshiftSettings` instance."""
    if not _force_reload and "default" in _settings_cache:
        return _settings_cache["default"]
    settings = NightshiftSettings()
    _settings_cache["default"] = settings
    return settings


def clear_settings_cache() -> None:
    """Clear the settings cache (primarily for testing)."""
    _settings_cache.clear()

"""The nightly continuous pipeline: one fixed project on one platform image.

Manifesto:
    Ten stages, strictly in order, on one clean container per Run.  The
    stage catalog below is the only place the order is written down; the
    runner just iterates it.

ARCHITECTURE
────────────
::

     1 trigger              action  record the admitted decision
     2 prepare-environment  shell   noninteractive debconf, apt update, git, curl
     3 fetch-source         action  shallow checkout + submodules, tags, unshallow
     4 install-toolchain    action  rustup stable, minimal profile, rustfmt
     5 restore-cache        action  ~/.cargo/registry, ~/.cargo/git, target  (non-fatal)
     6 install-system-deps  shell   ./get-deps
     7 build                shell   cargo build --all --release
     8 test                 shell   cargo test --all --release
     9 package              shell   bash ci/deploy.sh
    10 publish              action  upload project-*.{deb,xz,tar.gz} to "nightly"  (token)

    on success: save-cache

    Every command sees BUILD_REASON=Schedule and $HOME/.cargo/bin on PATH.
    Only ``publish`` receives the release token.

Example::

    from nightshift.pipelines import build_nightly_pipeline

    pipeline = build_nightly_pipeline(get_settings())
    print(pipeline.stage_names())

Tags:
    nightshift, pipelines, nightly, catalog

Doc-Types:
    api-reference
"""

from __future__ import annotations

from nightshift.cache.manager import RESTORE_STAGE, CacheManager
from nightshift.core.config import NightshiftSettings, get_settings
from nightshift.core.errors import ErrorCategory
from nightshift.orchestration.pipeline import Pipeline
from nightshift.orchestration.stage_types import Stage
from nightshift.orchestration.triggers import PushTrigger, ScheduledTrigger, TriggerRule
from nightshift.pipelines.actions import CheckoutAction, RustToolchainAction, record_trigger
from nightshift.publish.release import ReleasePublisher

TOOLCHAIN_BIN = "$HOME/.cargo/bin"

NIGHTLY_STAGE_ORDER = (
    "trigger",
    "prepare-environment",
    "fetch-source",
    "install-toolchain",
    RESTORE_STAGE,
    "install-system-deps",
    "build",
    "test",
    "package",
    "publish",
)

PREPARE_COMMANDS = (
    "echo 'debconf debconf/frontend select Noninteractive' | debconf-set-selections",
    "apt update",
    "apt-get install -y git",
    "apt-get install -y curl",
)


def nightly_triggers(settings: NightshiftSettings) -> list[TriggerRule]:
    return [
        ScheduledTrigger(settings.schedule_cron),
        PushTrigger(branches=(settings.main_branch,), paths_ignore=tuple(settings.paths_ignore)),
    ]


def build_nightly_pipeline(
    settings: NightshiftSettings | None = None,
    *,
    cache_manager: CacheManager | None = None,
    publisher: ReleasePublisher | None = None,
) -> Pipeline:
    """Assemble the ten-stage nightly pipeline from ``settings``.

    Args:
        settings: Defaults to ``get_settings()``
        cache_manager: Override the cache manager (tests use a temp store)
        publisher: Override the publisher (tests inject an httpx transport)
    """
    settings = settings or get_settings()
    cache_manager = cache_manager or CacheManager.from_settings(settings)
    publisher = publisher or ReleasePublisher.from_settings(settings)

    stages = [
        Stage.action(
            "trigger",
            record_trigger,
            description="Record the admitted trigger decision",
        ),
        Stage.shell(
            "prepare-environment",
            PREPARE_COMMANDS,
            category=ErrorCategory.ENVIRONMENT,
            description="Non-interactive package manager, index refresh, git and curl",
        ),
        Stage.action(
            "fetch-source",
            CheckoutAction(settings.clone_url, default_ref=settings.main_branch),
            category=ErrorCategory.FETCH,
            description="Shallow checkout with submodules, then all tags and full history",
        ),
        Stage.action(
            "install-toolchain",
            RustToolchainAction(
                settings.toolchain_channel,
                profile=settings.toolchain_profile,
                components=settings.toolchain_components,
            ),
            category=ErrorCategory.TOOLCHAIN,
            description=f"Toolchain {settings.toolchain_channel} ({settings.toolchain_profile})",
        ),
        Stage.action(
            cache_manager.restore_stage,
            cache_manager,
            fatal=False,
            category=ErrorCategory.CACHE,
            description="Restore " + ", ".join(cache_manager.paths),
        ),
        Stage.shell(
            "install-system-deps",
            [" env PATH=$PATH ./get-deps"],
            category=ErrorCategory.ENVIRONMENT,
        ),
        Stage.shell("build", ["cargo build --all --release"], category=ErrorCategory.BUILD),
        Stage.shell("test", ["cargo test --all --release"], category=ErrorCategory.TEST),
        Stage.shell("package", ["bash ci/deploy.sh"], category=ErrorCategory.PACKAGING),
        Stage.action(
            "publish",
            publisher,
            secrets=[publisher.token_secret],
            category=ErrorCategory.PUBLISH,
            description=f"Upload {publisher.pattern} to release {publisher.tag!r}",
        ),
    ]

    return Pipeline(
        name=settings.pipeline_name,
        stages=stages,
        triggers=nightly_triggers(settings),
        env={"BUILD_REASON": settings.build_reason},
        path_prepend=(TOOLCHAIN_BIN,),
        post_success=[("save-cache", cache_manager.save)],
        description=f"Nightly build on {settings.container_image}",
    )


__all__ = [
    "NIGHTLY_STAGE_ORDER",
    "PREPARE_COMMANDS",
    "TOOLCHAIN_BIN",
    "build_nightly_pipeline",
    "nightly_triggers",
]

"""Built-in action stages.

Actions are the stages whose commands depend on the Run (the commit to
check out) or that talk to an API instead of a shell (cache, release).
Each is a callable ``(ctx, stage) -> StageResult`` and is registered under
the name a YAML pipeline refers to it by:

    ==================  ==========================================
    ``trigger``         record the admitted trigger decision
    ``checkout``        shallow checkout, then tags and unshallow
    ``rust-toolchain``  pinned toolchain, minimal profile, override
    ``cache-restore``   restore the dependency/build cache
    ``publish-release`` upload artifacts to the release channel
    ==================  ==========================================
"""

from __future__ import annotations

import shlex
from collections.abc import Callable, Mapping, Sequence
from typing import TYPE_CHECKING, Any

from nightshift.cache.manager import RESTORE_STAGE, CacheManager
from nightshift.cache.store import CARGO_CACHE_PATHS
from nightshift.core.errors import ConfigError, ErrorCategory, PipelineDefinitionError
from nightshift.orchestration.stage_result import StageResult
from nightshift.orchestration.stage_types import StageHandler
from nightshift.publish.release import ReleasePublisher

if TYPE_CHECKING:
    from nightshift.core.config import NightshiftSettings
    from nightshift.orchestration.run_context import RunContext
    from nightshift.orchestration.stage_types import Stage


def record_trigger(ctx: RunContext, stage: Stage) -> StageResult:
    """First stage of every Run: make the admitted decision part of the record."""
    decision = ctx.run.decision
    output: dict[str, Any] = {
        "kind": ctx.run.trigger_kind.value,
        "commit": ctx.run.commit_ref,
        "timestamp": ctx.run.timestamp.isoformat(),
    }
    if decision is not None:
        output["reason"] = decision.reason
    return StageResult.ok(output)


class CheckoutAction:
    """Check out the Run's commit with submodules, then backfill tags and history.

    The workspace persists between Runs, so after the checkout it is reset
    and every untracked or ignored file is removed, including archives an
    earlier Run packaged. The initial fetch is depth 1; packaging needs every
    tag and the full commit history to compute version strings, so the
    action fetches all tags with an explicit refspec and then unshallows the
    clone.
    """

    def __init__(
        self,
        repository_url: str,
        *,
        default_ref: str = "main",
        submodules: bool = True,
        fetch_tags: bool = True,
        unshallow: bool = True,
        clean: bool = True,
    ):
        self.repository_url = repository_url
        self.default_ref = default_ref
        self.submodules = submodules
        self.fetch_tags = fetch_tags
        self.unshallow = unshallow
        self.clean = clean

    def commands(self, ref: str | None = None) -> list[str]:
        ref = ref or self.default_ref
        url = shlex.quote(self.repository_url)
        commands = [
            "git init -q .",
            f"git remote add origin {url} 2>/dev/null || git remote set-url origin {url}",
            f"git fetch --no-tags --prune --depth=1 origin {shlex.quote(ref)}",
            "git checkout --force --detach FETCH_HEAD",
        ]
        if self.clean:
            commands += ["git reset --hard HEAD", "git clean -ffdx"]
        if self.submodules:
            commands += [
                "git submodule sync --recursive",
                "git submodule update --init --force --depth=1 --recursive",
            ]
            if self.clean:
                commands.append(
                    "git submodule foreach --recursive 'git reset --hard HEAD && git clean -ffdx'"
                )
        if self.fetch_tags:
            commands.append("git fetch --depth=1 origin +refs/tags/*:refs/tags/*")
        if self.unshallow:
            commands.append("git fetch --prune --unshallow")
        return commands

    def __call__(self, ctx: RunContext, stage: Stage) -> StageResult:
        if not self.repository_url:
            raise ConfigError("No repository URL configured (NIGHTSHIFT_REPOSITORY)")
        result = ctx.run_commands(self.commands(ctx.run.commit_ref), stage, ErrorCategory.FETCH)
        if result.success:
            result.output["ref"] = ctx.run.commit_ref or self.default_ref
        return result


class RustToolchainAction:
    """Install a pinned toolchain and make it the active one for the workspace.

    Idempotent: with a toolchain already present (for example restored
    into ``$HOME``) ``rustup`` only verifies it.
    """

    RUSTUP_INIT = (
        "command -v rustup >/dev/null 2>&1 || "
        "curl --proto '=https' --tlsv1.2 -sSf https://sh.rustup.rs | "
        "sh -s -- -y --no-modify-path --profile minimal --default-toolchain none"
    )

    def __init__(
        self,
        channel: str = "stable",
        *,
        profile: str = "minimal",
        components: Sequence[str] = ("rustfmt",),
        override: bool = True,
    ):
        self.channel = channel
        self.profile = profile
        self.components = tuple(components)
        self.override = override

    def commands(self) -> list[str]:
        install = f"rustup toolchain install {shlex.quote(self.channel)} --profile {self.profile}"
        for component in self.components:
            install += f" --component {shlex.quote(component)}"
        commands = [self.RUSTUP_INIT, install]
        if self.override:
            commands.append(f"rustup override set {shlex.quote(self.channel)}")
        commands.append("rustc --version")
        return commands

    def __call__(self, ctx: RunContext, stage: Stage) -> StageResult:
        result = ctx.run_commands(self.commands(), stage, ErrorCategory.TOOLCHAIN)
        if result.success:
            result.output["toolchain"] = self.channel
        return result


# =============================================================================
# Registry
# =============================================================================

ActionFactory = Callable[["NightshiftSettings", Mapping[str, Any]], StageHandler]


def _checkout(settings: NightshiftSettings, params: Mapping[str, Any]) -> StageHandler:
    return CheckoutAction(
        params.get("repository_url", settings.clone_url),
        default_ref=params.get("ref", settings.main_branch),
        submodules=params.get("submodules", True),
        fetch_tags=params.get("fetch_tags", True),
        unshallow=params.get("unshallow", True),
        clean=params.get("clean", True),
    )


def _rust_toolchain(settings: NightshiftSettings, params: Mapping[str, Any]) -> StageHandler:
    return RustToolchainAction(
        params.get("channel", settings.toolchain_channel),
        profile=params.get("profile", settings.toolchain_profile),
        components=params.get("components", settings.toolchain_components),
        override=params.get("override", True),
    )


def _cache_restore(settings: NightshiftSettings, params: Mapping[str, Any]) -> StageHandler:
    # The manager is the handler; its ``save`` is the matching post-success hook.
    return CacheManager.from_settings(
        settings,
        paths=params.get("paths", CARGO_CACHE_PATHS),
        restore_stage=params.get("stage_name", RESTORE_STAGE),
    )


def _publish_release(settings: NightshiftSettings, params: Mapping[str, Any]) -> StageHandler:
    publisher = ReleasePublisher.from_settings(settings)
    if "pattern" in params:
        publisher.pattern = params["pattern"]
    if "tag" in params:
        publisher.tag = params["tag"]
    return publisher


BUILTIN_ACTIONS: dict[str, ActionFactory] = {
    "trigger": lambda settings, params: record_trigger,
    "checkout": _checkout,
    "rust-toolchain": _rust_toolchain,
    "cache-restore": _cache_restore,
    "publish-release": _publish_release,
}


def resolve_action(
    name: str,
    settings: NightshiftSettings,
    params: Mapping[str, Any] | None = None,
) -> StageHandler:
    """Build the handler for built-in action ``name``."""
    try:
        factory = BUILTIN_ACTIONS[name]
    except KeyError:
        known = ", ".join(sorted(BUILTIN_ACTIONS))
        raise PipelineDefinitionError(f"Unknown action {name!r} (known: {known})") from None
    return factory(settings, params or {})


__all__ = [
    "BUILTIN_ACTIONS",
    "CheckoutAction",
    "RustToolchainAction",
    "record_trigger",
    "resolve_action",
]

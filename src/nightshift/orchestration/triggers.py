"""Trigger Evaluator — decide whether an incoming event starts a Run.

Manifesto:
    Trigger rules are pure data and their evaluation is a pure function, so
    the question "would this push have built?" can be answered in a unit
    test without a container, a checkout or a clock.  A rejected event is
    not an error: it simply produces no Run and no record.

ARCHITECTURE
────────────
::

    TriggerRule (tagged variant)
      ├── ScheduledTrigger(cron)                     "10 3 * * *"
      └── PushTrigger(branches, paths_ignore)        main, [docs/**, **/*.md, ...]

    Event
      ├── ScheduleTick(at, cron)
      └── PushEvent(branch, changed_files, commit)

    evaluate_trigger(rules, event) -> TriggerDecision(admitted, kind, reason)

    push admitted  ⇔  branch matches  AND  NOT every changed file is ignored

Example::

    rules = [
        ScheduledTrigger("10 3 * * *"),
        PushTrigger(branches=("main",), paths_ignore=("docs/**", "**/*.md")),
    ]
    evaluate_trigger(rules, PushEvent("main", ["docs/readme.md"])).admitted        # False
    evaluate_trigger(rules, PushEvent("main", ["docs/readme.md", "src/main.rs"])).admitted  # True

Tags:
    nightshift, orchestration, triggers, cron, path-filter

Doc-Types:
    api-reference
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

from croniter import croniter

from nightshift.core.errors import PipelineDefinitionError
from nightshift.core.globs import glob_match, match_any, normalize_path


class TriggerKind(str, Enum):
    """What started a Run."""

    SCHEDULED = "scheduled"
    PUSH = "push"


def normalize_branch(ref: str) -> str:
    """``refs/heads/main`` → ``main``; bare names pass through."""
    prefix = "refs/heads/"
    return ref[len(prefix):] if ref.startswith(prefix) else ref


# =============================================================================
# Events
# =============================================================================


@dataclass(frozen=True)
class ScheduleTick:
    """A scheduler tick for a cron expression at time ``at``."""

    at: datetime
    cron: str | None = None

    @property
    def kind(self) -> TriggerKind:
        return TriggerKind.SCHEDULED


@dataclass(frozen=True)
class PushEvent:
    """A push to ``branch`` touching ``changed_files``."""

    branch: str
    changed_files: tuple[str, ...] = ()
    commit: str | None = None

    def __init__(
        self,
        branch: str,
        changed_files: Iterable[str] = (),
        commit: str | None = None,
    ):
        object.__setattr__(self, "branch", normalize_branch(branch))
        object.__setattr__(self, "changed_files", tuple(normalize_path(p) for p in changed_files))
        object.__setattr__(self, "commit", commit)

    @property
    def kind(self) -> TriggerKind:
        return TriggerKind.PUSH


Event = ScheduleTick | PushEvent


# =============================================================================
# Rules
# =============================================================================


@dataclass(frozen=True)
class ScheduledTrigger:
    """Admit scheduler ticks that fall on the cron expression."""

    cron: str

    def __post_init__(self):
        if not croniter.is_valid(self.cron):
            raise PipelineDefinitionError(f"Invalid cron expression: {self.cron!r}")

    @property
    def kind(self) -> TriggerKind:
        return TriggerKind.SCHEDULED

    def matches(self, tick: ScheduleTick) -> bool:
        if tick.cron is not None and tick.cron.split() != self.cron.split():
            return False
        at = tick.at if tick.at.tzinfo is not None else tick.at.replace(tzinfo=UTC)
        return bool(croniter.match(self.cron, at.replace(second=0, microsecond=0)))

    def next_fire(self, after: datetime | None = None) -> datetime:
        """Next time this schedule fires strictly after ``after`` (UTC)."""
        after = after or datetime.now(UTC)
        if after.tzinfo is None:
            after = after.replace(tzinfo=UTC)
        return croniter(self.cron, after).get_next(datetime)

    def previous_fire(self, before: datetime | None = None) -> datetime:
        """Most recent fire time at or before ``before`` (UTC)."""
        before = before or datetime.now(UTC)
        if before.tzinfo is None:
            before = before.replace(tzinfo=UTC)
        # croniter's get_prev is exclusive; step one second past a boundary
        return croniter(self.cron, before + timedelta(seconds=1)).get_prev(datetime)

    def to_dict(self) -> dict[str, Any]:
        return {"schedule": {"cron": self.cron}}


@dataclass(frozen=True)
class PushTrigger:
    """Admit pushes to matching branches that touch at least one non-ignored path."""

    branches: tuple[str, ...] = ("main",)
    paths_ignore: tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self):
        object.__setattr__(self, "branches", tuple(normalize_branch(b) for b in self.branches))
        object.__setattr__(self, "paths_ignore", tuple(self.paths_ignore))
        if not self.branches:
            raise PipelineDefinitionError("Push trigger needs at least one branch filter")

    @property
    def kind(self) -> TriggerKind:
        return TriggerKind.PUSH

    def branch_matches(self, branch: str) -> bool:
        branch = normalize_branch(branch)
        return any(glob_match(branch, pattern) for pattern in self.branches)

    def ignored_files(self, changed_files: Sequence[str]) -> list[str]:
        return [f for f in changed_files if match_any(f, self.paths_ignore)]

    def matches(self, event: PushEvent) -> bool:
        if not self.branch_matches(event.branch):
            return False
        # An empty change set is trivially a subset of the exclusions.
        return any(not match_any(f, self.paths_ignore) for f in event.changed_files)

    def to_dict(self) -> dict[str, Any]:
        return {"push": {"branches": list(self.branches), "paths_ignore": list(self.paths_ignore)}}


TriggerRule = ScheduledTrigger | PushTrigger


# =============================================================================
# Evaluation
# =============================================================================


@dataclass(frozen=True)
class TriggerDecision:
    """Outcome of evaluating one event against the pipeline's rules."""

    admitted: bool
    kind: TriggerKind
    reason: str
    event: Event | None = None

    @property
    def commit(self) -> str | None:
        return self.event.commit if isinstance(self.event, PushEvent) else None

    def to_dict(self) -> dict[str, Any]:
        return {"admitted": self.admitted, "kind": self.kind.value, "reason": self.reason}


def evaluate_trigger(rules: Iterable[TriggerRule], event: Event) -> TriggerDecision:
    """Return whether ``event`` starts a Run under ``rules``.

    Pure function: no I/O, no clock reads.
    """
    rules = list(rules)

    if isinstance(event, ScheduleTick):
        for rule in rules:
            if isinstance(rule, ScheduledTrigger) and rule.matches(event):
                return TriggerDecision(True, TriggerKind.SCHEDULED, f"schedule {rule.cron!r}", event)
        return TriggerDecision(False, TriggerKind.SCHEDULED, "no schedule matches tick", event)

    push_rules = [r for r in rules if isinstance(r, PushTrigger)]
    if not push_rules:
        return TriggerDecision(False, TriggerKind.PUSH, "pipeline has no push trigger", event)

    for rule in push_rules:
        if not rule.branch_matches(event.branch):
            continue
        if rule.matches(event):
            return TriggerDecision(True, TriggerKind.PUSH, f"push to {event.branch}", event)
        return TriggerDecision(
            False, TriggerKind.PUSH, "all changed files match paths-ignore", event
        )
    return TriggerDecision(False, TriggerKind.PUSH, f"branch {event.branch!r} not filtered in", event)


__all__ = [
    "TriggerKind",
    "ScheduleTick",
    "PushEvent",
    "Event",
    "ScheduledTrigger",
    "PushTrigger",
    "TriggerRule",
    "TriggerDecision",
    "evaluate_trigger",
    "normalize_branch",
]

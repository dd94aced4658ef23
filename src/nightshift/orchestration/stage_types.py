"""Stage Types — the typed units a pipeline is made of.

Manifesto:
A Pipeline is an ordered list of Stages.  A stage is either a list of
shell commands (``apt update``, ``cargo build --all --release``) run by
the Run's command executor, or an action: a Python handler for the few
stages that need decisions or APIs (cache restore, release upload).
Either way it carries the same metadata: a name, extra environment,
whether a failure is fatal to the Run, and which secrets it may see.

ARCHITECTURE
────────────
::

    Stage
      ├── .shell(name, commands, env=..., category=...)   ── bash commands
      └── .action(name, handler, secrets=..., fatal=...)  ── Python handler

    StageType      ── enum: SHELL, ACTION
    StageHandler   ── (ctx: RunContext, stage: Stage) -> StageResult

Related modules:
    stage_result.py  — StageResult returned by every stage
    pipeline.py      — Pipeline that contains the stages
    runner.py        — executes stages in order

Example::

    from nightshift.orchestration import Stage
    from nightshift.core.errors import ErrorCategory

    build = Stage.shell(
        "build",
        ["cargo build --all --release"],
        category=ErrorCategory.BUILD,
    )

Tags:
    nightshift, orchestration, stage-types, shell, action

Doc-Types:
    api-reference
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from nightshift.core.errors import ErrorCategory

if TYPE_CHECKING:
    from nightshift.orchestration.run_context import RunContext
    from nightshift.orchestration.stage_result import StageResult


class StageType(str, Enum):
    """Type of pipeline stage."""

    SHELL = "shell"
    ACTION = "action"


StageHandler = Callable[["RunContext", "Stage"], "StageResult"]


@dataclass(frozen=True)
class Stage:
    """
    A single stage within a pipeline.

    Use the factory methods ``Stage.shell()`` and ``Stage.action()``
    instead of constructing directly.

    Attributes:
        name: Unique stage name within the pipeline
        stage_type: SHELL or ACTION
        commands: Shell commands, run in order (SHELL only)
        handler: Python handler (ACTION only)
        env: Extra environment on top of the pipeline environment
        fatal: Whether a failure aborts the Run
        secrets: Names of secrets this stage is allowed to receive
        category: Error category reported when a command fails
        timeout_seconds: Per-command timeout override
        description: Human-readable summary
    """

    name: str
    stage_type: StageType
    commands: tuple[str, ...] = ()
    handler: StageHandler | None = None
    env: Mapping[str, str] = field(default_factory=dict)
    fatal: bool = True
    secrets: tuple[str, ...] = ()
    category: ErrorCategory = ErrorCategory.INTERNAL
    timeout_seconds: float | None = None
    description: str = ""

    def __post_init__(self):
        if not self.name:
            raise ValueError("Stage name must not be empty")
        if self.stage_type == StageType.SHELL and not self.commands:
            raise ValueError(f"Shell stage {self.name!r} has no commands")
        if self.stage_type == StageType.ACTION and self.handler is None:
            raise ValueError(f"Action stage {self.name!r} has no handler")

    # =========================================================================
    # Factory Methods
    # =========================================================================

    @classmethod
    def shell(
        cls,
        name: str,
        commands: Sequence[str],
        *,
        env: Mapping[str, str] | None = None,
        fatal: bool = True,
        secrets: Sequence[str] = (),
        category: ErrorCategory = ErrorCategory.INTERNAL,
        timeout_seconds: float | None = None,
        description: str = "",
    ) -> Stage:
        """
        Create a shell stage.

        Args:
            name: Unique stage name within the pipeline
            commands: Commands run in order; the first non-zero exit fails the stage
            env: Extra environment variables
            fatal: Whether a failure aborts the Run
            secrets: Secrets exported as environment variables to these commands
            category: Error category reported on failure
            timeout_seconds: Per-command timeout override
            description: Human-readable summary
        """
        return cls(
            name=name,
            stage_type=StageType.SHELL,
            commands=tuple(commands),
            env=dict(env or {}),
            fatal=fatal,
            secrets=tuple(secrets),
            category=category,
            timeout_seconds=timeout_seconds,
            description=description,
        )

    @classmethod
    def action(
        cls,
        name: str,
        handler: StageHandler,
        *,
        env: Mapping[str, str] | None = None,
        fatal: bool = True,
        secrets: Sequence[str] = (),
        category: ErrorCategory = ErrorCategory.INTERNAL,
        description: str = "",
    ) -> Stage:
        """
        Create an action stage (Python handler).

        Args:
            name: Unique stage name within the pipeline
            handler: Function (ctx, stage) -> StageResult
            env: Extra environment for any commands the handler runs
            fatal: Whether a failure aborts the Run
            secrets: Secrets made available through ``ctx.secret(name)``
            category: Error category reported for unexpected exceptions
            description: Human-readable summary
        """
        return cls(
            name=name,
            stage_type=StageType.ACTION,
            handler=handler,
            env=dict(env or {}),
            fatal=fatal,
            secrets=tuple(secrets),
            category=category,
            description=description,
        )

    # =========================================================================
    # Utilities
    # =========================================================================

    def to_dict(self) -> dict[str, Any]:
        """Serialize for plans and reports (handlers are not serialized)."""
        result: dict[str, Any] = {
            "name": self.name,
            "type": self.stage_type.value,
            "fatal": self.fatal,
            "category": self.category.value,
        }
        if self.commands:
            result["commands"] = list(self.commands)
        if self.env:
            result["env"] = dict(self.env)
        if self.secrets:
            result["secrets"] = list(self.secrets)
        if self.description:
            result["description"] = self.description
        return result

    def __repr__(self) -> str:
        if self.stage_type == StageType.SHELL:
            return f"Stage.shell({self.name!r}, {len(self.commands)} commands)"
        return f"Stage.action({self.name!r}, <handler>)"

"""
Run Context - the Run record and the context handed stage-to-stage.

A ``Run`` exists only because the trigger evaluator admitted an event; it
carries the trigger kind, the commit reference and the start timestamp.

``RunContext`` is what every stage receives.  It bundles the Run, the
directories the stages work in, the command executor, the pipeline
environment and the outputs of the stages that already completed.  Like
the outputs it exposes, it is never mutated in place: the runner builds a
new context after each stage with ``with_output()``.

Secrets are the exception to "everything is visible": the runner copies
into the context only the secrets the *current* stage declared, so a
handler calling ``ctx.secret("GITHUB_TOKEN")`` from any stage but the
publisher raises ``SecretError``.

Example:
    def restore(ctx: RunContext, stage: Stage) -> StageResult:
        key = ctx.get_output("trigger", "kind")
        result = ctx.run_command("ls target", stage)
        ...

Manifesto:
    Stages must not reach around each other.  Reading the previous
    stage's output through the context keeps the data flow explicit and
    keeps every stage testable with a hand-built context.

Tags:
    nightshift, orchestration, context, run, secrets

Doc-Types:
    api-reference
"""

from __future__ import annotations

import copy
import uuid
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from nightshift.core.errors import ErrorCategory, ExecutorError, SecretError
from nightshift.core.logging import get_logger
from nightshift.core.secrets import SecretValue
from nightshift.orchestration.stage_result import StageResult
from nightshift.orchestration.triggers import TriggerDecision, TriggerKind

logger = get_logger(__name__)

if TYPE_CHECKING:
    from nightshift.execution.executor import CommandExecutor, CommandResult
    from nightshift.orchestration.stage_types import Stage


@dataclass(frozen=True)
class Run:
    """One execution instance of the pipeline."""

    run_id: str
    trigger_kind: TriggerKind
    commit_ref: str | None
    timestamp: datetime
    decision: TriggerDecision | None = None

    @classmethod
    def from_decision(
        cls,
        decision: TriggerDecision,
        *,
        commit_ref: str | None = None,
        run_id: str | None = None,
        timestamp: datetime | None = None,
    ) -> Run:
        """Create a Run from an *admitted* trigger decision."""
        if not decision.admitted:
            raise ValueError(f"Cannot create a Run from a rejected event: {decision.reason}")
        return cls(
            run_id=run_id or uuid.uuid4().hex,
            trigger_kind=decision.kind,
            commit_ref=commit_ref or decision.commit,
            timestamp=timestamp or datetime.now(UTC),
            decision=decision,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "trigger_kind": self.trigger_kind.value,
            "commit_ref": self.commit_ref,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class RunContext:
    """
    Context that flows through the stages of one Run.

    Attributes:
        run: The Run being executed
        pipeline_name: Name of the pipeline
        workspace: Working copy directory (cwd of every command)
        home: ``$HOME`` for every command (toolchain and dependency caches)
        executor: Runs shell commands for this Run
        env: Pipeline environment exported to every command
        path_prepend: Directories prepended to ``PATH``
        outputs: Stage outputs keyed by stage name
        dry_run: When True, commands are logged, not executed
    """

    run: Run
    pipeline_name: str
    workspace: Path
    home: Path
    executor: CommandExecutor | None = None
    env: Mapping[str, str] = field(default_factory=dict)
    path_prepend: tuple[str, ...] = ()
    outputs: dict[str, dict[str, Any]] = field(default_factory=dict)
    dry_run: bool = False
    secrets: Mapping[str, SecretValue] = field(default_factory=dict, repr=False)

    @property
    def run_id(self) -> str:
        return self.run.run_id

    # =========================================================================
    # Accessors
    # =========================================================================

    def get_output(self, stage_name: str, key: str | None = None, default: Any = None) -> Any:
        """Output of a prior stage, or one key of it."""
        stage_output = self.outputs.get(stage_name, {})
        if key is None:
            return stage_output if stage_output else default
        return stage_output.get(key, default)

    def has_output(self, stage_name: str) -> bool:
        return stage_name in self.outputs

    def secret(self, name: str) -> SecretValue:
        """A secret granted to the current stage.

        Raises:
            SecretError: If the current stage did not declare ``name``
        """
        try:
            return self.secrets[name]
        except KeyError:
            raise SecretError(name, f"Secret {name!r} is not available to this stage") from None

    def stage_env(self, stage: Stage) -> dict[str, str]:
        """Environment for commands of ``stage``: pipeline env, stage env, granted secrets."""
        env = {**self.env, **stage.env}
        for name in stage.secrets:
            if name in self.secrets:
                env[name] = self.secrets[name].get_secret()
        return env

    # =========================================================================
    # Commands
    # =========================================================================

    def run_command(self, command: str, stage: Stage) -> CommandResult:
        """Run one command with the stage's environment."""
        if self.executor is None:
            raise ExecutorError("RunContext has no command executor")
        return self.executor.run(
            command,
            self.stage_env(stage),
            path_prepend=self.path_prepend,
            timeout=stage.timeout_seconds,
        )

    def run_commands(
        self,
        commands: Sequence[str],
        stage: Stage,
        category: ErrorCategory | None = None,
    ) -> StageResult:
        """Run ``commands`` in order; the first failure fails the stage.

        The output records every command that ran, with the tail of the
        combined output for the one that failed.
        """
        records: list[dict[str, Any]] = []
        for command in commands:
            logger.info("command.start", command=command)
            outcome = self.run_command(command, stage)
            records.append(
                {
                    "command": command,
                    "exit_code": outcome.exit_code,
                    "duration_seconds": round(outcome.duration_seconds, 3),
                }
            )
            if not outcome.ok:
                records[-1]["output_tail"] = outcome.output_tail()
                if outcome.timed_out:
                    failed_category = ErrorCategory.TIMEOUT
                else:
                    failed_category = category or stage.category
                return StageResult.fail(
                    error=outcome.error or f"Command exited with status {outcome.exit_code}: {command}",
                    category=failed_category,
                    exit_code=outcome.exit_code,
                    output={"commands": records},
                )
            logger.debug("command.complete", command=command, duration_seconds=outcome.duration_seconds)
        return StageResult.ok({"commands": records})

    # =========================================================================
    # Mutation (returns new context)
    # =========================================================================

    def with_output(self, stage_name: str, output: dict[str, Any]) -> RunContext:
        """New context with ``stage_name``'s output added."""
        outputs = copy.deepcopy(self.outputs)
        outputs[stage_name] = output
        return replace(self, outputs=outputs)

    def with_secrets(self, secrets: Mapping[str, SecretValue]) -> RunContext:
        """New context holding exactly ``secrets``."""
        return replace(self, secrets=dict(secrets))

    def to_dict(self) -> dict[str, Any]:
        return {
            "run": self.run.to_dict(),
            "pipeline_name": self.pipeline_name,
            "workspace": str(self.workspace),
            "home": str(self.home),
            "outputs": self.outputs,
            "dry_run": self.dry_run,
        }

    def __repr__(self) -> str:
        return (
            f"RunContext(run_id={self.run_id!r}, "
            f"pipeline={self.pipeline_name!r}, "
            f"stages={list(self.outputs.keys())})"
        )

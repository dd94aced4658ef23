"""Pipeline Runner — executes a pipeline's stages, fail-fast, in order.

The PipelineRunner takes a :class:`~nightshift.orchestration.pipeline.Pipeline`
and an admitted :class:`~nightshift.orchestration.run_context.Run`, and
executes each stage strictly sequentially, passing a new
:class:`~nightshift.orchestration.run_context.RunContext` from stage to
stage.  It handles:

- **Shell** stages: each command goes to the Run's
  :class:`~nightshift.execution.executor.CommandExecutor`; the first
  non-zero exit fails the stage
- **Action** stages: the Python handler is called with the context
- **Fatal vs non-fatal** failures: a fatal failure stops the Run at once;
  a non-fatal one (cache restore) is recorded as *degraded* and the Run
  carries on
- **Secrets**: resolved and handed only to the stages that declare them,
  and redacted from every captured output
- **Post-success hooks** (cache save): run only when every stage succeeded
- **Dry run**: commands are reported, not executed; actions are not invoked

Example::

    from nightshift.orchestration import PipelineRunner, Run, evaluate_trigger

    decision = evaluate_trigger(pipeline.triggers, event)
    if decision.admitted:
        run = Run.from_decision(decision)
        result = PipelineRunner().execute(pipeline, run, executor=executor,
                                          workspace=workspace, home=home)
        if result.status == RunStatus.FAILED:
            print(f"Failed at {result.error_stage}: {result.error}")
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

from nightshift.core.errors import (
    ErrorCategory,
    NightshiftError,
    SecretError,
    categorize_error,
    error_for_category,
)
from nightshift.core.logging import LogContext, get_logger
from nightshift.core.secrets import SecretsResolver, SecretValue, redact
from nightshift.execution.executor import CommandExecutor
from nightshift.orchestration.pipeline import Pipeline
from nightshift.orchestration.run_context import Run, RunContext
from nightshift.orchestration.stage_result import StageResult
from nightshift.orchestration.stage_types import Stage, StageType
from nightshift.orchestration.triggers import Event, evaluate_trigger

logger = get_logger(__name__)

ExecutorFactory = Callable[[Run], AbstractContextManager[CommandExecutor]]


class RunStatus(str, Enum):
    """Overall status of a Run."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class StageExecution:
    """Result of executing a single stage."""

    stage_name: str
    stage_type: str
    status: str  # "completed", "failed", "degraded"
    started_at: datetime | None = None
    completed_at: datetime | None = None
    result: StageResult | None = None
    error: str | None = None
    failure: NightshiftError | None = None

    @property
    def duration_seconds(self) -> float | None:
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "stage_name": self.stage_name,
            "stage_type": self.stage_type,
            "status": self.status,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
            "error": self.error,
            "error_category": self.result.error_category if self.result else None,
            "error_type": type(self.failure).__name__ if self.failure else None,
            "output": self.result.output if self.result else None,
        }


@dataclass
class PipelineResult:
    """Result of executing one Run of a pipeline."""

    pipeline_name: str
    run: Run
    status: RunStatus
    context: RunContext
    started_at: datetime
    completed_at: datetime | None = None
    stage_executions: list[StageExecution] = field(default_factory=list)
    error_stage: str | None = None
    error: str | None = None
    error_category: str | None = None
    hook_errors: dict[str, str] = field(default_factory=dict)

    @property
    def run_id(self) -> str:
        return self.run.run_id

    @property
    def duration_seconds(self) -> float | None:
        if self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    @property
    def completed_stages(self) -> list[str]:
        """Stages that succeeded (degraded stages excluded)."""
        return [s.stage_name for s in self.stage_executions if s.status == "completed"]

    @property
    def failed_stages(self) -> list[str]:
        return [s.stage_name for s in self.stage_executions if s.status == "failed"]

    @property
    def degraded_stages(self) -> list[str]:
        """Non-fatal stages that failed without stopping the Run."""
        return [s.stage_name for s in self.stage_executions if s.status == "degraded"]

    @property
    def published_artifacts(self) -> list[str]:
        """Artifact names uploaded by this Run (empty unless it completed)."""
        if self.status != RunStatus.COMPLETED:
            return []
        published: list[str] = []
        for execution in self.stage_executions:
            if execution.status == "completed" and execution.result:
                published.extend(execution.result.output.get("published", []))
        return published

    @property
    def failure(self) -> NightshiftError | None:
        """Typed error of the stage that stopped the Run, if any."""
        for execution in self.stage_executions:
            if execution.status == "failed":
                return execution.failure
        return None

    def raise_for_status(self) -> None:
        """Raise the failing stage's typed error if the Run failed.

        Raises:
            StageError: For stage failures (``BuildError``, ``TestError``, ...)
            NightshiftError: ``CommandTimeoutError``, ``ConfigError`` and the
                other non-stage categories
        """
        if self.status == RunStatus.FAILED and self.failure is not None:
            raise self.failure

    def to_dict(self) -> dict[str, Any]:
        return {
            "pipeline_name": self.pipeline_name,
            "run": self.run.to_dict(),
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
            "completed_stages": self.completed_stages,
            "failed_stages": self.failed_stages,
            "degraded_stages": self.degraded_stages,
            "published_artifacts": self.published_artifacts,
            "error_stage": self.error_stage,
            "error": self.error,
            "error_category": self.error_category,
            "hook_errors": self.hook_errors,
            "stage_executions": [s.to_dict() for s in self.stage_executions],
        }


class PipelineRunner:
    """Executes pipelines stage by stage.

    A stage starts only after its predecessor exited successfully (or, for
    a non-fatal stage, exited at all).  There are no retries.
    """

    def __init__(
        self,
        secrets: SecretsResolver | None = None,
        dry_run: bool = False,
    ) -> None:
        """Initialise the runner.

        Args:
            secrets: Resolves secrets declared by stages. Defaults to
                environment variables then ``/run/secrets`` files.
            dry_run: If ``True``, commands are logged and not executed.
        """
        self._secrets = secrets or SecretsResolver()
        self._dry_run = dry_run

    @property
    def dry_run(self) -> bool:
        return self._dry_run

    # =========================================================================
    # Entry points
    # =========================================================================

    def dispatch(
        self,
        pipeline: Pipeline,
        event: Event,
        *,
        executor_factory: ExecutorFactory,
        workspace: Path,
        home: Path,
    ) -> PipelineResult | None:
        """Evaluate ``event`` and execute the pipeline if it is admitted.

        Returns ``None`` for a rejected event: no Run is created and the
        executor factory is never called.
        """
        decision = evaluate_trigger(pipeline.triggers, event)
        if not decision.admitted:
            logger.info(
                "trigger.rejected",
                pipeline=pipeline.name,
                kind=decision.kind.value,
                reason=decision.reason,
            )
            return None

        run = Run.from_decision(decision)
        with executor_factory(run) as executor:
            return self.execute(pipeline, run, executor=executor, workspace=workspace, home=home)

    def execute(
        self,
        pipeline: Pipeline,
        run: Run,
        *,
        executor: CommandExecutor | None,
        workspace: Path,
        home: Path,
    ) -> PipelineResult:
        """
        Execute every stage of ``pipeline`` for ``run``.

        Args:
            pipeline: The pipeline to execute
            run: An admitted Run
            executor: Runs shell commands (may be ``None`` in dry-run mode)
            workspace: Working copy directory
            home: ``$HOME`` for commands

        Returns:
            PipelineResult with final status and context
        """
        context = RunContext(
            run=run,
            pipeline_name=pipeline.name,
            workspace=Path(workspace),
            home=Path(home),
            executor=executor,
            env=dict(pipeline.env),
            path_prepend=pipeline.path_prepend,
            dry_run=self._dry_run,
        )

        started_at = datetime.now(UTC)
        stage_executions: list[StageExecution] = []
        error_stage: str | None = None
        error_msg: str | None = None
        error_category: str | None = None
        final_status = RunStatus.COMPLETED
        hook_errors: dict[str, str] = {}

        with LogContext(pipeline=pipeline.name, run_id=run.run_id):
            logger.info(
                "pipeline.start",
                trigger=run.trigger_kind.value,
                commit=run.commit_ref,
                stage_count=len(pipeline.stages),
                dry_run=self._dry_run,
            )

            for stage in pipeline.stages:
                stage_exec = self._execute_stage(stage, context)
                stage_executions.append(stage_exec)

                if stage_exec.result is not None:
                    context = context.with_output(stage.name, stage_exec.result.output)

                if stage_exec.status == "failed":
                    error_stage = stage.name
                    error_msg = stage_exec.error
                    error_category = stage_exec.result.error_category if stage_exec.result else None
                    final_status = RunStatus.FAILED
                    break

            if final_status == RunStatus.COMPLETED and not self._dry_run:
                hook_errors = self._run_post_success(pipeline, context)

            completed_at = datetime.now(UTC)
            result = PipelineResult(
                pipeline_name=pipeline.name,
                run=run,
                status=final_status,
                context=context.with_secrets({}),
                started_at=started_at,
                completed_at=completed_at,
                stage_executions=stage_executions,
                error_stage=error_stage,
                error=error_msg,
                error_category=error_category,
                hook_errors=hook_errors,
            )

            log = logger.info if final_status == RunStatus.COMPLETED else logger.error
            log(
                "pipeline.complete",
                status=final_status.value,
                duration_seconds=result.duration_seconds,
                completed_stages=len(result.completed_stages),
                degraded_stages=result.degraded_stages,
                error_stage=error_stage,
                published=len(result.published_artifacts),
            )
        return result

    # =========================================================================
    # Stages
    # =========================================================================

    def _execute_stage(self, stage: Stage, context: RunContext) -> StageExecution:
        """Execute a single stage; never raises."""
        started_at = datetime.now(UTC)
        granted: dict[str, SecretValue] = {}

        with LogContext(stage=stage.name):
            logger.info("stage.start", type=stage.stage_type.value, fatal=stage.fatal)
            try:
                granted = self._grant_secrets(stage)
                stage_context = context.with_secrets(granted)
                if stage.stage_type == StageType.SHELL:
                    result = self._execute_shell(stage, stage_context)
                elif stage.stage_type == StageType.ACTION:
                    result = self._execute_action(stage, stage_context)
                else:
                    result = StageResult.fail(f"Unknown stage type: {stage.stage_type}")
            except NightshiftError as e:
                result = StageResult.fail(error=e.message, category=e.category)
            except Exception as e:
                logger.exception("stage.exception", error=redact(str(e), granted.values()))
                category = categorize_error(e)
                if category == ErrorCategory.INTERNAL:
                    category = stage.category
                result = StageResult.fail(error=str(e), category=category)

            result = _redact_result(result, granted.values())
            completed_at = datetime.now(UTC)
            failure = None
            if not result.success:
                failure = error_for_category(
                    result.error_category, result.error or "", exit_code=result.exit_code
                )
                failure.with_context(
                    pipeline=context.pipeline_name, stage=stage.name, run_id=context.run_id
                )

            if result.success:
                status = "completed"
            elif not stage.fatal:
                status = "degraded"
            else:
                status = "failed"

            if status == "completed":
                logger.info(
                    "stage.complete",
                    skipped=result.skipped,
                    duration_seconds=(completed_at - started_at).total_seconds(),
                )
            elif status == "degraded":
                logger.warning("stage.degraded", error=result.error, category=result.error_category)
            else:
                logger.error(
                    "stage.failed",
                    error=result.error,
                    category=result.error_category,
                    exit_code=result.exit_code,
                )

        return StageExecution(
            stage_name=stage.name,
            stage_type=stage.stage_type.value,
            status=status,
            started_at=started_at,
            completed_at=completed_at,
            result=result,
            error=result.error if not result.success else None,
            failure=failure,
        )

    def _grant_secrets(self, stage: Stage) -> dict[str, SecretValue]:
        """Resolve the secrets ``stage`` declares, and only those."""
        if self._dry_run or not stage.secrets:
            return {}
        granted: dict[str, SecretValue] = {}
        for name in stage.secrets:
            try:
                granted[name] = self._secrets.resolve(name)
            except SecretError:
                logger.error("secret.unavailable", secret=name)
                raise
        return granted

    def _execute_shell(self, stage: Stage, context: RunContext) -> StageResult:
        """Run each command in order; the first failure fails the stage."""
        if self._dry_run:
            for command in stage.commands:
                logger.info("command.dry_run", command=command)
            return StageResult.ok({"dry_run": True, "commands": list(stage.commands)})
        return context.run_commands(stage.commands, stage)

    def _execute_action(self, stage: Stage, context: RunContext) -> StageResult:
        if self._dry_run:
            logger.info("action.dry_run")
            return StageResult.skip("dry run")
        if stage.handler is None:
            return StageResult.fail("Action stage has no handler")
        result = stage.handler(context, stage)
        if not isinstance(result, StageResult):
            return StageResult.fail(
                f"Handler returned {type(result).__name__}, expected StageResult",
                category=ErrorCategory.DEFINITION,
            )
        return result

    # =========================================================================
    # Post-success hooks
    # =========================================================================

    def _run_post_success(self, pipeline: Pipeline, context: RunContext) -> dict[str, str]:
        """Run post-success hooks. A failing hook never fails the Run."""
        errors: dict[str, str] = {}
        for name, hook in pipeline.post_success:
            with LogContext(hook=name):
                try:
                    hook(context)
                except Exception as e:
                    logger.warning("hook.failed", error=str(e))
                    errors[name] = str(e)
                else:
                    logger.info("hook.complete")
        return errors


def _redact_result(result: StageResult, secrets: Any) -> StageResult:
    secrets = list(secrets)
    if not secrets:
        return result
    result.output = _redact_value(result.output, secrets)
    if result.error:
        result.error = redact(result.error, secrets)
    return result


def _redact_value(value: Any, secrets: list[SecretValue]) -> Any:
    if isinstance(value, str):
        return redact(value, secrets)
    if isinstance(value, Mapping):
        return {k: _redact_value(v, secrets) for k, v in value.items()}
    if isinstance(value, list | tuple):
        return [_redact_value(v, secrets) for v in value]
    return value


__all__ = [
    "ExecutorFactory",
    "PipelineResult",
    "PipelineRunner",
    "RunStatus",
    "StageExecution",
]

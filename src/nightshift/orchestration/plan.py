"""Pipeline Plan — preview a Run without side effects.

WHY
───
Before a nightly pipeline is pointed at a real container and a real
release channel, the operator wants to see the stage order, exactly which
commands each stage will run, which stages may fail without stopping the
Run, and which stage receives the publish token.  ``plan()`` reads the
pipeline *structurally*: no executor, no secrets, no network.

ARCHITECTURE
────────────
::

    plan(pipeline)
    │
    ├── Walk stages in order
    ├── Collect commands, env keys, secrets, fatal flag
    ├── Flag commands that read a secret the stage does not declare
    │
    ▼
    PipelinePlan
    ├── stages: list[PlannedStage]
    ├── triggers: list[dict]
    ├── validation_issues: list[str]
    ├── is_valid: bool
    └── summary() → str

Example::

    from nightshift.orchestration.plan import plan

    result = plan(pipeline)
    print(result.summary())
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

from nightshift.core.logging import get_logger
from nightshift.orchestration.pipeline import Pipeline
from nightshift.orchestration.stage_types import Stage, StageType

logger = get_logger(__name__)

_ENV_REF = re.compile(r"\$\{?([A-Za-z_][A-Za-z0-9_]*)")


@dataclass(frozen=True)
class PlannedStage:
    """Preview of a single stage.

    Attributes:
        order: Execution order (1-based).
        name: Stage name.
        stage_type: ``shell`` or ``action``.
        fatal: Whether a failure stops the Run.
        commands: Shell commands (shell stages).
        env_keys: Variables exported to the stage.
        secrets: Secrets granted to the stage.
        notes: Informational notes.
    """

    order: int
    name: str
    stage_type: str
    fatal: bool = True
    commands: tuple[str, ...] = ()
    env_keys: tuple[str, ...] = ()
    secrets: tuple[str, ...] = ()
    notes: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "order": self.order,
            "name": self.name,
            "type": self.stage_type,
            "fatal": self.fatal,
            "commands": list(self.commands),
            "env_keys": list(self.env_keys),
            "secrets": list(self.secrets),
            "notes": list(self.notes),
        }


@dataclass
class PipelinePlan:
    """Result of planning a pipeline."""

    pipeline_name: str
    stages: list[PlannedStage] = field(default_factory=list)
    triggers: list[dict[str, Any]] = field(default_factory=list)
    post_success: list[str] = field(default_factory=list)
    validation_issues: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.validation_issues

    @property
    def stage_count(self) -> int:
        return len(self.stages)

    def to_dict(self) -> dict[str, Any]:
        return {
            "pipeline_name": self.pipeline_name,
            "triggers": self.triggers,
            "stages": [s.to_dict() for s in self.stages],
            "post_success": self.post_success,
            "validation_issues": self.validation_issues,
        }

    def summary(self) -> str:
        """Human-readable summary of the plan."""
        lines: list[str] = [f"=== Plan: {self.pipeline_name} ===", f"Stages: {self.stage_count}"]
        for trigger in self.triggers:
            lines.append(f"Trigger: {trigger}")
        lines.append("")

        if self.validation_issues:
            lines.append("VALIDATION ISSUES:")
            for issue in self.validation_issues:
                lines.append(f"  ! {issue}")
            lines.append("")

        lines.append("STAGES:")
        for stage in self.stages:
            marker = ">" if stage.fatal else "~"
            lines.append(f"  {marker} {stage.order}. [{stage.stage_type}] {stage.name}")
            for command in stage.commands:
                lines.append(f"      $ {command}")
            for note in stage.notes:
                lines.append(f"      {note}")

        if self.post_success:
            lines.append("")
            lines.append(f"ON SUCCESS: {', '.join(self.post_success)}")
        return "\n".join(lines)


def _notes_for(stage: Stage) -> list[str]:
    notes: list[str] = []
    if not stage.fatal:
        notes.append("Non-fatal: failure degrades the Run")
    if stage.secrets:
        notes.append(f"Receives secrets: {', '.join(stage.secrets)}")
    if stage.stage_type == StageType.ACTION and stage.description:
        notes.append(stage.description)
    if stage.timeout_seconds:
        notes.append(f"Timeout: {stage.timeout_seconds:.0f}s")
    return notes


def _undeclared_secret_refs(stage: Stage, secret_names: set[str]) -> list[str]:
    refs: set[str] = set()
    for command in stage.commands:
        refs.update(_ENV_REF.findall(command))
    return sorted((refs & secret_names) - set(stage.secrets))


def plan(pipeline: Pipeline) -> PipelinePlan:
    """Preview ``pipeline``'s stages without running anything."""
    secret_names = set(pipeline.secret_names())
    issues: list[str] = []
    planned: list[PlannedStage] = []

    if not pipeline.triggers:
        issues.append("Pipeline has no triggers; no event can start a Run")

    for order, stage in enumerate(pipeline.stages, 1):
        for name in _undeclared_secret_refs(stage, secret_names):
            issues.append(f"Stage '{stage.name}' reads ${name} but does not declare it")
        planned.append(
            PlannedStage(
                order=order,
                name=stage.name,
                stage_type=stage.stage_type.value,
                fatal=stage.fatal,
                commands=stage.commands,
                env_keys=tuple(sorted({**pipeline.env, **stage.env})),
                secrets=stage.secrets,
                notes=tuple(_notes_for(stage)),
            )
        )

    logger.debug("plan.complete", pipeline=pipeline.name, stages=len(planned), issues=len(issues))

    return PipelinePlan(
        pipeline_name=pipeline.name,
        stages=planned,
        triggers=[t.to_dict() for t in pipeline.triggers],
        post_success=[name for name, _ in pipeline.post_success],
        validation_issues=issues,
    )


__all__ = ["PlannedStage", "PipelinePlan", "plan"]

"""
Nightshift Orchestration — stage-list pipeline engine.

WHY
───
A nightly build is a fixed sequence of opaque commands.  The only
decisions in it are whether a Run starts at all, whether a failed stage
stops the Run, and who may see the release token.  Orchestration keeps
those decisions in one engine instead of spreading them over the stage
definitions.

ARCHITECTURE
────────────
::

    evaluate_trigger(rules, event)  ─ pure admit/reject predicate
      └── Run.from_decision()       ─ only admitted events create a Run

    Pipeline (ordered Stages)
      ├── Stage.shell()             ─ bash commands via a CommandExecutor
      └── Stage.action()            ─ Python handler (cache, release, ...)

    PipelineRunner                  ─ strict order, fail-fast, secret grants
    RunContext                      ─ context flowing stage-to-stage
    StageResult                     ─ ok / fail / skip

    Supporting:
      plan.py            ─ side-effect-free stage plan
      pipeline_yaml.py   ─ YAML pipeline definitions

MODULE MAP (recommended reading order)
──────────────────────────────────────
1. stage_result.py   ─ StageResult
2. stage_types.py    ─ Stage dataclass + factory methods
3. triggers.py       ─ trigger rules, events, evaluate_trigger
4. run_context.py    ─ Run + RunContext
5. pipeline.py       ─ Pipeline dataclass
6. runner.py         ─ execution engine
7. plan.py           ─ dry-run plan
8. pipeline_yaml.py  ─ YAML loader
"""

from nightshift.orchestration.pipeline import Pipeline, PostSuccessHook
from nightshift.orchestration.pipeline_yaml import PipelineSpec, load_pipeline
from nightshift.orchestration.plan import PipelinePlan, PlannedStage, plan
from nightshift.orchestration.run_context import Run, RunContext
from nightshift.orchestration.runner import (
    PipelineResult,
    PipelineRunner,
    RunStatus,
    StageExecution,
)
from nightshift.orchestration.stage_result import StageResult
from nightshift.orchestration.stage_types import Stage, StageHandler, StageType
from nightshift.orchestration.triggers import (
    Event,
    PushEvent,
    PushTrigger,
    ScheduledTrigger,
    ScheduleTick,
    TriggerDecision,
    TriggerKind,
    TriggerRule,
    evaluate_trigger,
)

__all__ = [
    # Triggers
    "Event",
    "PushEvent",
    "PushTrigger",
    "ScheduleTick",
    "ScheduledTrigger",
    "TriggerDecision",
    "TriggerKind",
    "TriggerRule",
    "evaluate_trigger",
    # Stages
    "Stage",
    "StageHandler",
    "StageResult",
    "StageType",
    # Pipeline + execution
    "Pipeline",
    "PipelineResult",
    "PipelineRunner",
    "PostSuccessHook",
    "Run",
    "RunContext",
    "RunStatus",
    "StageExecution",
    # Plan + YAML
    "PipelinePlan",
    "PipelineSpec",
    "PlannedStage",
    "load_pipeline",
    "plan",
]

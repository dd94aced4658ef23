"""Pipeline — ordered stage list plus the rules that start it.

Manifesto:
    The stage order lives in exactly one place: ``Pipeline.stages``.  The
    Pipeline declares **what** runs and in what order, the triggers that
    admit a Run, and the environment every stage sees.  It never says
    **how** to run anything; that is ``PipelineRunner``'s job.

ARCHITECTURE
────────────
::

    Pipeline
      ├── triggers[]      ── ScheduledTrigger / PushTrigger
      ├── stages[]        ── strict total order, unique names
      ├── env{}           ── exported to every command (BUILD_REASON=Schedule)
      ├── path_prepend[]  ── prepended to PATH ($HOME/.cargo/bin)
      └── post_success[]  ── hooks run after every stage succeeded (cache save)

    PipelineRunner.execute(pipeline, run, executor)  → PipelineResult

Related modules:
    stage_types.py   — Stage definitions
    triggers.py      — trigger rules
    runner.py        — executes the pipeline

Tags:
    nightshift, orchestration, pipeline, stages

Doc-Types:
    api-reference
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from nightshift.core.errors import PipelineDefinitionError
from nightshift.orchestration.stage_types import Stage
from nightshift.orchestration.triggers import TriggerRule

if TYPE_CHECKING:
    from nightshift.orchestration.run_context import RunContext

# A hook receives the final context of a completed Run.
PostSuccessHook = Callable[["RunContext"], None]


@dataclass
class Pipeline:
    """
    A named, ordered list of stages.

    Attributes:
        name: Pipeline name (``debian10.3_continuous``)
        triggers: Rules deciding which events start a Run
        stages: Stages in execution order
        env: Environment exported to every stage
        path_prepend: Directories prepended to ``PATH`` for every command
        post_success: Hooks run once every stage has succeeded
        description: Human-readable summary
    """

    name: str
    stages: list[Stage]
    triggers: list[TriggerRule] = field(default_factory=list)
    env: Mapping[str, str] = field(default_factory=dict)
    path_prepend: tuple[str, ...] = ()
    post_success: list[tuple[str, PostSuccessHook]] = field(default_factory=list)
    description: str = ""

    def __post_init__(self):
        self.path_prepend = tuple(self.path_prepend)
        self._validate()

    def _validate(self) -> None:
        if not self.name:
            raise PipelineDefinitionError("Pipeline name must not be empty")
        if not self.stages:
            raise PipelineDefinitionError(f"Pipeline {self.name!r} has no stages")
        seen: set[str] = set()
        for stage in self.stages:
            if stage.name in seen:
                raise PipelineDefinitionError(f"Duplicate stage name: {stage.name}")
            seen.add(stage.name)
        hooks = [name for name, _ in self.post_success]
        if len(hooks) != len(set(hooks)):
            raise PipelineDefinitionError(f"Duplicate post-success hook in {self.name!r}")

    def get_stage(self, name: str) -> Stage | None:
        for stage in self.stages:
            if stage.name == name:
                return stage
        return None

    def stage_names(self) -> list[str]:
        return [s.name for s in self.stages]

    def stage_index(self, name: str) -> int:
        """Index of ``name`` in the stage order, or -1."""
        for i, stage in enumerate(self.stages):
            if stage.name == name:
                return i
        return -1

    def secret_names(self) -> list[str]:
        """Every secret any stage declares, in stage order."""
        names: list[str] = []
        for stage in self.stages:
            names.extend(n for n in stage.secrets if n not in names)
        return names

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "triggers": [t.to_dict() for t in self.triggers],
            "env": dict(self.env),
            "path_prepend": list(self.path_prepend),
            "stages": [s.to_dict() for s in self.stages],
            "post_success": [name for name, _ in self.post_success],
        }

    def __repr__(self) -> str:
        return f"Pipeline({self.name!r}, stages={self.stage_names()})"

"""Pydantic models for pipeline YAML definitions.

Lets a pipeline be written as a YAML document instead of Python, and
validated into the same :class:`~nightshift.orchestration.pipeline.Pipeline`
the Python catalog builds.  Shell stages list their commands under
``run``; action stages name a built-in action under ``action``.

Usage::

    from nightshift.orchestration.pipeline_yaml import PipelineSpec

    spec = PipelineSpec.from_yaml_file("pipelines/nightly.yaml")
    pipeline = spec.to_pipeline(settings)

Example YAML::

    apiVersion: nightshift.io/v1
    kind: Pipeline
    metadata:
      name: debian10.3_continuous
    spec:
      triggers:
        schedule:
          - cron: "10 3 * * *"
        push:
          branches: [main]
          paths_ignore: ["docs/**", "**/*.md"]
      env:
        BUILD_REASON: Schedule
      path_prepend: ["$HOME/.cargo/bin"]
      stages:
        - name: trigger
          action: trigger
        - name: build
          run: cargo build --all --release
          category: build
        - name: publish
          action: publish-release
          secrets: [GITHUB_TOKEN]

Manifesto:
    The stage list is data.  Writing it in YAML keeps the order, the
    fatal flags and the secret grants reviewable in one screen, while
    every rule about how stages run stays in the runner.

Tags:
    nightshift, orchestration, yaml, declarative, config-driven

Doc-Types:
    api-reference
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from nightshift.core.errors import ErrorCategory, PipelineDefinitionError
from nightshift.orchestration.pipeline import Pipeline, PostSuccessHook
from nightshift.orchestration.stage_types import Stage
from nightshift.orchestration.triggers import PushTrigger, ScheduledTrigger, TriggerRule

if TYPE_CHECKING:
    from nightshift.core.config import NightshiftSettings


class PipelineMetadataSpec(BaseModel):
    """Metadata section of a pipeline spec."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, description="Unique pipeline name")
    description: str = Field(default="", description="Human-readable description")


class ScheduleSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")

    cron: str = Field(..., min_length=1)


class PushSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")

    branches: list[str] = Field(default_factory=lambda: ["main"], min_length=1)
    paths_ignore: list[str] = Field(default_factory=list)


class TriggersSpec(BaseModel):
    """Which events start a Run."""

    model_config = ConfigDict(extra="forbid")

    schedule: list[ScheduleSpec] = Field(default_factory=list)
    push: PushSpec | None = None

    def to_rules(self) -> list[TriggerRule]:
        rules: list[TriggerRule] = [ScheduledTrigger(s.cron) for s in self.schedule]
        if self.push is not None:
            rules.append(
                PushTrigger(branches=tuple(self.push.branches), paths_ignore=tuple(self.push.paths_ignore))
            )
        return rules


class CacheSpec(BaseModel):
    """Cache paths and whether a successful Run saves them."""

    model_config = ConfigDict(extra="forbid")

    paths: list[str] | None = None
    save: bool = True


class ArtifactsSpec(BaseModel):
    """Artifact pattern and release target for ``publish-release``."""

    model_config = ConfigDict(extra="forbid")

    pattern: str | None = None
    release_tag: str | None = None
    token_secret: str | None = None


class StageSpec(BaseModel):
    """One stage: ``run`` commands or a built-in ``action``."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    name: str = Field(..., min_length=1)
    run: list[str] | None = Field(default=None, description="Shell commands, run in order")
    action: str | None = Field(default=None, description="Built-in action name")
    with_: dict[str, Any] = Field(default_factory=dict, alias="with", description="Action parameters")
    env: dict[str, str] = Field(default_factory=dict)
    fatal: bool = True
    secrets: list[str] = Field(default_factory=list)
    category: ErrorCategory = ErrorCategory.INTERNAL
    timeout_seconds: float | None = Field(default=None, gt=0)
    description: str = ""

    @field_validator("run", mode="before")
    @classmethod
    def _single_command(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [value]
        return value

    @field_validator("category", mode="before")
    @classmethod
    def _upper_category(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.upper()
        return value

    @field_validator("env", mode="before")
    @classmethod
    def _stringify_env(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {str(k): str(v) for k, v in value.items()}
        return value

    @model_validator(mode="after")
    def _run_xor_action(self) -> StageSpec:
        if (self.run is None) == (self.action is None):
            raise ValueError(f"Stage '{self.name}' must set exactly one of 'run' or 'action'")
        if self.run is not None and not self.run:
            raise ValueError(f"Stage '{self.name}' has an empty 'run' list")
        if self.run is not None and self.with_:
            raise ValueError(f"Stage '{self.name}': 'with' only applies to actions")
        return self


class PipelineSpecSection(BaseModel):
    """The 'spec' section: triggers, environment, stages."""

    model_config = ConfigDict(extra="forbid")

    triggers: TriggersSpec = Field(default_factory=TriggersSpec)
    env: dict[str, str] = Field(default_factory=dict)
    path_prepend: list[str] = Field(default_factory=list)
    cache: CacheSpec = Field(default_factory=CacheSpec)
    artifacts: ArtifactsSpec = Field(default_factory=ArtifactsSpec)
    stages: list[StageSpec] = Field(..., min_length=1)

    @field_validator("env", mode="before")
    @classmethod
    def _stringify_env(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {str(k): str(v) for k, v in value.items()}
        return value

    @field_validator("stages")
    @classmethod
    def validate_unique_names(cls, v: list[StageSpec]) -> list[StageSpec]:
        names = [stage.name for stage in v]
        if len(names) != len(set(names)):
            duplicates = {n for n in names if names.count(n) > 1}
            raise ValueError(f"Duplicate stage names: {duplicates}")
        return v


class PipelineSpec(BaseModel):
    """Complete YAML pipeline specification (root model)."""

    model_config = ConfigDict(extra="forbid")

    apiVersion: Literal["nightshift.io/v1"] = Field(default="nightshift.io/v1")
    kind: Literal["Pipeline"] = Field(default="Pipeline")
    metadata: PipelineMetadataSpec
    spec: PipelineSpecSection

    def to_pipeline(self, settings: NightshiftSettings | None = None) -> Pipeline:
        """Convert the validated spec to a runnable Pipeline.

        Built-in actions are configured from ``settings`` (repository,
        cache directory, release API), overridden by ``spec.cache``,
        ``spec.artifacts`` and each stage's ``with`` block.
        """
        from nightshift.cache.manager import CacheManager
        from nightshift.core.config import get_settings
        from nightshift.pipelines.actions import resolve_action
        from nightshift.publish.release import ReleasePublisher

        settings = settings or get_settings()
        stages: list[Stage] = []
        post_success: list[tuple[str, PostSuccessHook]] = []

        for stage_spec in self.spec.stages:
            if stage_spec.run is not None:
                stages.append(
                    Stage.shell(
                        stage_spec.name,
                        stage_spec.run,
                        env=stage_spec.env,
                        fatal=stage_spec.fatal,
                        secrets=stage_spec.secrets,
                        category=stage_spec.category,
                        timeout_seconds=stage_spec.timeout_seconds,
                        description=stage_spec.description,
                    )
                )
                continue

            params = dict(stage_spec.with_)
            secrets = list(stage_spec.secrets)
            if stage_spec.action == "cache-restore":
                params.setdefault("stage_name", stage_spec.name)
                if self.spec.cache.paths is not None:
                    params.setdefault("paths", self.spec.cache.paths)
            elif stage_spec.action == "publish-release":
                artifacts = self.spec.artifacts
                if artifacts.pattern:
                    params.setdefault("pattern", artifacts.pattern)
                if artifacts.release_tag:
                    params.setdefault("tag", artifacts.release_tag)

            handler = resolve_action(stage_spec.action or "", settings, params)

            if isinstance(handler, ReleasePublisher):
                if self.spec.artifacts.token_secret:
                    handler.token_secret = self.spec.artifacts.token_secret
                if handler.token_secret not in secrets:
                    secrets.append(handler.token_secret)
            if isinstance(handler, CacheManager) and self.spec.cache.save:
                post_success.append(("save-cache", handler.save))

            stages.append(
                Stage.action(
                    stage_spec.name,
                    handler,
                    env=stage_spec.env,
                    fatal=stage_spec.fatal,
                    secrets=secrets,
                    category=stage_spec.category,
                    description=stage_spec.description or f"action: {stage_spec.action}",
                )
            )

        return Pipeline(
            name=self.metadata.name,
            stages=stages,
            triggers=self.spec.triggers.to_rules(),
            env=self.spec.env,
            path_prepend=tuple(self.spec.path_prepend),
            post_success=post_success,
            description=self.metadata.description,
        )

    @classmethod
    def from_yaml(cls, yaml_content: str) -> PipelineSpec:
        """Parse and validate YAML content.

        Raises:
            PipelineDefinitionError: If the YAML is malformed
            pydantic.ValidationError: If it does not match the schema
        """
        try:
            data = yaml.safe_load(yaml_content)
        except yaml.YAMLError as e:
            raise PipelineDefinitionError(f"Invalid YAML: {e}") from e
        if not isinstance(data, dict):
            raise PipelineDefinitionError("Pipeline YAML must be a mapping")
        return cls.model_validate(data)

    @classmethod
    def from_yaml_file(cls, path: str | Path) -> PipelineSpec:
        content = Path(path).read_text(encoding="utf-8")
        return cls.from_yaml(content)


def load_pipeline(path: str | Path, settings: NightshiftSettings | None = None) -> Pipeline:
    """Load, validate and convert a pipeline YAML file."""
    return PipelineSpec.from_yaml_file(path).to_pipeline(settings)


__all__ = [
    "PipelineSpec",
    "StageSpec",
    "TriggersSpec",
    "load_pipeline",
]

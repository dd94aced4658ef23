"""Tests for Stage definitions, StageResult envelopes and Pipeline validation."""

import pytest

from nightshift.core.errors import ErrorCategory, PipelineDefinitionError
from nightshift.orchestration.pipeline import Pipeline
from nightshift.orchestration.stage_result import StageResult
from nightshift.orchestration.stage_types import Stage, StageType


def _noop(ctx, stage):
    return StageResult.ok()


class TestStageResult:
    def test_ok(self):
        r = StageResult.ok({"hit": True})
        assert r.success and r.output == {"hit": True}
        assert r.to_dict() == {"success": True, "output": {"hit": True}}

    def test_fail_normalizes_category(self):
        r = StageResult.fail("cargo failed", ErrorCategory.BUILD, exit_code=101)
        assert not r.success
        assert r.error_category == "BUILD"
        assert r.to_dict()["exit_code"] == 101

    def test_fail_without_message(self):
        assert StageResult(success=False).error == "Stage failed without error message"

    def test_skip(self):
        r = StageResult.skip("dry run")
        assert r.success and r.skipped
        assert r.output == {"skipped_reason": "dry run"}


class TestStage:
    def test_shell_factory(self):
        stage = Stage.shell("build", ["cargo build"], category=ErrorCategory.BUILD)
        assert stage.stage_type == StageType.SHELL
        assert stage.commands == ("cargo build",)
        assert stage.fatal is True

    def test_shell_needs_commands(self):
        with pytest.raises(ValueError):
            Stage.shell("build", [])

    def test_action_factory(self):
        stage = Stage.action("publish", _noop, secrets=["GITHUB_TOKEN"])
        assert stage.stage_type == StageType.ACTION
        assert stage.secrets == ("GITHUB_TOKEN",)

    def test_to_dict_omits_handler(self):
        d = Stage.action("trigger", _noop).to_dict()
        assert d["name"] == "trigger"
        assert d["type"] == "action"
        assert "handler" not in d


class TestPipeline:
    def _stages(self):
        return [Stage.shell("a", ["true"]), Stage.action("b", _noop, secrets=["T"])]

    def test_duplicate_stage_names(self):
        with pytest.raises(PipelineDefinitionError):
            Pipeline("p", [Stage.shell("a", ["true"]), Stage.shell("a", ["true"])])

    def test_no_stages(self):
        with pytest.raises(PipelineDefinitionError):
            Pipeline("p", [])

    def test_duplicate_hooks(self):
        hook = lambda ctx: None  # noqa: E731
        with pytest.raises(PipelineDefinitionError):
            Pipeline("p", self._stages(), post_success=[("h", hook), ("h", hook)])

    def test_lookup(self):
        p = Pipeline("p", self._stages())
        assert p.stage_names() == ["a", "b"]
        assert p.stage_index("b") == 1
        assert p.stage_index("zzz") == -1
        assert p.get_stage("a").name == "a"
        assert p.secret_names() == ["T"]

    def test_to_dict(self):
        d = Pipeline("p", self._stages(), env={"BUILD_REASON": "Schedule"}).to_dict()
        assert d["env"] == {"BUILD_REASON": "Schedule"}
        assert [s["name"] for s in d["stages"]] == ["a", "b"]

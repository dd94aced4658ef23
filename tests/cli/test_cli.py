"""
Tests for the nightshift CLI (Typer CliRunner; no containers, no network).
"""

from __future__ import annotations

import shutil
from pathlib import Path

import pytest
from typer.testing import CliRunner

from nightshift.cli.app import app
from nightshift.core.logging import configure_logging

runner = CliRunner()

EXAMPLE = Path(__file__).resolve().parents[2] / "examples" / "nightly.yaml"

LOCAL_PIPELINE = """
apiVersion: nightshift.io/v1
kind: Pipeline
metadata:
  name: local-smoke
spec:
  triggers:
    schedule:
      - cron: "10 3 * * *"
  env:
    BUILD_REASON: Schedule
  stages:
    - name: hello
      run: echo "$BUILD_REASON" > reason.txt
    - name: check
      run: {check}
"""


@pytest.fixture(autouse=True)
def _env(monkeypatch, tmp_path, workspace, home):
    monkeypatch.setenv("NIGHTSHIFT_WORKSPACE_DIR", str(workspace))
    monkeypatch.setenv("NIGHTSHIFT_HOME_DIR", str(home))
    monkeypatch.setenv("NIGHTSHIFT_CACHE_DIR", str(tmp_path / "cache"))
    monkeypatch.setenv("NIGHTSHIFT_REPOSITORY", "acme/widget")
    yield
    # the CLI reconfigures logging against CliRunner's streams
    configure_logging(level="WARNING", json_format=True)


def invoke(*args: str, **kwargs):
    return runner.invoke(app, ["--log-level", "CRITICAL", *args], **kwargs)


class TestRootApp:
    def test_help(self):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "nightshift" in result.output

    def test_version(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert result.output.startswith("nightshift ")


class TestEvaluate:
    def test_docs_only_push_rejected(self):
        result = invoke("evaluate", "--event", "push", "--changed", "docs/a.md", "--changed", "README.md")
        assert result.exit_code == 0
        assert "rejected" in result.output
        assert "paths-ignore" in result.output

    def test_code_push_admitted(self):
        result = invoke("evaluate", "--changed", "docs/a.md", "--changed", "src/main.rs")
        assert result.exit_code == 0
        assert "admitted" in result.output

    def test_changed_from_stdin(self):
        result = invoke("evaluate", "--changed-from", "-", "--json", input="docs/x.md\nsrc/lib.rs\n")
        assert result.exit_code == 0
        assert '"admitted": true' in result.output

    def test_changed_from_file(self, tmp_path):
        listing = tmp_path / "changed.txt"
        listing.write_text("docs/x.md\n\n.cirrus.yml\n")
        result = invoke("evaluate", "--changed-from", str(listing), "--json")
        assert '"admitted": false' in result.output

    def test_other_branch(self):
        result = invoke("evaluate", "--branch", "feature", "--changed", "src/main.rs")
        assert "rejected" in result.output

    def test_schedule_tick(self):
        on = invoke("evaluate", "--event", "schedule", "--at", "2024-01-01T03:10:00Z", "--json")
        off = invoke("evaluate", "--event", "schedule", "--at", "2024-01-01T04:10:00Z", "--json")
        assert '"admitted": true' in on.output
        assert '"admitted": false' in off.output

    def test_bad_event(self):
        result = invoke("evaluate", "--event", "tag")
        assert result.exit_code == 2

    def test_bad_timestamp(self):
        result = invoke("evaluate", "--event", "schedule", "--at", "tonight")
        assert result.exit_code == 2


class TestPlan:
    def test_builtin(self):
        result = invoke("plan")
        assert result.exit_code == 0
        assert "=== Plan: debian10.3_continuous ===" in result.output
        assert "$ cargo build --all --release" in result.output
        assert "[action] restore-cache" in result.output

    def test_yaml(self):
        result = invoke("plan", "--pipeline", str(EXAMPLE))
        assert result.exit_code == 0
        assert "ON SUCCESS: save-cache" in result.output

    def test_json(self):
        result = invoke("plan", "--json")
        assert '"pipeline_name": "debian10.3_continuous"' in result.output

    def test_missing_file(self, tmp_path):
        result = invoke("plan", "--pipeline", str(tmp_path / "nope.yaml"))
        assert result.exit_code == 2


class TestCacheKey:
    def test_key(self, workspace):
        (workspace / "Cargo.lock").write_text("lock")
        result = invoke("cache-key")
        assert result.exit_code == 0
        key = result.output.strip()
        assert key.startswith("debian10.3-2-Linux-")
        assert key.endswith("-cargo")

    def test_key_changes_with_lock(self, workspace):
        (workspace / "Cargo.lock").write_text("v1")
        first = invoke("cache-key").output
        (workspace / "Cargo.lock").write_text("v2")
        assert invoke("cache-key").output != first


class TestNextRun:
    def test_next(self):
        result = invoke("next-run", "--after", "2024-01-01T00:00:00Z")
        assert result.exit_code == 0
        assert "2024-01-01T03:10:00+00:00" in result.output

    def test_count(self):
        result = invoke("next-run", "--after", "2024-01-01T00:00:00Z", "--count", "2")
        assert "2024-01-02T03:10:00+00:00" in result.output


class TestRun:
    def test_rejected_push_exits_zero(self):
        result = invoke("run", "--changed", "docs/index.md")
        assert result.exit_code == 0
        assert "Not triggered" in result.output

    def test_dry_run(self):
        result = invoke("run", "--event", "schedule", "--dry-run")
        assert result.exit_code == 0
        assert "Completed" in result.output
        assert "cargo build --all --release" in result.output

    @pytest.mark.integration
    @pytest.mark.skipif(shutil.which("bash") is None, reason="bash not available")
    def test_local_success(self, tmp_path, workspace):
        pipeline = tmp_path / "p.yaml"
        pipeline.write_text(LOCAL_PIPELINE.format(check="test -s reason.txt"))
        result = invoke("run", "--pipeline", str(pipeline), "--event", "schedule", "--local")
        assert result.exit_code == 0, result.output
        assert (workspace / "reason.txt").read_text().strip() == "Schedule"

    @pytest.mark.integration
    @pytest.mark.skipif(shutil.which("bash") is None, reason="bash not available")
    def test_local_failure_exits_one(self, tmp_path):
        pipeline = tmp_path / "p.yaml"
        pipeline.write_text(LOCAL_PIPELINE.format(check="'false'"))
        result = invoke("run", "--pipeline", str(pipeline), "--event", "schedule", "--local")
        assert result.exit_code == 1
        assert "Failed" in result.output
        assert "(StageError, INTERNAL)" in result.output


class TestFail:
    def test_exits_with_code(self):
        from typing import NoReturn, get_type_hints

        import typer

        from nightshift.cli.utils import fail

        with pytest.raises(typer.Exit) as exc_info:
            fail("bad input", code=3)
        assert exc_info.value.exit_code == 3
        assert get_type_hints(fail)["return"] is NoReturn

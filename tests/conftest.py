"""
Shared pytest fixtures for nightshift tests.

This module provides:
- ``RecordingExecutor``: a CommandExecutor that records every command and
  the environment it saw, and fails commands on request
- Settings pointed at temporary directories
- A fake release host built on ``httpx.MockTransport``

No test here needs a container runtime or network access.
"""

from __future__ import annotations

import json
import os
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import httpx
import pytest

from nightshift.core.config import NightshiftSettings, clear_settings_cache
from nightshift.core.logging import clear_context, configure_logging
from nightshift.core.secrets import DictSecretBackend, SecretsResolver
from nightshift.execution.executor import CommandResult
from nightshift.orchestration.run_context import Run, RunContext
from nightshift.orchestration.triggers import ScheduleTick, TriggerDecision, TriggerKind

# =============================================================================
# Session setup
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _quiet_logging():
    configure_logging(level="WARNING", json_format=True)


@pytest.fixture(autouse=True)
def _isolate(monkeypatch):
    """Fresh settings cache and log context; no NIGHTSHIFT_* leakage from the host."""
    for key in list(os.environ):
        if key.startswith("NIGHTSHIFT_"):
            monkeypatch.delenv(key, raising=False)
    clear_settings_cache()
    clear_context()
    yield
    clear_settings_cache()
    clear_context()


# =============================================================================
# Executors
# =============================================================================


@dataclass
class RecordedCommand:
    command: str
    env: dict[str, str]
    path_prepend: tuple[str, ...]
    timeout: float | None


@dataclass
class RecordingExecutor:
    """Records commands; any command containing a ``fail_on`` substring exits 1."""

    fail_on: Sequence[str] = ()
    timeout_on: Sequence[str] = ()
    calls: list[RecordedCommand] = field(default_factory=list)

    def run(
        self,
        command: str,
        env: Mapping[str, str] | None = None,
        *,
        path_prepend: Sequence[str] = (),
        timeout: float | None = None,
    ) -> CommandResult:
        self.calls.append(RecordedCommand(command, dict(env or {}), tuple(path_prepend), timeout))
        if any(s in command for s in self.timeout_on):
            return CommandResult(command, -1, error="Command timed out after 1s", timed_out=True)
        if any(s in command for s in self.fail_on):
            return CommandResult(command, 1, stderr=f"boom: {command}")
        return CommandResult(command, 0, stdout="ok")

    @property
    def commands(self) -> list[str]:
        return [c.command for c in self.calls]

    def env_for(self, substring: str) -> dict[str, str]:
        for call in self.calls:
            if substring in call.command:
                return call.env
        raise AssertionError(f"no command containing {substring!r} was run")


@pytest.fixture
def executor() -> RecordingExecutor:
    return RecordingExecutor()


# =============================================================================
# Settings / directories
# =============================================================================


@pytest.fixture
def workspace(tmp_path) -> Path:
    path = tmp_path / "workspace"
    path.mkdir()
    return path


@pytest.fixture
def home(tmp_path) -> Path:
    path = tmp_path / "home"
    path.mkdir()
    return path


@pytest.fixture
def settings(tmp_path, workspace, home) -> NightshiftSettings:
    return NightshiftSettings(
        _env_file=None,
        repository="acme/widget",
        workspace_dir=workspace,
        home_dir=home,
        cache_dir=tmp_path / "cache",
        artifact_prefix="widget",
        executor="local",
    )


@pytest.fixture
def secrets() -> SecretsResolver:
    return SecretsResolver([DictSecretBackend({"GITHUB_TOKEN": "ghp_s3cr3t"})])


# =============================================================================
# Runs
# =============================================================================

NIGHTLY_TICK = datetime(2024, 3, 5, 3, 10, tzinfo=UTC)


@pytest.fixture
def scheduled_run() -> Run:
    decision = TriggerDecision(True, TriggerKind.SCHEDULED, "schedule '10 3 * * *'", ScheduleTick(NIGHTLY_TICK))
    return Run.from_decision(decision, run_id="run-0001", timestamp=NIGHTLY_TICK)


@pytest.fixture
def run_context(scheduled_run, workspace, home, executor) -> RunContext:
    return RunContext(
        run=scheduled_run,
        pipeline_name="test",
        workspace=workspace,
        home=home,
        executor=executor,
        env={"BUILD_REASON": "Schedule"},
        path_prepend=("$HOME/.cargo/bin",),
    )


# =============================================================================
# Release host
# =============================================================================


class FakeReleaseHost:
    """In-memory release API: one repository, releases by tag, assets by name."""

    def __init__(self, *, fail_uploads: Sequence[str] = (), existing_release: bool = True):
        self.fail_uploads = set(fail_uploads)
        self.releases: dict[str, dict[str, Any]] = {}
        self.assets: dict[int, dict[str, Any]] = {}
        self.requests: list[httpx.Request] = []
        self._next_id = 100
        if existing_release:
            self._create("nightly")

    def _create(self, tag: str) -> dict[str, Any]:
        self._next_id += 1
        release = {"id": self._next_id, "tag_name": tag}
        self.releases[tag] = release
        return release

    def asset_names(self) -> list[str]:
        return sorted(a["name"] for a in self.assets.values())

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if request.method == "GET" and "/releases/tags/" in path:
            tag = path.rsplit("/", 1)[-1]
            if tag not in self.releases:
                return httpx.Response(404, json={"message": "Not Found"})
            return httpx.Response(200, json=self.releases[tag])
        if request.method == "POST" and path.endswith("/releases"):
            return httpx.Response(201, json=self._create(json.loads(request.content)["tag_name"]))
        if request.method == "GET" and path.endswith("/assets"):
            release_id = int(path.split("/")[-2])
            items = [a for a in self.assets.values() if a["release_id"] == release_id]
            return httpx.Response(200, json=items)
        if request.method == "DELETE" and "/releases/assets/" in path:
            self.assets.pop(int(path.rsplit("/", 1)[-1]), None)
            return httpx.Response(204)
        if request.method == "POST" and path.endswith("/assets"):
            name = request.url.params["name"]
            if name in self.fail_uploads:
                return httpx.Response(502, json={"message": "Bad Gateway"})
            self._next_id += 1
            asset = {
                "id": self._next_id,
                "name": name,
                "size": len(request.content),
                "release_id": int(path.split("/")[-2]),
                "browser_download_url": f"https://example.invalid/{name}",
            }
            self.assets[asset["id"]] = asset
            return httpx.Response(201, json=asset)
        return httpx.Response(500, json={"message": f"unexpected {request.method} {path}"})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def release_host() -> FakeReleaseHost:
    return FakeReleaseHost()


@pytest.fixture
def make_release_host():
    """Factory for hosts with failing uploads or no release yet."""
    return FakeReleaseHost

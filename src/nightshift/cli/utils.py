"""
CLI utility helpers: output formatting, event and pipeline construction.
"""

from __future__ import annotations

import json
import sys
from contextlib import nullcontext
from dataclasses import asdict
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, NoReturn

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from nightshift.core.config import ExecutorKind, NightshiftSettings
from nightshift.core.errors import NightshiftError
from nightshift.execution import ContainerSession, LocalShellExecutor
from nightshift.orchestration.pipeline import Pipeline
from nightshift.orchestration.runner import ExecutorFactory
from nightshift.orchestration.triggers import Event, PushEvent, ScheduledTrigger, ScheduleTick

console = Console()
err_console = Console(stderr=True)


# ── Pipeline / event construction ────────────────────────────────────────


def load_pipeline(settings: NightshiftSettings, pipeline_file: Path | None) -> Pipeline:
    """The YAML pipeline at ``pipeline_file``, or the built-in nightly pipeline."""
    try:
        if pipeline_file is not None:
            from nightshift.orchestration.pipeline_yaml import load_pipeline as _load

            return _load(pipeline_file, settings)
        from nightshift.pipelines import build_nightly_pipeline

        return build_nightly_pipeline(settings)
    except (NightshiftError, ValueError, OSError) as exc:
        fail(f"Could not load pipeline: {exc}")


def read_changed_files(changed: list[str] | None, changed_from: str | None) -> list[str]:
    """Changed paths from ``--changed`` options and/or a newline-separated file (``-`` = stdin)."""
    files = list(changed or [])
    if changed_from:
        text = sys.stdin.read() if changed_from == "-" else Path(changed_from).read_text(encoding="utf-8")
        files.extend(line.strip() for line in text.splitlines() if line.strip())
    return files


def parse_time(value: str | None) -> datetime | None:
    if value is None:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        fail(f"Invalid timestamp {value!r}; expected ISO 8601, e.g. 2024-01-01T03:10:00Z")
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def make_event(
    pipeline: Pipeline,
    event: str,
    *,
    branch: str,
    changed_files: list[str],
    commit: str | None,
    at: str | None,
) -> Event:
    """Build the event to evaluate.

    A schedule event without ``--at`` is the most recent tick of the
    pipeline's first schedule, so a manual ``run --event schedule``
    behaves like the nightly tick that is due.
    """
    if event == "push":
        return PushEvent(branch, changed_files, commit=commit)
    if event != "schedule":
        fail(f"Unknown event {event!r}; expected 'push' or 'schedule'")

    when = parse_time(at)
    if when is None:
        schedules = [t for t in pipeline.triggers if isinstance(t, ScheduledTrigger)]
        when = schedules[0].previous_fire() if schedules else datetime.now(UTC)
    return ScheduleTick(at=when)


def executor_factory(
    settings: NightshiftSettings,
    *,
    local: bool | None,
    dry_run: bool,
    workspace: Path,
    home: Path,
) -> ExecutorFactory:
    """Factory yielding the command executor for one Run."""
    timeout = settings.command_timeout_seconds
    if dry_run:
        return lambda run: nullcontext(None)

    use_local = local if local is not None else settings.executor == ExecutorKind.LOCAL
    if use_local:
        return lambda run: nullcontext(LocalShellExecutor(workspace, home, default_timeout=timeout))
    return lambda run: ContainerSession(
        settings.container_image,
        workspace,
        home,
        run_id=run.run_id,
        runtime=settings.container_runtime,
        default_timeout=timeout,
    )


# ── Output helpers ───────────────────────────────────────────────────────


def fail(message: str, code: int = 2) -> NoReturn:
    """Print an error and exit."""
    err_console.print(f"[bold red]Error[/bold red]: {escape(message)}")
    raise typer.Exit(code=code)


def _to_dict(obj: Any) -> dict[str, Any]:
    """Convert objects with ``to_dict`` / dataclasses / dicts to plain dicts."""
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    if hasattr(obj, "__dataclass_fields__"):
        return asdict(obj)
    if isinstance(obj, dict):
        return obj
    return {"value": str(obj)}


def output_json(data: Any) -> None:
    payload = [_to_dict(d) for d in data] if isinstance(data, list | tuple) else _to_dict(data)
    console.print_json(json.dumps(payload, default=str))


def print_table(rows: list[dict[str, Any]], *, title: str = "") -> None:
    """Render a list of dicts as a Rich table."""
    if not rows:
        console.print("[dim]No items.[/dim]")
        return
    table = Table(title=title or None, show_lines=False, pad_edge=False)
    for col in rows[0]:
        table.add_column(col, overflow="fold")
    for row in rows:
        table.add_row(*("" if v is None else escape(str(v)) for v in row.values()))
    console.print(table)


def print_dict(data: dict[str, Any], *, title: str = "") -> None:
    """Render a single dict as key-value pairs."""
    if title:
        console.print(f"[bold]{title}[/bold]")
    for k, v in data.items():
        console.print(f"  [cyan]{k}[/cyan]: {escape(str(v))}")

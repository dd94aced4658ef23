"""
Root Typer application for the nightshift CLI.

Commands::

    nightshift evaluate   --event push --branch main --changed docs/a.md
    nightshift run        --event schedule [--dry-run] [--local/--container]
    nightshift plan       [--pipeline nightly.yaml]
    nightshift cache-key  [--workspace DIR]
    nightshift next-run   [--after 2024-01-01T00:00:00Z] [--count 3]

Exit codes: 0 for a successful or rejected run, 1 for a failed run,
2 for usage and configuration errors.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.markup import escape
from typer import Typer

from nightshift.cli.utils import (
    console,
    executor_factory,
    fail,
    load_pipeline,
    make_event,
    output_json,
    parse_time,
    print_dict,
    print_table,
    read_changed_files,
)
from nightshift.core.config import get_settings
from nightshift.core.errors import NightshiftError
from nightshift.core.logging import configure_logging

app = Typer(
    name="nightshift",
    help="nightshift: nightly build, test, package and publish pipeline.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from nightshift import __version__

        typer.echo(f"nightshift {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    log_level: str | None = typer.Option(
        None, "--log-level", help="DEBUG, INFO, WARNING, ERROR (default: NIGHTSHIFT_LOG_LEVEL)."
    ),
) -> None:
    """nightshift CLI: evaluate triggers and run the nightly pipeline."""
    settings = get_settings()
    configure_logging(level=log_level or settings.log_level, json_format=settings.json_logs)


# ── Shared options ───────────────────────────────────────────────────────

_EVENT = typer.Option("push", "--event", "-e", help="Event kind: push or schedule.")
_BRANCH = typer.Option("main", "--branch", "-b", help="Pushed branch (push events).")
_CHANGED = typer.Option(None, "--changed", "-c", help="Changed path (repeatable).")
_CHANGED_FROM = typer.Option(
    None, "--changed-from", help="File with one changed path per line ('-' for stdin)."
)
_AT = typer.Option(None, "--at", help="Tick time, ISO 8601 (schedule events).")
_COMMIT = typer.Option(None, "--commit", help="Commit to build (push events).")
_PIPELINE = typer.Option(None, "--pipeline", "-p", help="Pipeline YAML (default: built-in nightly).")
_JSON = typer.Option(False, "--json", help="Output as JSON.")


@app.command("evaluate")
def evaluate_cmd(
    event: str = _EVENT,
    branch: str = _BRANCH,
    changed: list[str] | None = _CHANGED,
    changed_from: str | None = _CHANGED_FROM,
    at: str | None = _AT,
    commit: str | None = _COMMIT,
    pipeline_file: Path | None = _PIPELINE,
    as_json: bool = _JSON,
) -> None:
    """Decide whether an event would start a run. Nothing is executed."""
    from nightshift.orchestration.triggers import evaluate_trigger

    settings = get_settings()
    pipeline = load_pipeline(settings, pipeline_file)
    ev = make_event(
        pipeline,
        event,
        branch=branch,
        changed_files=read_changed_files(changed, changed_from),
        commit=commit,
        at=at,
    )
    decision = evaluate_trigger(pipeline.triggers, ev)

    if as_json:
        output_json(decision)
        return
    verdict = "[green]admitted[/green]" if decision.admitted else "[yellow]rejected[/yellow]"
    console.print(f"{pipeline.name}: {verdict} ({decision.kind.value}): {escape(decision.reason)}")


@app.command("run")
def run_cmd(
    event: str = _EVENT,
    branch: str = _BRANCH,
    changed: list[str] | None = _CHANGED,
    changed_from: str | None = _CHANGED_FROM,
    at: str | None = _AT,
    commit: str | None = _COMMIT,
    pipeline_file: Path | None = _PIPELINE,
    dry_run: bool = typer.Option(False, "--dry-run", help="Show commands without executing."),
    local: bool | None = typer.Option(
        None, "--local/--container", help="Run commands on the host or in a fresh container."
    ),
    workspace: Path | None = typer.Option(None, "--workspace", "-w", help="Working copy directory."),
    home: Path | None = typer.Option(None, "--home", help="$HOME for commands."),
    as_json: bool = _JSON,
) -> None:
    """Evaluate an event and, if admitted, execute the pipeline."""
    from nightshift.orchestration.runner import PipelineRunner, RunStatus

    settings = get_settings()
    pipeline = load_pipeline(settings, pipeline_file)
    ev = make_event(
        pipeline,
        event,
        branch=branch,
        changed_files=read_changed_files(changed, changed_from),
        commit=commit,
        at=at,
    )
    workspace = workspace or settings.workspace_dir
    home = home or settings.home_dir

    runner = PipelineRunner(dry_run=dry_run)
    try:
        result = runner.dispatch(
            pipeline,
            ev,
            executor_factory=executor_factory(
                settings, local=local, dry_run=dry_run, workspace=workspace, home=home
            ),
            workspace=workspace,
            home=home,
        )
    except NightshiftError as exc:
        fail(f"{exc.category.value}: {exc.message}", code=1)

    if result is None:
        console.print(f"[yellow]Not triggered[/yellow]: {pipeline.name}, nothing to run.")
        return

    if as_json:
        output_json(result)
    else:
        print_table(
            [
                {
                    "stage": se.stage_name,
                    "type": se.stage_type,
                    "status": se.status,
                    "duration_s": f"{se.duration_seconds:.1f}" if se.duration_seconds is not None else "",
                    "error": se.error or "",
                }
                for se in result.stage_executions
            ],
            title=f"Run {result.run_id[:12]} ({result.run.trigger_kind.value})",
        )
        if dry_run:
            for se in result.stage_executions:
                for cmd in (se.result.output.get("commands", []) if se.result else []):
                    console.print(f"  [dim]{se.stage_name}[/dim] $ {escape(cmd)}")
        for name, err in result.hook_errors.items():
            console.print(f"[yellow]Warning[/yellow]: post-success hook {name!r} failed: {escape(err)}")
        if result.status == RunStatus.COMPLETED:
            published = result.published_artifacts
            suffix = f", published {len(published)} artifact(s)" if published else ""
            console.print(f"[green]Completed[/green]{suffix}")

    try:
        result.raise_for_status()
    except NightshiftError as exc:
        if not as_json:
            console.print(
                f"[red]Failed[/red] at stage {result.error_stage!r} "
                f"({type(exc).__name__}, {exc.category.value}): {escape(exc.message)}"
            )
        raise typer.Exit(code=1) from exc


@app.command("plan")
def plan_cmd(
    pipeline_file: Path | None = _PIPELINE,
    as_json: bool = _JSON,
) -> None:
    """Show the ordered stages, commands and secret grants without running."""
    from nightshift.orchestration.plan import plan

    pipeline_plan = plan(load_pipeline(get_settings(), pipeline_file))
    if as_json:
        output_json(pipeline_plan)
    else:
        console.print(pipeline_plan.summary(), markup=False, highlight=False, soft_wrap=True)
    if not pipeline_plan.is_valid:
        raise typer.Exit(code=1)


@app.command("cache-key")
def cache_key_cmd(
    workspace: Path | None = typer.Option(None, "--workspace", "-w", help="Working copy directory."),
    as_json: bool = _JSON,
) -> None:
    """Print the dependency-cache key for the lock files in a workspace."""
    from nightshift.cache.key import CacheKey

    settings = get_settings()
    try:
        key = CacheKey.from_settings(settings, workspace or settings.workspace_dir)
    except NightshiftError as exc:
        fail(exc.message)

    if as_json:
        output_json(key)
    else:
        typer.echo(key.serialize())


@app.command("next-run")
def next_run_cmd(
    after: str | None = typer.Option(None, "--after", help="Reference time, ISO 8601 (default: now)."),
    count: int = typer.Option(1, "--count", "-n", min=1, help="Number of upcoming ticks."),
    pipeline_file: Path | None = _PIPELINE,
) -> None:
    """Show the next scheduled fire times."""
    from nightshift.orchestration.triggers import ScheduledTrigger

    pipeline = load_pipeline(get_settings(), pipeline_file)
    schedules = [t for t in pipeline.triggers if isinstance(t, ScheduledTrigger)]
    if not schedules:
        fail(f"Pipeline {pipeline.name!r} has no schedule trigger")

    rows = []
    for rule in schedules:
        when = parse_time(after)
        for _ in range(count):
            when = rule.next_fire(when)
            rows.append({"cron": rule.cron, "next": when.isoformat()})
    if len(rows) == 1:
        print_dict(rows[0], title=pipeline.name)
    else:
        print_table(rows, title=pipeline.name)

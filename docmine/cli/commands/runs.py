"""Runs commands: browse the pipeline run log."""

from __future__ import annotations

import click
from rich.markup import escape
from rich.table import Table

from docmine.cli.helpers import fail, format_time
from docmine.cli.types import AppEnv
from docmine.errors import DocmineError

_STATUS_STYLE = {"completed": "green", "failed": "red", "running": "yellow"}


def _status(status: str) -> str:
    style = _STATUS_STYLE.get(status)
    return f"[{style}]{status}[/{style}]" if style else status


@click.group("runs")
def runs_group() -> None:
    """Inspect pipeline run logs."""


@runs_group.command("list")
@click.option("--instance", help="Only runs of one instance")
@click.option("--limit", type=click.IntRange(min=1), default=20, show_default=True)
@click.pass_obj
def runs_list(env: AppEnv, instance: str | None, limit: int) -> None:
    """List recent runs, newest first."""
    try:
        runs = env.store.list_run_logs(instance_id=instance, limit=limit)
    except DocmineError as exc:
        fail("runs list", str(exc))
    if not runs:
        env.console.print("No pipeline runs recorded.")
        return
    table = Table(title="Pipeline runs", show_lines=False)
    table.add_column("ID", justify="right", style="cyan")
    table.add_column("Instance")
    table.add_column("Batch")
    table.add_column("Status")
    table.add_column("Msgs", justify="right")
    table.add_column("Threads", justify="right")
    table.add_column("Proposals", justify="right")
    table.add_column("Started")
    for run in runs:
        table.add_row(
            str(run.id),
            run.instance_id,
            run.batch_id,
            _status(run.status),
            str(run.input_messages),
            str(run.output_threads if run.output_threads is not None else "-"),
            str(run.output_proposals if run.output_proposals is not None else "-"),
            format_time(run.started_at),
        )
    env.console.print(table)


@runs_group.command("show")
@click.argument("run_id", type=int)
@click.pass_obj
def runs_show(env: AppEnv, run_id: int) -> None:
    """Show one run with its per-step outcomes."""
    try:
        run = env.store.get_run_log(run_id)
    except DocmineError as exc:
        fail("runs show", str(exc))
    if run is None:
        fail("runs show", f"no run with id {run_id}")

    console = env.console
    console.print(f"Run {run.id}  {_status(run.status)}")
    console.print(f"Instance: {run.instance_id}  Pipeline: {run.pipeline_id}  Batch: {run.batch_id}")
    console.print(f"Started: {format_time(run.started_at)}  Completed: {format_time(run.completed_at)}")
    console.print(
        f"Messages: {run.input_messages}  Threads: {run.output_threads or 0}  "
        f"Proposals: {run.output_proposals or 0}  Duration: {run.total_duration_ms or 0} ms"
    )
    console.print(f"Model calls: {run.llm_calls or 0}  Tokens: {run.llm_tokens_used or 0}")

    if run.steps:
        table = Table(title="Steps", show_lines=False)
        table.add_column("Step", style="cyan")
        table.add_column("Type")
        table.add_column("Status")
        table.add_column("In", justify="right")
        table.add_column("Out", justify="right")
        table.add_column("Attempts", justify="right")
        table.add_column("ms", justify="right")
        for step in run.steps:
            table.add_row(
                str(step.get("stepId", "")),
                str(step.get("stepType", "")),
                _status(str(step.get("status", ""))),
                str(step.get("inputCount", 0)),
                str(step.get("outputCount", 0)),
                str(step.get("attempts", 0)),
                str(step.get("durationMs", 0)),
            )
        console.print(table)
    if run.error_message:
        console.print(f"[red]Errors:[/red] {escape(run.error_message)}")

"""Watermark commands: inspect and (explicitly) move stream cursors."""

from __future__ import annotations

import click
from rich.table import Table

from docmine.cli.helpers import fail, format_time
from docmine.cli.types import AppEnv
from docmine.errors import DocmineError
from docmine.lib.timestamps import parse_iso, to_iso


@click.group("watermark")
def watermark_group() -> None:
    """Inspect or move per-stream processing watermarks."""


@watermark_group.command("show")
@click.argument("stream", required=False)
@click.pass_obj
def watermark_show(env: AppEnv, stream: str | None) -> None:
    """Show the watermark of STREAM, or of every known stream."""
    try:
        if stream:
            watermark = env.store.get_watermark(stream)
            watermarks = [watermark] if watermark else []
        else:
            watermarks = env.store.list_watermarks()
    except DocmineError as exc:
        fail("watermark show", str(exc))
    if not watermarks:
        env.console.print(f"No watermark for {stream}." if stream else "No watermarks recorded.")
        return
    table = Table(title="Watermarks", show_lines=False)
    table.add_column("Stream", style="cyan")
    table.add_column("Watermark")
    table.add_column("Last batch")
    for watermark in watermarks:
        table.add_row(watermark.stream_id, format_time(watermark.watermark_time), format_time(watermark.last_processed_batch))
    env.console.print(table)


@watermark_group.command("set")
@click.argument("stream")
@click.argument("iso_time")
@click.option("--force", is_flag=True, help="Allow moving the watermark backwards")
@click.pass_obj
def watermark_set(env: AppEnv, stream: str, iso_time: str, force: bool) -> None:
    """Set STREAM's watermark to ISO_TIME.

    Moving a watermark backwards re-processes the windows in between and
    needs --force. Moving it forward skips those windows for good.
    """
    try:
        target = parse_iso(iso_time)
    except ValueError:
        fail("watermark set", f"invalid ISO-8601 time: {iso_time}")

    try:
        current = env.store.get_watermark(stream)
        if current is not None and target < current.watermark_time:
            if not force:
                fail(
                    "watermark set",
                    f"{to_iso(target)} is before the current watermark {to_iso(current.watermark_time)}; "
                    "pass --force to move it backwards",
                )
        updated = env.store.reset_watermark(stream, target)
    except DocmineError as exc:
        fail("watermark set", str(exc))
    env.console.print(f"Watermark for {stream} set to {to_iso(updated.watermark_time)}")

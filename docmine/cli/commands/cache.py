"""Cache commands: inspect and expire the model response cache."""

from __future__ import annotations

import click
from rich.markup import escape
from rich.table import Table

from docmine.cache.store import CACHE_PURPOSES, CacheEntry
from docmine.cli.helpers import fail, format_bytes, truncate
from docmine.cli.types import AppEnv

_PURPOSE_CHOICE = click.Choice(list(CACHE_PURPOSES))


def _entries_table(title: str, entries: list[CacheEntry]) -> Table:
    table = Table(title=title, show_lines=False)
    table.add_column("Hash", style="cyan")
    table.add_column("Purpose")
    table.add_column("Created")
    table.add_column("Model")
    table.add_column("Tokens", justify="right")
    table.add_column("Prompt")
    for entry in entries:
        table.add_row(
            entry.hash[:12],
            entry.purpose,
            entry.timestamp,
            entry.model or "-",
            str(entry.tokens_used) if entry.tokens_used is not None else "-",
            escape(truncate(entry.prompt, 40)),
        )
    return table


@click.group("cache")
def cache_group() -> None:
    """Inspect and expire cached model responses."""


@cache_group.command("stats")
@click.pass_obj
def cache_stats(env: AppEnv) -> None:
    """Show entry counts per purpose and total size on disk."""
    stats = env.cache.stats()
    table = Table(title=f"Response cache ({env.cache.root})", show_lines=False)
    table.add_column("Purpose", style="cyan")
    table.add_column("Entries", justify="right")
    for purpose, count in stats.by_purpose.items():
        table.add_row(purpose, str(count))
    env.console.print(table)
    env.console.print(f"Total: {stats.total_cached} entries, {format_bytes(stats.total_size_bytes)}")
    if not env.cache.enabled:
        env.console.print("[yellow]Cache is disabled (DOCMINE_CACHE_ENABLED=false)[/yellow]")


@cache_group.command("list")
@click.option("--purpose", type=_PURPOSE_CHOICE, help="Only list one purpose")
@click.option("--limit", type=int, default=50, show_default=True)
@click.pass_obj
def cache_list(env: AppEnv, purpose: str | None, limit: int) -> None:
    """List cached entries, newest first."""
    entries = env.cache.list_by_purpose(purpose) if purpose else env.cache.list_all()
    if not entries:
        env.console.print("No cached entries.")
        return
    env.console.print(_entries_table("Cached responses", entries[:limit]))
    if len(entries) > limit:
        env.console.print(f"... {len(entries) - limit} more")


@cache_group.command("search")
@click.argument("text")
@click.option("--purpose", type=_PURPOSE_CHOICE, help="Only search one purpose")
@click.pass_obj
def cache_search(env: AppEnv, text: str, purpose: str | None) -> None:
    """Find entries whose prompt or response contains TEXT."""
    entries = env.cache.search(text, purpose)
    if not entries:
        env.console.print(f"No cached entries match {escape(text)!r}.")
        return
    env.console.print(_entries_table(f"Matches for {escape(text)!r}", entries))


@cache_group.command("clear")
@click.option("--purpose", type=_PURPOSE_CHOICE, help="Delete every entry of one purpose")
@click.option("--older-than", type=float, help="Delete entries older than DAYS")
@click.option("--all", "clear_everything", is_flag=True, help="Delete every entry")
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
@click.pass_obj
def cache_clear(
    env: AppEnv,
    purpose: str | None,
    older_than: float | None,
    clear_everything: bool,
    yes: bool,
) -> None:
    """Delete cached entries. Exactly one selector is required."""
    selectors = [purpose is not None, older_than is not None, clear_everything]
    if sum(selectors) != 1:
        fail("cache clear", "choose exactly one of --purpose, --older-than or --all")
    if older_than is not None and older_than < 0:
        fail("cache clear", "--older-than must be non-negative")

    if purpose is not None:
        description = f"all {purpose} entries"
    elif older_than is not None:
        description = f"entries older than {older_than:g} days"
    else:
        description = "every cached entry"
    if not yes and not click.confirm(f"Delete {description}?", default=False):
        env.console.print("Aborted.")
        return

    if purpose is not None:
        removed = env.cache.clear_purpose(purpose)
    elif older_than is not None:
        removed = env.cache.clear_older_than(older_than)
    else:
        removed = env.cache.clear_all()
    env.console.print(f"Removed {removed} cached entries.")

"""CLI entrypoint."""

from __future__ import annotations

from pathlib import Path

import click
from rich.console import Console

from docmine import __version__
from docmine.cache.store import ResponseCache
from docmine.cli.commands import cache_group, config_group, runs_group, watermark_group
from docmine.cli.types import AppEnv
from docmine.lib.log import configure_logging
from docmine.settings import load_settings
from docmine.storage.repository import PipelineStore


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(__version__, prog_name="docmine")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.option("--json-logs", is_flag=True, help="Emit logs as JSON lines on stderr")
@click.option("--db", "db_path", type=click.Path(path_type=Path), help="Path to the sqlite database")
@click.option("--cache-dir", type=click.Path(path_type=Path), help="Response cache directory")
@click.option("--config-root", type=click.Path(path_type=Path), help="Pipeline configuration root")
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    json_logs: bool,
    db_path: Path | None,
    cache_dir: Path | None,
    config_root: Path | None,
) -> None:
    """Mine chat history for documentation changes."""
    configure_logging(verbose=verbose, json_logs=json_logs)
    settings = load_settings(db_path=db_path, cache_dir=cache_dir, config_root=config_root)
    ctx.obj = AppEnv(
        console=Console(),
        settings=settings,
        store=PipelineStore(settings.db_path),
        cache=ResponseCache(settings.cache_dir, enabled=settings.cache_enabled),
    )


cli.add_command(cache_group)
cli.add_command(runs_group)
cli.add_command(watermark_group)
cli.add_command(config_group)


def main() -> None:
    cli()


__all__ = ["cli", "main"]

"""Config commands: show resolved pipeline configs and validate files."""

from __future__ import annotations

from pathlib import Path

import click
from rich.markup import escape

from docmine.cli.helpers import fail
from docmine.cli.types import AppEnv
from docmine.errors import ConfigError
from docmine.lib.json import JSONDecodeError, dumps, loads
from docmine.pipeline.config import PipelineConfigLoader, validate_pipeline_config
from docmine.pipeline.factory import create_default_registry


@click.group("config")
def config_group() -> None:
    """Show and validate pipeline configuration."""


@config_group.command("show")
@click.argument("instance")
@click.option("--pipeline", "pipeline_id", help="Pipeline id (defaults to 'default')")
@click.pass_obj
def config_show(env: AppEnv, instance: str, pipeline_id: str | None) -> None:
    """Print the effective pipeline config for INSTANCE as JSON."""
    loader = PipelineConfigLoader(env.settings.config_root)
    try:
        config = loader.load(instance, pipeline_id)
    except ConfigError as exc:
        fail("config show", str(exc))
    click.echo(dumps(config.to_json_dict(), indent=True))

    registry = create_default_registry()
    unknown = [step.step_id for step in config.enabled_steps() if not registry.has(step.step_type)]
    if unknown:
        env.console.print(f"[yellow]Unknown step types will be skipped: {escape(', '.join(unknown))}[/yellow]")


@config_group.command("validate")
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_obj
def config_validate(env: AppEnv, file: Path) -> None:
    """Check a pipeline config FILE against the schema."""
    try:
        payload = loads(file.read_bytes())
    except (OSError, JSONDecodeError) as exc:
        fail("config validate", f"cannot read {file}: {exc}")
    valid, errors = validate_pipeline_config(payload)
    if not valid:
        for error in errors:
            env.console.print(f"[red]✗[/red] {escape(error)}")
        fail("config validate", f"{file} is invalid ({len(errors)} problem(s))")
    env.console.print(f"[green]✓[/green] {file} is a valid pipeline config")

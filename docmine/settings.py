"""Processor settings using Pydantic Settings for automatic env var support."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from docmine import paths


class ProcessorSettings(BaseSettings):
    """Knobs for the batch scheduler and the shared stores.

    Every field can be set through ``DOCMINE_<FIELD>`` environment
    variables, e.g. ``DOCMINE_BATCH_WINDOW_HOURS=12``.
    """

    batch_window_hours: float = Field(default=24, gt=0)
    context_window_hours: float = Field(default=24, ge=0)
    max_batch_size: int = Field(default=30, ge=1)
    max_context_messages: int = Field(default=100, ge=0)
    initial_lookback_days: float = Field(default=7, ge=0)

    config_root: Path = Field(default_factory=lambda: paths.config_home() / "config")
    db_path: Path = Field(default_factory=lambda: paths.data_home() / "docmine.db")
    cache_dir: Path = Field(default_factory=lambda: paths.cache_home() / "llm")
    cache_enabled: bool = True

    @field_validator("config_root", "db_path", "cache_dir", mode="before")
    @classmethod
    def expand_path(cls, v: Any) -> Any:
        if isinstance(v, str):
            return Path(v).expanduser()
        if isinstance(v, Path):
            return v.expanduser()
        return v

    model_config = SettingsConfigDict(env_prefix="DOCMINE_", extra="ignore")


def load_settings(**overrides: Any) -> ProcessorSettings:
    """Build settings from the environment, letting explicit keyword values win."""
    cleaned = {key: value for key, value in overrides.items() if value is not None}
    return ProcessorSettings(**cleaned)


__all__ = ["ProcessorSettings", "load_settings"]

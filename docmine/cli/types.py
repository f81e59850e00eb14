"""CLI types."""

from __future__ import annotations

from dataclasses import dataclass

from rich.console import Console

from docmine.cache.store import ResponseCache
from docmine.settings import ProcessorSettings
from docmine.storage.repository import PipelineStore


@dataclass
class AppEnv:
    console: Console
    settings: ProcessorSettings
    store: PipelineStore
    cache: ResponseCache

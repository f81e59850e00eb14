"""Structured logging for pipeline runs.

Every record carries the run it belongs to (``instance_id``, ``batch_id``,
``pipeline_id``) once :func:`bind_run` is active. Prompt and response
bodies are clipped so a single model call cannot flood the log.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator, MutableMapping
from contextlib import contextmanager
from typing import Any

import structlog
from structlog.contextvars import bound_contextvars
from structlog.types import Processor

from docmine.lib.json import dumps

MAX_VALUE_CHARS = 500


def clip_long_values(_logger: Any, _method: str, event_dict: MutableMapping[str, Any]) -> MutableMapping[str, Any]:
    """Shorten string values past ``MAX_VALUE_CHARS``; the event itself is left whole."""
    for key, value in event_dict.items():
        if key != "event" and isinstance(value, str) and len(value) > MAX_VALUE_CHARS:
            event_dict[key] = f"{value[:MAX_VALUE_CHARS]}... (+{len(value) - MAX_VALUE_CHARS} chars)"
    return event_dict


def drop_unset(_logger: Any, _method: str, event_dict: MutableMapping[str, Any]) -> MutableMapping[str, Any]:
    """Remove keys bound to ``None`` (optional ids such as a missing run id)."""
    for key in [k for k, v in event_dict.items() if v is None]:
        del event_dict[key]
    return event_dict


def _stderr_logger(*_args: Any) -> structlog.PrintLogger:
    # Resolved per logger so a swapped sys.stderr (CliRunner, capsys) is honoured.
    return structlog.PrintLogger(sys.stderr)


def configure_logging(verbose: bool = False, json_logs: bool = False) -> None:
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        drop_unset,
        clip_long_values,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    if json_logs:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer(serializer=dumps)]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(logging.DEBUG if verbose else logging.INFO),
        context_class=dict,
        logger_factory=_stderr_logger,
        cache_logger_on_first_use=False,
    )


@contextmanager
def bind_run(*, instance_id: str, batch_id: str, pipeline_id: str, **extra: Any) -> Iterator[None]:
    """Attach the identifiers of one pipeline run to every record logged inside the block."""
    with bound_contextvars(instance_id=instance_id, batch_id=batch_id, pipeline_id=pipeline_id, **extra):
        yield


def get_logger(name: str | None = None) -> Any:
    return structlog.get_logger(name)


__all__ = ["MAX_VALUE_CHARS", "bind_run", "clip_long_values", "configure_logging", "drop_unset", "get_logger"]

"""Shared helpers for CLI commands."""

from __future__ import annotations

from datetime import datetime
from typing import NoReturn

from docmine.lib.timestamps import to_iso


def fail(command: str, message: str) -> NoReturn:
    raise SystemExit(f"{command}: {message}")


def format_time(value: datetime | None) -> str:
    return to_iso(value) if value is not None else "-"


def format_bytes(size: int) -> str:
    value = float(size)
    for unit in ("B", "KiB", "MiB"):
        if value < 1024:
            return f"{value:.0f} {unit}" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} GiB"


def truncate(text: str, width: int = 60) -> str:
    flat = " ".join(text.split())
    return flat if len(flat) <= width else flat[: width - 1] + "…"


__all__ = ["fail", "format_bytes", "format_time", "truncate"]

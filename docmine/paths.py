"""Shared filesystem paths for docmine."""

from __future__ import annotations

import os
from pathlib import Path


def _xdg_path(env_var: str, fallback: Path) -> Path:
    raw = os.environ.get(env_var)
    if raw:
        return Path(raw).expanduser()
    return fallback


def config_home() -> Path:
    return _xdg_path("XDG_CONFIG_HOME", Path.home() / ".config") / "docmine"


def data_home() -> Path:
    return _xdg_path("XDG_DATA_HOME", Path.home() / ".local/share") / "docmine"


def cache_home() -> Path:
    return _xdg_path("XDG_CACHE_HOME", Path.home() / ".cache") / "docmine"


CONFIG_HOME = config_home()
DATA_HOME = data_home()
CACHE_HOME = cache_home()


__all__ = [
    "CACHE_HOME",
    "CONFIG_HOME",
    "DATA_HOME",
    "cache_home",
    "config_home",
    "data_home",
]

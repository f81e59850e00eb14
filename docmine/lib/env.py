"""Environment variable utilities with DOCMINE_* precedence."""

from __future__ import annotations

import os


def get_env(key: str, default: str | None = None) -> str | None:
    """Get environment variable with DOCMINE_* precedence.

    Checks DOCMINE_{KEY} first, then {KEY}, then returns default.

    Examples:
        >>> os.environ["LLM_CACHE_ENABLED"] = "false"
        >>> get_env("LLM_CACHE_ENABLED")
        'false'
    """
    return os.environ.get(f"DOCMINE_{key}") or os.environ.get(key) or default


__all__ = ["get_env"]

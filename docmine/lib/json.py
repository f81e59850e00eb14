"""Central JSON utilities using orjson."""

from __future__ import annotations

from decimal import Decimal
from pathlib import Path
from typing import Any, Callable

import orjson

JSONDecodeError = orjson.JSONDecodeError

def _default_encoder(user_default: Callable[[Any], Any] | None = None) -> Callable[[Any], Any]:
    """Create an encoder for values orjson does not handle natively."""

    def _encoder(obj: Any) -> Any:
        if user_default is not None:
            try:
                return user_default(obj)
            except TypeError:
                pass
        if isinstance(obj, Decimal):
            return float(obj)
        if isinstance(obj, Path):
            return str(obj)
        if hasattr(obj, "model_dump"):
            return obj.model_dump(mode="json", by_alias=True)
        raise TypeError(f"Object of type {obj.__class__.__name__} is not JSON serializable")

    return _encoder

def dumps(obj: Any, *, default: Callable[[Any], Any] | None = None, indent: bool = False) -> str:
    """Dump object to a JSON string."""
    option = orjson.OPT_INDENT_2 if indent else None
    return orjson.dumps(obj, default=_default_encoder(default), option=option).decode("utf-8")

def loads(obj: str | bytes) -> Any:
    """Load object from JSON string or bytes.

    Raises ``JSONDecodeError`` (a ``ValueError`` subclass) on malformed input.
    """
    return orjson.loads(obj)

__all__ = ["JSONDecodeError", "dumps", "loads"]

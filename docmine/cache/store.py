"""Content-addressed response cache for model calls.

Entries live on disk as ``<root>/<purpose>/<sha256(prompt)>.json``. The key
depends only on the fully rendered prompt text, so identical requests made
by different runs share one entry, and writes from concurrent runs never
collide on different keys.

The cache is purely additive: read failures degrade to a miss and write
failures are logged, so a broken cache never blocks the pipeline.
"""

from __future__ import annotations

import os
import tempfile
import threading
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from docmine.lib.hashing import hash_text
from docmine.lib.json import dumps, loads
from docmine.lib.log import get_logger
from docmine.lib.timestamps import parse_iso, to_iso, utcnow

logger = get_logger(__name__)

CACHE_PURPOSES: tuple[str, ...] = (
    "classification",
    "enrichment",
    "generation",
    "review",
    "validation",
    "condensation",
    "general",
)


class CacheEntry(BaseModel):
    """One cached model response. Files use the camelCase key names."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    hash: str
    purpose: str
    prompt: str
    response: str
    timestamp: str
    model: str | None = None
    tokens_used: int | None = Field(default=None, alias="tokensUsed")
    message_id: str | None = Field(default=None, alias="messageId")

    @property
    def created_at(self) -> datetime:
        return parse_iso(self.timestamp)


class CacheStats(BaseModel):
    total_cached: int = 0
    by_purpose: dict[str, int] = Field(default_factory=dict)
    total_size_bytes: int = 0


def _check_purpose(purpose: str) -> str:
    if purpose not in CACHE_PURPOSES:
        raise ValueError(f"Unknown cache purpose: {purpose!r} (expected one of {', '.join(CACHE_PURPOSES)})")
    return purpose


class ResponseCache:
    """File-backed cache keyed by ``(hash(prompt), purpose)``.

    A disabled cache answers every lookup with a miss and ignores writes.
    """

    def __init__(self, root: Path, *, enabled: bool = True) -> None:
        self.root = Path(root)
        self.enabled = enabled
        self._write_lock = threading.Lock()

    def __repr__(self) -> str:
        return f"ResponseCache(root={self.root!s}, enabled={self.enabled})"

    # ------------------------------------------------------------------
    # Core contract
    # ------------------------------------------------------------------

    def path_for(self, prompt: str, purpose: str) -> Path:
        return self.root / _check_purpose(purpose) / f"{hash_text(prompt)}.json"

    def has(self, prompt: str, purpose: str) -> bool:
        if not self.enabled:
            return False
        return self.path_for(prompt, purpose).exists()

    def get(self, prompt: str, purpose: str) -> CacheEntry | None:
        if not self.enabled:
            return None
        path = self.path_for(prompt, purpose)
        if not path.exists():
            return None
        entry = self._read(path)
        if entry is not None:
            logger.debug("cache hit", purpose=purpose, hash=entry.hash[:12])
        return entry

    def set(
        self,
        prompt: str,
        response: str,
        purpose: str,
        *,
        model: str | None = None,
        tokens_used: int | None = None,
        message_id: str | None = None,
    ) -> CacheEntry | None:
        """Persist an entry, overwriting any previous one for the same key.

        Returns the stored entry, or ``None`` when the cache is disabled or
        the write failed.
        """
        if not self.enabled:
            return None
        path = self.path_for(prompt, purpose)
        entry = CacheEntry(
            hash=path.stem,
            purpose=purpose,
            prompt=prompt,
            response=response,
            timestamp=to_iso(utcnow()),
            model=model,
            tokens_used=tokens_used,
            message_id=message_id,
        )
        try:
            self._write(path, entry)
        except OSError as exc:
            logger.warning("cache write failed", purpose=purpose, path=str(path), error=str(exc))
            return None
        logger.debug("cache store", purpose=purpose, hash=entry.hash[:12])
        return entry

    # ------------------------------------------------------------------
    # Operator inspection
    # ------------------------------------------------------------------

    def list_by_purpose(self, purpose: str) -> list[CacheEntry]:
        """Entries for one purpose, newest first. Non-JSON files are ignored."""
        directory = self.root / _check_purpose(purpose)
        if not directory.is_dir():
            return []
        entries = [entry for path in directory.glob("*.json") if (entry := self._read(path)) is not None]
        entries.sort(key=lambda entry: entry.timestamp, reverse=True)
        return entries

    def list_all(self) -> list[CacheEntry]:
        entries: list[CacheEntry] = []
        for purpose in CACHE_PURPOSES:
            entries.extend(self.list_by_purpose(purpose))
        entries.sort(key=lambda entry: entry.timestamp, reverse=True)
        return entries

    def stats(self) -> CacheStats:
        stats = CacheStats()
        for purpose in CACHE_PURPOSES:
            directory = self.root / purpose
            files = list(directory.glob("*.json")) if directory.is_dir() else []
            stats.by_purpose[purpose] = len(files)
            stats.total_cached += len(files)
            for path in files:
                try:
                    stats.total_size_bytes += path.stat().st_size
                except OSError:
                    continue
        return stats

    def search(self, text: str, purpose: str | None = None) -> list[CacheEntry]:
        """Case-insensitive substring search over prompts and responses."""
        needle = text.lower()
        pool = self.list_by_purpose(purpose) if purpose else self.list_all()
        return [entry for entry in pool if needle in entry.prompt.lower() or needle in entry.response.lower()]

    def find_by_message_id(self, message_id: str) -> list[CacheEntry]:
        return [entry for entry in self.list_all() if entry.message_id == message_id]

    # ------------------------------------------------------------------
    # Explicit expiry
    # ------------------------------------------------------------------

    def clear_purpose(self, purpose: str) -> int:
        if not self.enabled:
            return 0
        directory = self.root / _check_purpose(purpose)
        if not directory.is_dir():
            return 0
        removed = 0
        for path in directory.glob("*.json"):
            if self._unlink(path):
                removed += 1
        logger.info("cache cleared", purpose=purpose, removed=removed)
        return removed

    def clear_all(self) -> int:
        return sum(self.clear_purpose(purpose) for purpose in CACHE_PURPOSES)

    def clear_older_than(self, days: float, *, now: datetime | None = None) -> int:
        """Delete entries whose timestamp is more than ``days`` before ``now``."""
        if not self.enabled:
            return 0
        cutoff = (now or utcnow()) - timedelta(days=days)
        removed = 0
        for purpose in CACHE_PURPOSES:
            directory = self.root / purpose
            if not directory.is_dir():
                continue
            for path in directory.glob("*.json"):
                entry = self._read(path)
                if entry is None:
                    continue
                try:
                    created = entry.created_at
                except ValueError:
                    continue
                if created < cutoff and self._unlink(path):
                    removed += 1
        logger.info("cache expired", days=days, removed=removed)
        return removed

    # ------------------------------------------------------------------
    # File I/O
    # ------------------------------------------------------------------

    def _read(self, path: Path) -> CacheEntry | None:
        try:
            payload: Any = loads(path.read_bytes())
            return CacheEntry.model_validate(payload)
        except (OSError, ValueError) as exc:
            logger.warning("cache read failed", path=str(path), error=str(exc))
            return None

    def _write(self, path: Path, entry: CacheEntry) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        data = dumps(entry.model_dump(by_alias=True, exclude_none=True), indent=True)
        with self._write_lock:
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(data)
                os.replace(tmp_name, path)
            except OSError:
                Path(tmp_name).unlink(missing_ok=True)
                raise

    def _unlink(self, path: Path) -> bool:
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as exc:
            logger.warning("cache delete failed", path=str(path), error=str(exc))
            return False


__all__ = ["CACHE_PURPOSES", "CacheEntry", "CacheStats", "ResponseCache"]

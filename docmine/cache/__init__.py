"""Response cache for model invocations."""

from docmine.cache.store import CACHE_PURPOSES, CacheEntry, CacheStats, ResponseCache

__all__ = ["CACHE_PURPOSES", "CacheEntry", "CacheStats", "ResponseCache"]

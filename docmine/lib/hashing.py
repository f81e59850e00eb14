"""SHA-256 hashing helpers used for content addressing."""

from __future__ import annotations

import hashlib
import unicodedata


def hash_text(text: str) -> str:
    """Hash UTF-8 text to full SHA-256 hex digest (64 chars).

    Applies NFC Unicode normalization so visually identical prompts map to
    the same cache key regardless of how they were composed.
    """
    normalized = unicodedata.normalize("NFC", text)
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


__all__ = ["hash_text"]

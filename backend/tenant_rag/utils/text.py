"""Text processing helpers."""

from __future__ import annotations

import re

WHITESPACE_RE = re.compile(r"\s+")
_UNSAFE_KEY_RE = re.compile(r"[^a-z0-9]", re.IGNORECASE)


def normalize(text: str) -> str:
    """Collapse whitespace and strip."""
    return WHITESPACE_RE.sub(" ", text).strip()


def match_key(text: str) -> str:
    """Key used for case-insensitive exact matching of short phrases."""
    return text.strip().casefold()


def slugify(value: str, max_length: int = 50) -> str:
    """Blob-key-safe rendition of a URL or file name."""
    return _UNSAFE_KEY_RE.sub("_", value)[:max_length]


__all__ = ["normalize", "match_key", "slugify"]

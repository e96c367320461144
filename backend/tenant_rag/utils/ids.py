"""ID and fingerprint helpers."""

from __future__ import annotations

import hashlib
import uuid


def new_id(prefix: str | None = None) -> str:
    """Generate a random UUID4 string with optional prefix."""
    base = uuid.uuid4().hex
    return f"{prefix}_{base}" if prefix else base


def fingerprint(text: str) -> str:
    """Stable hex digest of ``text`` after trimming and case folding."""
    return hashlib.sha256(text.strip().casefold().encode("utf-8")).hexdigest()


__all__ = ["new_id", "fingerprint"]

"""Content fingerprints used for change detection."""

from __future__ import annotations

from hashlib import sha256


def hash_content(content: str | None) -> str | None:
    """SHA-256 hex digest of evidence content, None for empty content."""
    if not content:
        return None
    return sha256(content.encode("utf-8")).hexdigest()

"""Hashing utilities."""

from __future__ import annotations

import hashlib

HASH_PREFIX = "sha256:"


def sha256_bytes(data: bytes) -> str:
    """Return hex digest for bytes input."""
    return hashlib.sha256(data).hexdigest()


def content_hash(data: bytes) -> str:
    """Return the prefixed content hash stored in vault metadata."""
    return f"{HASH_PREFIX}{sha256_bytes(data)}"


__all__ = ["content_hash", "sha256_bytes"]

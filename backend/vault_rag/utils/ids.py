"""ID helpers."""

from __future__ import annotations

from pathlib import Path

from vault_rag.utils.hashing import sha256_bytes


def normalize_source_path(path: str) -> str:
    """Use forward slashes and drop colons so the path is safe inside IDs."""
    return path.replace("\\", "/").replace(":", "_")


def chunk_id(source_path: str, start_line: int, end_line: int) -> str:
    """Deterministic chunk ID from source path and 1-based line range."""
    return f"{normalize_source_path(source_path)}:{start_line}:{end_line}"


def vault_key(vault_path: str | Path) -> str:
    """Stable key for a vault root, independent of trailing separators."""
    resolved = Path(vault_path).expanduser().resolve()
    return resolved.as_posix()


def collection_name_for_vault(vault_path: str | Path, prefix: str = "vault") -> str:
    """Vector store collection name for a vault (3-63 chars, alphanumeric ends)."""
    digest = sha256_bytes(vault_key(vault_path).encode("utf-8"))[:16]
    return f"{prefix}_{digest}"


__all__ = ["chunk_id", "collection_name_for_vault", "normalize_source_path", "vault_key"]

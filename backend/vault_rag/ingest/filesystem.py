"""File system access for vault indexing."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Protocol

from vault_rag.utils.hashing import content_hash

MARKDOWN_SUFFIXES = (".md",)
_IGNORED_DIRS = frozenset({".git", ".obsidian", ".trash", "node_modules"})


class FileSystem(Protocol):
    """Vault file access. Paths passed in are absolute."""

    async def list_files(self, root: Path) -> list[Path]: ...

    async def read_bytes(self, path: Path) -> bytes: ...

    async def exists(self, path: Path) -> bool: ...

    async def is_directory(self, path: Path) -> bool: ...


class LocalFileSystem:
    """Local disk implementation; blocking calls run in a worker thread."""

    def __init__(self, suffixes: tuple[str, ...] = MARKDOWN_SUFFIXES) -> None:
        self.suffixes = suffixes

    async def list_files(self, root: Path) -> list[Path]:
        return await asyncio.to_thread(self._walk, root)

    async def read_bytes(self, path: Path) -> bytes:
        return await asyncio.to_thread(path.read_bytes)

    async def exists(self, path: Path) -> bool:
        return await asyncio.to_thread(path.exists)

    async def is_directory(self, path: Path) -> bool:
        return await asyncio.to_thread(path.is_dir)

    def _walk(self, root: Path) -> list[Path]:
        if not root.is_dir():
            return []
        files = []
        for path in root.rglob("*"):
            if any(part in _IGNORED_DIRS for part in path.relative_to(root).parts):
                continue
            if path.is_file() and path.suffix.lower() in self.suffixes:
                files.append(path)
        return sorted(files)


def relative_key(root: Path, path: Path) -> str:
    """Vault-relative path with forward slashes, used as the metadata key."""
    return path.relative_to(root).as_posix()


async def live_file_hashes(fs: FileSystem, root: Path) -> dict[str, str]:
    """Hash every markdown file currently in the vault."""
    hashes: dict[str, str] = {}
    for path in await fs.list_files(root):
        hashes[relative_key(root, path)] = content_hash(await fs.read_bytes(path))
    return hashes


__all__ = ["FileSystem", "LocalFileSystem", "live_file_hashes", "relative_key", "MARKDOWN_SUFFIXES"]

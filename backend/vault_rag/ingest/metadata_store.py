"""Per-vault index metadata persisted as JSON sidecar files."""

from __future__ import annotations

import asyncio
import os
from pathlib import Path

import orjson

from vault_rag.core.logging import get_logger
from vault_rag.models.entities import VaultMetadata
from vault_rag.utils.ids import collection_name_for_vault, vault_key

logger = get_logger(__name__)


class VaultMetadataStore:
    """Read and write ``{vault_path, indexed_file_hashes, last_indexed_at_millis}`` records.

    One file per vault, named after the vault's collection key. Writes go through a
    temporary file and ``os.replace`` so a cancelled pass never leaves a torn record.
    """

    def __init__(self, directory: Path) -> None:
        self.directory = directory

    def path_for(self, vault_path: str | Path) -> Path:
        return self.directory / f"{collection_name_for_vault(vault_path)}.json"

    async def load(self, vault_path: str | Path) -> VaultMetadata | None:
        return await asyncio.to_thread(self._load, vault_path)

    async def save(self, metadata: VaultMetadata) -> None:
        await asyncio.to_thread(self._save, metadata)

    async def delete(self, vault_path: str | Path) -> None:
        await asyncio.to_thread(self.path_for(vault_path).unlink, True)

    def _load(self, vault_path: str | Path) -> VaultMetadata | None:
        path = self.path_for(vault_path)
        if not path.exists():
            return None
        try:
            raw = orjson.loads(path.read_bytes())
        except orjson.JSONDecodeError as exc:
            logger.warning("Ignoring unreadable metadata file %s: %s", path, exc)
            return None
        hashes = raw.get("indexed_file_hashes") or {}
        return VaultMetadata(
            vault_path=str(raw.get("vault_path") or vault_key(vault_path)),
            indexed_file_hashes={str(key): str(value) for key, value in hashes.items()},
            last_indexed_at_millis=int(raw.get("last_indexed_at_millis") or 0),
        )

    def _save(self, metadata: VaultMetadata) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self.path_for(metadata.vault_path)
        payload = {
            "vault_path": vault_key(metadata.vault_path),
            "indexed_file_hashes": metadata.indexed_file_hashes,
            "last_indexed_at_millis": metadata.last_indexed_at_millis,
        }
        tmp_path = path.with_suffix(".json.tmp")
        tmp_path.write_bytes(orjson.dumps(payload, option=orjson.OPT_INDENT_2 | orjson.OPT_SORT_KEYS))
        os.replace(tmp_path, path)


__all__ = ["VaultMetadataStore"]

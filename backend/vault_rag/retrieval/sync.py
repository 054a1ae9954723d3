"""Sync status derivation for indexed vaults."""

from __future__ import annotations

from pathlib import Path
from typing import Mapping

from vault_rag.clients.vector_store import VectorStore
from vault_rag.core.errors import VectorStoreError
from vault_rag.core.logging import get_logger, log_context
from vault_rag.ingest.filesystem import FileSystem, live_file_hashes
from vault_rag.ingest.metadata_store import VaultMetadataStore
from vault_rag.models.entities import SyncReport, SyncStatus
from vault_rag.utils.ids import collection_name_for_vault

logger = get_logger(__name__)


class SyncStatusService:
    """Classify a vault as SYNCED / OUT_OF_SYNC / NOT_INDEXED / UNAVAILABLE.

    Nothing is cached: every call re-checks store reachability and re-hashes the vault,
    so the answer reflects the current state. The check is read-only and may run while
    an index pass is in progress, in which case OUT_OF_SYNC can be reported transiently.
    """

    def __init__(
        self,
        fs: FileSystem,
        vector_store: VectorStore,
        metadata_store: VaultMetadataStore,
        collection_prefix: str = "vault",
    ) -> None:
        self.fs = fs
        self.vector_store = vector_store
        self.metadata_store = metadata_store
        self.collection_prefix = collection_prefix

    async def check_sync_status(self, vault_path: str | Path | None) -> SyncStatus:
        return (await self.check_sync_report(vault_path)).status

    async def check_sync_report(self, vault_path: str | Path | None) -> SyncReport:
        if vault_path is None or not str(vault_path).strip():
            return SyncReport(status=SyncStatus.NOT_INDEXED)
        root = Path(vault_path).expanduser().resolve()
        collection = collection_name_for_vault(root, self.collection_prefix)

        try:
            await self.vector_store.health_check()
            has_data = await self.vector_store.has_data(collection)
        except VectorStoreError as exc:
            if not exc.unreachable:
                raise
            logger.warning("Vector store unreachable: %s", exc, extra=log_context(vault=str(root)))
            return SyncReport(status=SyncStatus.UNAVAILABLE)

        if not has_data:
            return SyncReport(status=SyncStatus.NOT_INDEXED)

        metadata = await self.metadata_store.load(root)
        live = await live_file_hashes(self.fs, root)
        if metadata is None:
            logger.info("Collection %s has data but no metadata record", collection)
            return SyncReport(status=SyncStatus.OUT_OF_SYNC, new_files=sorted(live))

        report = diff_hashes(metadata.indexed_file_hashes, live)
        logger.debug(
            "Sync check for %s: %s",
            root,
            report.status.value,
            extra=log_context(
                new=len(report.new_files),
                modified=len(report.modified_files),
                deleted=len(report.deleted_files),
            ),
        )
        return report

    async def files_to_reindex(self, vault_path: str | Path) -> list[str]:
        """New and modified files, in path order."""
        report = await self.check_sync_report(vault_path)
        return sorted(report.new_files + report.modified_files)


def diff_hashes(indexed: Mapping[str, str], live: Mapping[str, str]) -> SyncReport:
    """Compare recorded hashes to live ones; any difference means OUT_OF_SYNC."""
    new_files = sorted(path for path in live if path not in indexed)
    modified_files = sorted(path for path, digest in live.items() if path in indexed and indexed[path] != digest)
    deleted_files = sorted(path for path in indexed if path not in live)
    status = SyncStatus.OUT_OF_SYNC if new_files or modified_files or deleted_files else SyncStatus.SYNCED
    return SyncReport(
        status=status,
        new_files=new_files,
        modified_files=modified_files,
        deleted_files=deleted_files,
    )


__all__ = ["SyncStatusService", "diff_hashes"]

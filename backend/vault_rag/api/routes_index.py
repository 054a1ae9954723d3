"""Indexing API routes."""

from __future__ import annotations

from pathlib import Path

from fastapi import APIRouter, Depends, HTTPException

from vault_rag.api.dependencies import get_filesystem, get_index_lock, get_indexer, get_sync_service
from vault_rag.core.errors import EmbeddingError, VectorStoreError
from vault_rag.ingest.filesystem import LocalFileSystem
from vault_rag.ingest.indexer import Indexer
from vault_rag.models.dto import IndexReportResponse, IndexRequest, IndexResponse, RemoveFileRequest
from vault_rag.models.entities import IndexReport, SyncStatus
from vault_rag.retrieval.sync import SyncStatusService

router = APIRouter()


@router.post("", response_model=IndexResponse, summary="Index a vault or selected files")
async def index_vault(
    request: IndexRequest,
    indexer: Indexer = Depends(get_indexer),
    sync: SyncStatusService | None = Depends(get_sync_service),
    fs: LocalFileSystem = Depends(get_filesystem),
) -> IndexResponse:
    await _require_vault(fs, request.vault_path)
    async with get_index_lock(request.vault_path):
        try:
            if request.paths:
                report = IndexReport()
                for path in request.paths:
                    _merge(report, await indexer.index_file(request.vault_path, path))
            else:
                report = await indexer.index_vault(request.vault_path)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except (EmbeddingError, VectorStoreError) as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc

    # the status reported after a pass is a fresh check, never assumed
    return IndexResponse(
        report=IndexReportResponse.from_report(report),
        status=await _status(sync, request.vault_path),
    )


@router.delete("/file", response_model=IndexResponse, summary="Remove one file from the index")
async def remove_file(
    request: RemoveFileRequest,
    indexer: Indexer = Depends(get_indexer),
    sync: SyncStatusService | None = Depends(get_sync_service),
    fs: LocalFileSystem = Depends(get_filesystem),
) -> IndexResponse:
    await _require_vault(fs, request.vault_path)
    async with get_index_lock(request.vault_path):
        try:
            report = await indexer.remove_file(request.vault_path, request.path)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except VectorStoreError as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
    return IndexResponse(
        report=IndexReportResponse.from_report(report),
        status=await _status(sync, request.vault_path),
    )


async def _require_vault(fs: LocalFileSystem, vault_path: str) -> None:
    if not await fs.is_directory(Path(vault_path).expanduser()):
        raise HTTPException(status_code=404, detail=f"Vault not found: {vault_path}")


async def _status(sync: SyncStatusService | None, vault_path: str) -> SyncStatus:
    if sync is None:
        return SyncStatus.UNAVAILABLE
    return await sync.check_sync_status(vault_path)


def _merge(total: IndexReport, part: IndexReport) -> None:
    total.indexed += part.indexed
    total.skipped += part.skipped
    total.removed += part.removed
    total.failed += part.failed
    total.chunks += part.chunks
    total.failures.update(part.failures)


__all__ = ["router"]

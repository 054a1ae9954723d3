"""Administrative routes for Vault RAG."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from vault_rag.api.dependencies import (
    get_reranker_choice,
    get_sync_service,
    get_vector_store,
    get_watched_statuses,
    get_web_client,
)
from vault_rag.clients.vector_store import VectorStore
from vault_rag.clients.web_search import WebSearchClient
from vault_rag.core.errors import VectorStoreError
from vault_rag.core.metrics import metrics_response
from vault_rag.models.dto import HealthResponse, SyncResponse
from vault_rag.models.entities import SyncReport, SyncStatus
from vault_rag.retrieval.rerank import RerankerChoice, RerankerKind
from vault_rag.retrieval.sync import SyncStatusService

router = APIRouter()


@router.get("/sync", response_model=SyncResponse, summary="Compare a vault with its index")
async def sync_status(
    vault_path: str | None = Query(default=None),
    service: SyncStatusService | None = Depends(get_sync_service),
) -> SyncResponse:
    if service is None:
        return SyncResponse.from_report(vault_path, SyncReport(status=SyncStatus.UNAVAILABLE))
    return SyncResponse.from_report(vault_path, await service.check_sync_report(vault_path))


@router.get("/sync/watched", summary="Last status published for each watched vault")
async def watched_statuses(
    statuses: dict[str, SyncStatus] = Depends(get_watched_statuses),
) -> dict[str, SyncStatus]:
    return statuses


@router.get("/health", response_model=HealthResponse, summary="Liveness and backend reachability")
async def health(
    store: VectorStore | None = Depends(get_vector_store),
    web_client: WebSearchClient | None = Depends(get_web_client),
    choice: RerankerChoice | None = Depends(get_reranker_choice),
) -> HealthResponse:
    reachable = False
    if store is not None:
        try:
            await store.health_check()
            reachable = True
        except VectorStoreError:
            reachable = False
    return HealthResponse(
        ok=True,
        vector_store=reachable,
        reranker=(choice.kind if choice else RerankerKind.NOOP).value,
        web_search=web_client is not None,
    )


@router.get("/metrics", summary="Prometheus metrics")
async def get_metrics():
    return metrics_response()


__all__ = ["router"]

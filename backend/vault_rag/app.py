"""FastAPI application setup for Vault RAG."""

from __future__ import annotations

import asyncio
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from vault_rag.api.dependencies import (
    close_clients,
    get_app_settings,
    get_sync_service,
    init_reranker,
    record_watched_status,
)
from vault_rag.api.routes_admin import router as admin_router
from vault_rag.api.routes_index import router as index_router
from vault_rag.api.routes_query import router as query_router
from vault_rag.core.logging import configure_logging, get_logger
from vault_rag.ingest.watcher import VaultWatcher

configure_logging()
logger = get_logger(__name__)

app = FastAPI(
    title="Vault RAG",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://127.0.0.1:5174",
        "http://localhost:5174",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(index_router, prefix="/index", tags=["index"])
app.include_router(query_router, prefix="", tags=["query"])
app.include_router(admin_router, prefix="", tags=["admin"])

_WATCHER: VaultWatcher | None = None


@app.on_event("startup")
async def startup() -> None:
    """Resolve the reranker and start watching configured vaults."""
    global _WATCHER
    settings = get_app_settings()
    await init_reranker()
    service = get_sync_service()
    if not settings.watch_enabled or not settings.watch_vaults:
        return
    if service is None:
        logger.warning("Vault watching requested but no vector store is configured")
        return
    _WATCHER = VaultWatcher(service.check_sync_status, asyncio.get_running_loop())
    for vault in settings.watch_vaults:
        _WATCHER.add_vault(Path(vault), record_watched_status)
    _WATCHER.start()
    logger.info("Watching %s vault(s) for changes", len(settings.watch_vaults))


@app.on_event("shutdown")
async def shutdown() -> None:
    global _WATCHER
    if _WATCHER is not None:
        _WATCHER.close()
        _WATCHER = None
    await close_clients()

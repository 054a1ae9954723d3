"""Mode-driven combination of local-note and web retrieval."""

from __future__ import annotations

import asyncio
from pathlib import Path

from vault_rag.clients.web_search import WebSearchClient
from vault_rag.core.errors import RetrievalError, VaultRagError
from vault_rag.core.logging import get_logger, log_context
from vault_rag.core.metrics import RETRIEVAL_FAILURES, RETRIEVAL_LATENCY
from vault_rag.models.entities import RagChunk, RetrievalContext, RetrievalMode, WebSnippet
from vault_rag.retrieval.retriever import RagRetriever, RetrievalOptions, RetrievalRun

logger = get_logger(__name__)


class RetrievalService:
    """Serve NONE / RAG / WEB / HYBRID retrieval.

    A mode whose component is missing degrades to whatever is available. ``RetrievalError``
    is raised only when every source the request ends up using has failed.
    """

    def __init__(
        self,
        rag_retriever: RagRetriever | None,
        web_client: WebSearchClient | None = None,
        web_max_results: int = 5,
    ) -> None:
        self.rag_retriever = rag_retriever
        self.web_client = web_client
        self.web_max_results = web_max_results

    @property
    def has_web(self) -> bool:
        return self.web_client is not None

    async def retrieve(
        self,
        query: str,
        mode: RetrievalMode,
        vault_path: str | Path | None = None,
        options: RetrievalOptions | None = None,
    ) -> RetrievalContext:
        if mode is RetrievalMode.NONE:
            return RetrievalContext()

        use_rag, use_web = self._plan(mode, vault_path)
        with RETRIEVAL_LATENCY.labels(mode=mode.value).time():
            rag_outcome, web_outcome = await asyncio.gather(
                self._run_rag(query, vault_path, options) if use_rag else _nothing(),
                self._run_web(query) if use_web else _nothing(),
                return_exceptions=True,
            )

        failures: list[VaultRagError] = []
        local_chunks: list[RagChunk] = []
        used_reranker = False
        if isinstance(rag_outcome, BaseException):
            failures.append(_absorb(rag_outcome, "rag"))
        elif isinstance(rag_outcome, RetrievalRun):
            local_chunks = rag_outcome.chunks
            used_reranker = rag_outcome.used_reranker

        web_snippets: list[WebSnippet] = []
        if isinstance(web_outcome, BaseException):
            failures.append(_absorb(web_outcome, "web"))
        elif isinstance(web_outcome, list):
            web_snippets = web_outcome

        attempted = int(use_rag) + int(use_web)
        if failures and len(failures) == attempted:
            raise RetrievalError(f"all retrieval sources failed for mode {mode.value}: {failures[0]}") from failures[0]

        # local notes always precede web results
        return RetrievalContext(local_chunks=local_chunks, web_snippets=web_snippets, used_reranker=used_reranker)

    def _plan(self, mode: RetrievalMode, vault_path: str | Path | None) -> tuple[bool, bool]:
        rag_available = self.rag_retriever is not None and vault_path is not None
        web_available = self.web_client is not None
        use_rag = rag_available and mode in (RetrievalMode.RAG, RetrievalMode.HYBRID)
        use_web = web_available and mode in (RetrievalMode.WEB, RetrievalMode.HYBRID)
        if use_rag or use_web:
            return use_rag, use_web
        if rag_available:
            logger.info("Web search unavailable; serving %s request from local notes", mode.value)
            return True, False
        if web_available:
            logger.info("Local index unavailable; serving %s request from web search", mode.value)
            return False, True
        raise RetrievalError(f"no retrieval source available for mode {mode.value}")

    async def _run_rag(
        self,
        query: str,
        vault_path: str | Path | None,
        options: RetrievalOptions | None,
    ) -> RetrievalRun:
        return await self.rag_retriever.run(query, vault_path, options)

    async def _run_web(self, query: str) -> list[WebSnippet]:
        return await self.web_client.search(query, self.web_max_results)


async def _nothing() -> None:
    return None


def _absorb(exc: BaseException, source: str) -> VaultRagError:
    """Log a failed source; anything outside the error taxonomy propagates."""
    if not isinstance(exc, VaultRagError):
        raise exc
    RETRIEVAL_FAILURES.labels(source=source).inc()
    logger.warning("%s retrieval failed: %s", source, exc, extra=log_context(source=source))
    return exc


__all__ = ["RetrievalService"]

"""Local-note retrieval pipeline."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict

from vault_rag.clients.embedders import Embedder
from vault_rag.clients.vector_store import VectorStore
from vault_rag.core.errors import EmbeddingError, RetrievalError, VaultRagError, VectorStoreError
from vault_rag.core.logging import get_logger, log_context
from vault_rag.models.entities import RagChunk, SearchResult
from vault_rag.retrieval.preprocess import QueryPreprocessor
from vault_rag.retrieval.rerank import NoOpReranker, Reranker, RerankerKind, should_rerank
from vault_rag.utils.ids import collection_name_for_vault

logger = get_logger(__name__)


@dataclass(slots=True)
class RetrievalOptions:
    """Per-request overrides of the configured retrieval parameters."""

    max_k: int | None = None
    display_k: int | None = None
    similarity_threshold: float | None = None
    filters: Dict[str, str] | None = None
    rerank: bool | None = None


@dataclass(slots=True)
class RetrievalRun:
    queries: list[str]
    chunks: list[RagChunk]
    used_reranker: bool
    retrieved_count: int
    filtered_count: int
    metadata: Dict[str, str] = field(default_factory=dict)


class RagRetriever:
    """preprocess -> embed + search per query -> merge by max score -> threshold -> rerank -> top display_k.

    Does not generate answers; ``display_k <= max_k`` is guaranteed by settings validation
    and checked again for per-request overrides.
    """

    def __init__(
        self,
        embedder: Embedder,
        vector_store: VectorStore,
        reranker: Reranker | None = None,
        preprocessor: QueryPreprocessor | None = None,
        max_k: int = 10,
        display_k: int = 5,
        similarity_threshold: float = 0.25,
        rerank_enabled: bool = True,
        collection_prefix: str = "vault",
    ) -> None:
        _check_bounds(max_k, display_k)
        self.embedder = embedder
        self.vector_store = vector_store
        self.reranker = reranker or NoOpReranker()
        self.preprocessor = preprocessor
        self.max_k = max_k
        self.display_k = display_k
        self.similarity_threshold = similarity_threshold
        self.rerank_enabled = rerank_enabled
        self.collection_prefix = collection_prefix

    async def retrieve(
        self,
        query: str,
        vault_path: str | Path,
        options: RetrievalOptions | None = None,
    ) -> list[RagChunk]:
        return (await self.run(query, vault_path, options)).chunks

    async def run(
        self,
        query: str,
        vault_path: str | Path,
        options: RetrievalOptions | None = None,
    ) -> RetrievalRun:
        options = options or RetrievalOptions()
        max_k = options.max_k or self.max_k
        display_k = options.display_k or min(self.display_k, max_k)
        _check_bounds(max_k, display_k)
        threshold = self.similarity_threshold if options.similarity_threshold is None else options.similarity_threshold
        collection = collection_name_for_vault(vault_path, self.collection_prefix)

        queries = await self.preprocessor.prepare(query) if self.preprocessor else [query]
        result_sets = await asyncio.gather(
            *(self._search(collection, text, max_k, options.filters) for text in queries)
        )
        candidates = merge_results(result_sets)
        filtered = [result for result in candidates if result.score >= threshold]

        used_reranker = (
            bool(filtered)
            and should_rerank(self.rerank_enabled, options.rerank)
            and self.reranker.kind is not RerankerKind.NOOP
        )
        ranked = filtered
        if used_reranker:
            try:
                ranked = await self.reranker.rerank(queries[0], filtered)
            except VaultRagError as exc:
                logger.warning("Reranking failed, keeping similarity order: %s", exc)
                ranked = filtered

        chunks = [RagChunk.from_result(result) for result in ranked[:display_k]]
        logger.info(
            "Retrieved %s chunks (%s candidates, %s above threshold)",
            len(chunks),
            len(candidates),
            len(filtered),
            extra=log_context(collection=collection, queries=len(queries), reranked=used_reranker),
        )
        return RetrievalRun(
            queries=queries,
            chunks=chunks,
            used_reranker=used_reranker,
            retrieved_count=len(candidates),
            filtered_count=len(filtered),
            metadata={
                "query": query,
                "processedQuery": queries[0],
                "retrievedCount": str(len(candidates)),
                "filteredCount": str(len(filtered)),
                "finalCount": str(len(chunks)),
            },
        )

    async def _search(
        self,
        collection: str,
        text: str,
        max_k: int,
        filters: Dict[str, str] | None,
    ) -> list[SearchResult]:
        try:
            embedding = await self.embedder.embed_query(text)
        except EmbeddingError as exc:
            raise RetrievalError(f"could not embed query: {exc}") from exc
        try:
            return await self.vector_store.search(collection, embedding, max_k, filters)
        except VectorStoreError as exc:
            raise RetrievalError(f"vector search failed: {exc}") from exc


def merge_results(result_sets: list[list[SearchResult]]) -> list[SearchResult]:
    """Union of result sets, one entry per chunk ID holding its best score, best first."""
    best: dict[str, SearchResult] = {}
    for results in result_sets:
        for result in results:
            current = best.get(result.chunk.id)
            if current is None or result.score > current.score:
                best[result.chunk.id] = result
    return sorted(best.values(), key=lambda result: result.score, reverse=True)


def _check_bounds(max_k: int, display_k: int) -> None:
    if max_k < 1 or display_k < 1:
        raise ValueError("max_k and display_k must be positive")
    if display_k > max_k:
        raise ValueError(f"display_k ({display_k}) must not exceed max_k ({max_k})")


__all__ = ["RagRetriever", "RetrievalOptions", "RetrievalRun", "merge_results"]

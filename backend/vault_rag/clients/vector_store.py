"""Vector store contract and an in-process implementation."""

from __future__ import annotations

import math
from typing import Mapping, Protocol, Sequence

from vault_rag.core.errors import VectorStoreError, VectorStoreErrorKind
from vault_rag.models.entities import Chunk, EmbeddedChunk, Embedding, SearchResult


class VectorStore(Protocol):
    """Collection-scoped chunk storage with similarity search.

    ``search`` returns at most ``max_k`` results in descending score order. Failures
    raise ``VectorStoreError`` whose ``kind`` tells outages from rejected requests.
    """

    async def upsert(self, collection: str, items: Sequence[EmbeddedChunk]) -> None: ...

    async def delete(self, collection: str, chunk_ids: Sequence[str]) -> None: ...

    async def delete_by_source(self, collection: str, source_path: str) -> None: ...

    async def search(
        self,
        collection: str,
        query_embedding: Embedding,
        max_k: int,
        filters: Mapping[str, str] | None = None,
    ) -> list[SearchResult]: ...

    async def has_data(self, collection: str) -> bool: ...

    async def health_check(self) -> None: ...

    async def drop_collection(self, collection: str) -> None: ...


class InMemoryVectorStore:
    """Cosine-similarity store kept in process memory."""

    def __init__(self) -> None:
        self._collections: dict[str, dict[str, EmbeddedChunk]] = {}
        self.available = True

    def size(self, collection: str) -> int:
        return len(self._collections.get(collection, {}))

    async def upsert(self, collection: str, items: Sequence[EmbeddedChunk]) -> None:
        self._ensure_available()
        if not items:
            return
        store = self._collections.setdefault(collection, {})
        dim = _dimension(store)
        for item in items:
            if dim is not None and len(item.embedding) != dim:
                raise VectorStoreError(
                    f"Embedding dimension {len(item.embedding)} does not match collection dimension {dim}",
                    VectorStoreErrorKind.INVALID_QUERY,
                )
            dim = len(item.embedding)
            store[item.chunk.id] = EmbeddedChunk(chunk=item.chunk, embedding=list(item.embedding))

    async def delete(self, collection: str, chunk_ids: Sequence[str]) -> None:
        self._ensure_available()
        store = self._collections.get(collection, {})
        for chunk_id in chunk_ids:
            store.pop(chunk_id, None)

    async def delete_by_source(self, collection: str, source_path: str) -> None:
        self._ensure_available()
        store = self._collections.get(collection, {})
        doomed = [key for key, item in store.items() if item.chunk.source_path == source_path]
        for key in doomed:
            del store[key]

    async def search(
        self,
        collection: str,
        query_embedding: Embedding,
        max_k: int,
        filters: Mapping[str, str] | None = None,
    ) -> list[SearchResult]:
        self._ensure_available()
        store = self._collections.get(collection, {})
        if not store or max_k <= 0:
            return []
        dim = _dimension(store)
        if dim is not None and len(query_embedding) != dim:
            raise VectorStoreError("Query vector dimension mismatch", VectorStoreErrorKind.INVALID_QUERY)
        scored = [
            SearchResult(chunk=item.chunk, score=_cosine(item.embedding, query_embedding))
            for item in store.values()
            if _matches(item.chunk, filters)
        ]
        scored.sort(key=lambda result: result.score, reverse=True)
        return scored[:max_k]

    async def has_data(self, collection: str) -> bool:
        self._ensure_available()
        return bool(self._collections.get(collection))

    async def health_check(self) -> None:
        self._ensure_available()

    async def drop_collection(self, collection: str) -> None:
        self._ensure_available()
        self._collections.pop(collection, None)

    def _ensure_available(self) -> None:
        if not self.available:
            raise VectorStoreError("in-memory store marked unavailable", VectorStoreErrorKind.UNREACHABLE)


def _dimension(store: Mapping[str, EmbeddedChunk]) -> int | None:
    for item in store.values():
        return len(item.embedding)
    return None


def _matches(chunk: Chunk, filters: Mapping[str, str] | None) -> bool:
    if not filters:
        return True
    return all(chunk.metadata.get(key) == value for key, value in filters.items())


def _cosine(a: Sequence[float], b: Sequence[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    return dot / norm if norm else 0.0


__all__ = ["VectorStore", "InMemoryVectorStore"]

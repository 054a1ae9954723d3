"""ChromaDB v2 HTTP backend (local server and Chroma Cloud)."""

from __future__ import annotations

from typing import Any, Mapping, Sequence

import httpx

from vault_rag.clients.http import OwnedClient, describe, send_with_retries, status_of
from vault_rag.core.errors import VectorStoreError, VectorStoreErrorKind
from vault_rag.core.logging import get_logger
from vault_rag.models.entities import Chunk, EmbeddedChunk, Embedding, SearchResult

logger = get_logger(__name__)

_INCLUDE = ["documents", "metadatas", "distances"]


class CollectionNotFoundError(VectorStoreError):
    """Chroma answered 404 for a collection or one of its endpoints."""

    def __init__(self, message: str) -> None:
        super().__init__(message, VectorStoreErrorKind.INVALID_QUERY)


class ChromaVectorStore(OwnedClient):
    """Chroma collections addressed by name; collection IDs are resolved once and cached."""

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        tenant: str = "default_tenant",
        database: str = "default_database",
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
        headers: dict[str, str] | None = None,
        retry_attempts: int = 3,
        retry_delay: float = 0.5,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.tenant = tenant
        self.database = database
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay
        self._collection_ids: dict[str, str] = {}
        self._init_client(client, timeout=timeout, headers=headers)

    @property
    def collections_url(self) -> str:
        return f"{self.base_url}/api/v2/tenants/{self.tenant}/databases/{self.database}/collections"

    async def health_check(self) -> None:
        await self._call("GET", f"{self.base_url}/api/v2/heartbeat", label="heartbeat")

    async def upsert(self, collection: str, items: Sequence[EmbeddedChunk]) -> None:
        if not items:
            return
        body = {
            "ids": [item.chunk.id for item in items],
            "embeddings": [list(item.embedding) for item in items],
            "documents": [item.chunk.text for item in items],
            "metadatas": [_to_metadata(item.chunk) for item in items],
        }
        try:
            await self._collection_call(collection, "upsert", body, label="upsert", create=True)
        except CollectionNotFoundError:
            logger.info("Collection %s was dropped; recreating it", collection)
            await self._collection_call(collection, "upsert", body, label="upsert", create=True)
        logger.debug("Upserted %s chunks into %s", len(items), collection)

    async def delete(self, collection: str, chunk_ids: Sequence[str]) -> None:
        if not chunk_ids:
            return
        try:
            await self._collection_call(collection, "delete", {"ids": list(chunk_ids)}, label="delete")
        except CollectionNotFoundError:
            logger.debug("Collection %s is gone; nothing to delete", collection)

    async def delete_by_source(self, collection: str, source_path: str) -> None:
        try:
            await self._collection_call(
                collection,
                "delete",
                {"where": {"filePath": source_path}},
                label="delete by source",
            )
        except CollectionNotFoundError:
            logger.debug("Collection %s is gone; nothing to delete", collection)

    async def search(
        self,
        collection: str,
        query_embedding: Embedding,
        max_k: int,
        filters: Mapping[str, str] | None = None,
    ) -> list[SearchResult]:
        if max_k <= 0:
            return []
        body: dict[str, Any] = {
            "query_embeddings": [list(query_embedding)],
            "n_results": max_k,
            "include": _INCLUDE,
        }
        where = build_where(filters)
        if where is not None:
            body["where"] = where
        try:
            response = await self._collection_call(collection, "query", body, label="query")
        except CollectionNotFoundError:
            return []
        if response is None:
            return []
        results = parse_query_response(response.json())
        return results[:max_k]

    async def has_data(self, collection: str) -> bool:
        try:
            response = await self._collection_call(collection, "count", None, label="count", method="GET")
        except CollectionNotFoundError:
            return False
        if response is None:
            return False
        return int(response.json()) > 0

    async def drop_collection(self, collection: str) -> None:
        try:
            await self._call("DELETE", f"{self.collections_url}/{collection}", label="drop collection")
        except VectorStoreError as exc:
            if not exc.invalid_query:
                raise
            logger.debug("Collection %s already absent", collection)
        self._collection_ids.pop(collection, None)

    async def _collection_call(
        self,
        collection: str,
        action: str,
        body: Any,
        *,
        label: str,
        method: str = "POST",
        create: bool = False,
    ) -> httpx.Response | None:
        """Call ``/{id}/{action}``; None when the collection does not exist and ``create`` is off.

        A 404 on an ID resolved earlier means the collection was dropped elsewhere; that
        surfaces as :class:`CollectionNotFoundError` with the cached ID already forgotten.
        """
        collection_id = await self._collection_id(collection, create=create)
        if collection_id is None:
            return None
        url = f"{self.collections_url}/{collection_id}/{action}"
        try:
            return await self._call(method, url, json=body, label=label)
        except CollectionNotFoundError:
            self._collection_ids.pop(collection, None)
            raise

    async def _collection_id(self, name: str, create: bool) -> str | None:
        cached = self._collection_ids.get(name)
        if cached:
            return cached
        try:
            response = await self._call("GET", f"{self.collections_url}/{name}", label="get collection")
        except VectorStoreError as exc:
            if not exc.invalid_query:
                raise
            if not create:
                return None
            response = await self._call(
                "POST",
                self.collections_url,
                json={"name": name, "get_or_create": True, "metadata": {"hnsw:space": "cosine"}},
                label="create collection",
            )
            logger.info("Created Chroma collection %s", name)
        collection_id = str(response.json()["id"])
        self._collection_ids[name] = collection_id
        return collection_id

    async def _call(self, method: str, url: str, *, label: str, json: Any = None) -> httpx.Response:
        try:
            return await send_with_retries(
                lambda: self._client.request(method, url, json=json),
                label=f"chroma {label}",
                attempts=self.retry_attempts,
                base_delay=self.retry_delay,
            )
        except httpx.HTTPError as exc:
            status = status_of(exc)
            message = f"chroma {label} failed: {describe(exc)}"
            if status == 404:
                raise CollectionNotFoundError(message) from exc
            kind = (
                VectorStoreErrorKind.INVALID_QUERY
                if status is not None and 400 <= status < 500
                else VectorStoreErrorKind.UNREACHABLE
            )
            raise VectorStoreError(message, kind) from exc


class ChromaCloudVectorStore(ChromaVectorStore):
    """Chroma Cloud: same API behind HTTPS with a tenant, database and API token."""

    def __init__(
        self,
        api_key: str,
        host: str = "api.trychroma.com",
        tenant: str = "default_tenant",
        database: str = "default_database",
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
        retry_attempts: int = 3,
        retry_delay: float = 0.5,
    ) -> None:
        if not api_key:
            raise VectorStoreError("Chroma Cloud requires an API key", VectorStoreErrorKind.INVALID_QUERY)
        base_url = host if host.startswith(("http://", "https://")) else f"https://{host}"
        super().__init__(
            base_url=base_url,
            tenant=tenant,
            database=database,
            client=client,
            timeout=timeout,
            headers={"x-chroma-token": api_key},
            retry_attempts=retry_attempts,
            retry_delay=retry_delay,
        )


def build_where(filters: Mapping[str, str] | None) -> dict[str, Any] | None:
    if not filters:
        return None
    clauses = [{key: value} for key, value in filters.items()]
    return clauses[0] if len(clauses) == 1 else {"$and": clauses}


def parse_query_response(payload: Mapping[str, Any]) -> list[SearchResult]:
    """Map a single-query Chroma response to results scored ``1 - distance``."""
    ids = (payload.get("ids") or [[]])[0] or []
    documents = (payload.get("documents") or [[]])[0] or []
    metadatas = (payload.get("metadatas") or [[]])[0] or []
    distances = (payload.get("distances") or [[]])[0] or []
    results: list[SearchResult] = []
    for index, chunk_id in enumerate(ids):
        metadata = {
            str(key): str(value)
            for key, value in ((metadatas[index] if index < len(metadatas) else None) or {}).items()
        }
        text = (documents[index] if index < len(documents) else None) or ""
        distance = distances[index] if index < len(distances) else None
        score = 1.0 - float(distance) if distance is not None else 0.0
        chunk = Chunk(id=chunk_id, text=text, source_path=metadata.get("filePath", ""), metadata=metadata)
        results.append(SearchResult(chunk=chunk, score=score))
    results.sort(key=lambda result: result.score, reverse=True)
    return results


def _to_metadata(chunk: Chunk) -> dict[str, str]:
    metadata = dict(chunk.metadata)
    metadata.setdefault("filePath", chunk.source_path)
    return metadata


__all__ = [
    "ChromaVectorStore",
    "CollectionNotFoundError",
    "ChromaCloudVectorStore",
    "build_where",
    "parse_query_response",
]

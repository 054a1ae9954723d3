"""Embedding backends."""

from __future__ import annotations

from typing import Any, Protocol, Sequence

import httpx

from vault_rag.clients.http import OwnedClient, describe, is_auth_failure, send_with_retries
from vault_rag.core.errors import EmbeddingError
from vault_rag.core.logging import get_logger
from vault_rag.ingest.sanitizer import DOCUMENT_PREFIX, QUERY_PREFIX, EmbeddingTextSanitizer
from vault_rag.models.entities import Embedding

logger = get_logger(__name__)

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"


class Embedder(Protocol):
    """Text to vector conversion. Raises ``EmbeddingError`` on backend failure."""

    async def embed(self, texts: Sequence[str]) -> list[Embedding]: ...

    async def embed_query(self, text: str) -> Embedding: ...


class _BatchingEmbedder(OwnedClient):
    backend = "embedder"
    batch_size = 32

    async def embed(self, texts: Sequence[str]) -> list[Embedding]:
        if not texts:
            return []
        vectors: list[Embedding] = []
        for start in range(0, len(texts), self.batch_size):
            batch = list(texts[start : start + self.batch_size])
            embeddings = await self._request(batch, query=False)
            if len(embeddings) != len(batch):
                raise EmbeddingError(
                    f"{self.backend} returned {len(embeddings)} embeddings for {len(batch)} inputs"
                )
            vectors.extend(embeddings)
        return vectors

    async def embed_query(self, text: str) -> Embedding:
        embeddings = await self._request([text], query=True)
        if len(embeddings) != 1:
            raise EmbeddingError(f"{self.backend} returned {len(embeddings)} embeddings for one query")
        return embeddings[0]

    async def _request(self, texts: list[str], query: bool) -> list[Embedding]:  # pragma: no cover - interface
        raise NotImplementedError

    async def _post(self, url: str, body: dict[str, Any], attempts: int, delay: float) -> dict[str, Any]:
        try:
            response = await send_with_retries(
                lambda: self._client.post(url, json=body),
                label=f"{self.backend} embed",
                attempts=attempts,
                base_delay=delay,
            )
        except httpx.HTTPError as exc:
            raise EmbeddingError(
                f"{self.backend} embed request failed: {describe(exc)}",
                auth=is_auth_failure(exc),
            ) from exc
        try:
            payload = response.json()
        except ValueError as exc:
            raise EmbeddingError(f"{self.backend} returned a non-JSON embedding response") from exc
        if not isinstance(payload, dict):
            raise EmbeddingError(f"{self.backend} returned an unexpected embedding payload")
        return payload


class OllamaEmbedder(_BatchingEmbedder):
    """Ollama ``/api/embed`` client with nomic-style task prefixes."""

    backend = "ollama"

    def __init__(
        self,
        base_url: str,
        model: str,
        sanitizer: EmbeddingTextSanitizer | None = None,
        batch_size: int = 32,
        client: httpx.AsyncClient | None = None,
        timeout: float = 60.0,
        retry_attempts: int = 3,
        retry_delay: float = 0.5,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.sanitizer = sanitizer or EmbeddingTextSanitizer()
        self.batch_size = batch_size
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay
        self._init_client(client, timeout=timeout)

    async def _request(self, texts: list[str], query: bool) -> list[Embedding]:
        prefix = QUERY_PREFIX if query else DOCUMENT_PREFIX
        inputs = [self.sanitizer.sanitize(prefix + text) for text in texts]
        payload = await self._post(
            f"{self.base_url}/api/embed",
            {"model": self.model, "input": inputs},
            self.retry_attempts,
            self.retry_delay,
        )
        embeddings = payload.get("embeddings")
        if not isinstance(embeddings, list):
            raise EmbeddingError("ollama response is missing 'embeddings'")
        return [[float(value) for value in vector] for vector in embeddings]


class GeminiEmbedder(_BatchingEmbedder):
    """Gemini ``batchEmbedContents`` client using retrieval task types."""

    backend = "gemini"

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-embedding-001",
        output_dimension: int = 768,
        base_url: str = GEMINI_BASE_URL,
        batch_size: int = 32,
        sanitizer: EmbeddingTextSanitizer | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = 60.0,
        retry_attempts: int = 3,
        retry_delay: float = 0.5,
    ) -> None:
        if not api_key:
            raise EmbeddingError("Gemini embeddings require an API key", auth=True)
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.output_dimension = output_dimension
        self.batch_size = batch_size
        self.sanitizer = sanitizer or EmbeddingTextSanitizer()
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay
        self._init_client(client, timeout=timeout, headers={"x-goog-api-key": api_key})

    async def _request(self, texts: list[str], query: bool) -> list[Embedding]:
        task_type = "RETRIEVAL_QUERY" if query else "RETRIEVAL_DOCUMENT"
        requests = [
            {
                "model": f"models/{self.model}",
                "content": {"parts": [{"text": self.sanitizer.sanitize(text)}]},
                "taskType": task_type,
                "outputDimensionality": self.output_dimension,
            }
            for text in texts
        ]
        payload = await self._post(
            f"{self.base_url}/models/{self.model}:batchEmbedContents",
            {"requests": requests},
            self.retry_attempts,
            self.retry_delay,
        )
        embeddings = payload.get("embeddings")
        if not isinstance(embeddings, list):
            raise EmbeddingError("gemini response is missing 'embeddings'")
        return [[float(value) for value in item.get("values", [])] for item in embeddings]


__all__ = ["Embedder", "OllamaEmbedder", "GeminiEmbedder"]

"""Error taxonomy for indexing and retrieval."""

from __future__ import annotations

from enum import Enum


class VaultRagError(Exception):
    """Base class for all subsystem errors."""


class EmbeddingError(VaultRagError):
    """Embedding backend unreachable, rejected the request, or returned bad data."""

    def __init__(self, message: str, *, auth: bool = False) -> None:
        super().__init__(message)
        self.auth = auth


class VectorStoreErrorKind(str, Enum):
    UNREACHABLE = "unreachable"
    INVALID_QUERY = "invalid_query"


class VectorStoreError(VaultRagError):
    """Vector store failure; ``kind`` separates outages from rejected requests."""

    def __init__(self, message: str, kind: VectorStoreErrorKind = VectorStoreErrorKind.UNREACHABLE) -> None:
        super().__init__(message)
        self.kind = kind

    @property
    def unreachable(self) -> bool:
        return self.kind is VectorStoreErrorKind.UNREACHABLE

    @property
    def invalid_query(self) -> bool:
        return self.kind is VectorStoreErrorKind.INVALID_QUERY


class IndexingFileError(VaultRagError):
    """A single file could not be chunked, embedded or upserted."""

    def __init__(self, path: str, message: str) -> None:
        super().__init__(f"{path}: {message}")
        self.path = path


class RerankerInitError(VaultRagError):
    """Reranker construction failed; resolved to the no-op reranker."""


class RetrievalError(VaultRagError):
    """Every source required by the active retrieval mode failed."""


class LanguageModelError(VaultRagError):
    """Generation backend failure."""


class WebSearchError(VaultRagError):
    """Web search backend failure."""


__all__ = [
    "VaultRagError",
    "EmbeddingError",
    "VectorStoreError",
    "VectorStoreErrorKind",
    "IndexingFileError",
    "RerankerInitError",
    "RetrievalError",
    "LanguageModelError",
    "WebSearchError",
]

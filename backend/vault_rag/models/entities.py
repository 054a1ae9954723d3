"""Internal dataclasses shared by indexing and retrieval."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List

Embedding = List[float]


@dataclass(slots=True, frozen=True)
class Chunk:
    """A bounded span of one note; the ID is derived from path and line range."""

    id: str
    text: str
    source_path: str
    metadata: Dict[str, str] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class EmbeddedChunk:
    chunk: Chunk
    embedding: Embedding


@dataclass(slots=True)
class SearchResult:
    chunk: Chunk
    score: float


@dataclass(slots=True)
class RagChunk:
    """Retrieved chunk handed to the chat layer."""

    id: str
    text: str
    source_path: str
    score: float
    metadata: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_result(cls, result: SearchResult) -> "RagChunk":
        chunk = result.chunk
        return cls(
            id=chunk.id,
            text=chunk.text,
            source_path=chunk.source_path,
            score=result.score,
            metadata=dict(chunk.metadata),
        )

    @property
    def section_title(self) -> str | None:
        return self.metadata.get("sectionTitle")


@dataclass(slots=True)
class RagResult:
    answer: str
    chunks: List[RagChunk]
    used_reranker: bool
    metadata: Dict[str, str] = field(default_factory=dict)


@dataclass(slots=True)
class VaultMetadata:
    """Persisted per-vault index state; written only by the indexer."""

    vault_path: str
    indexed_file_hashes: Dict[str, str] = field(default_factory=dict)
    last_indexed_at_millis: int = 0


class SyncStatus(str, Enum):
    SYNCED = "synced"
    OUT_OF_SYNC = "out_of_sync"
    NOT_INDEXED = "not_indexed"
    UNAVAILABLE = "unavailable"


class RetrievalMode(str, Enum):
    NONE = "none"
    RAG = "rag"
    WEB = "web"
    HYBRID = "hybrid"


@dataclass(slots=True)
class WebSnippet:
    title: str
    url: str
    snippet: str


@dataclass(slots=True)
class RetrievalContext:
    local_chunks: List[RagChunk] = field(default_factory=list)
    web_snippets: List[WebSnippet] = field(default_factory=list)
    used_reranker: bool = False

    @property
    def is_empty(self) -> bool:
        return not self.local_chunks and not self.web_snippets


@dataclass(slots=True)
class IndexReport:
    """Aggregated statistics for one index operation."""

    indexed: int = 0
    skipped: int = 0
    removed: int = 0
    failed: int = 0
    chunks: int = 0
    failures: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, object]:
        return {
            "indexed": self.indexed,
            "skipped": self.skipped,
            "removed": self.removed,
            "failed": self.failed,
            "chunks": self.chunks,
            "failures": dict(self.failures),
        }


@dataclass(slots=True)
class SyncReport:
    status: SyncStatus
    new_files: List[str] = field(default_factory=list)
    modified_files: List[str] = field(default_factory=list)
    deleted_files: List[str] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return bool(self.new_files or self.modified_files or self.deleted_files)


__all__ = [
    "Embedding",
    "Chunk",
    "EmbeddedChunk",
    "SearchResult",
    "RagChunk",
    "RagResult",
    "VaultMetadata",
    "SyncStatus",
    "RetrievalMode",
    "WebSnippet",
    "RetrievalContext",
    "IndexReport",
    "SyncReport",
]

"""Pydantic DTOs exposed via API."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

from vault_rag.models.entities import (
    IndexReport,
    RagChunk,
    RagResult,
    RetrievalContext,
    SyncReport,
    SyncStatus,
    WebSnippet,
)

ModeName = Literal["none", "rag", "web", "hybrid"]


class IndexRequest(BaseModel):
    vault_path: str
    paths: list[str] | None = Field(default=None, description="Index only these files, relative to the vault")


class RemoveFileRequest(BaseModel):
    vault_path: str
    path: str


class IndexReportResponse(BaseModel):
    indexed: int
    skipped: int
    removed: int
    failed: int
    chunks: int
    failures: dict[str, str]

    @classmethod
    def from_report(cls, report: IndexReport) -> "IndexReportResponse":
        return cls(**report.to_dict())


class IndexResponse(BaseModel):
    report: IndexReportResponse
    status: SyncStatus


class SyncResponse(BaseModel):
    vault_path: str | None
    status: SyncStatus
    new_files: list[str] = Field(default_factory=list)
    modified_files: list[str] = Field(default_factory=list)
    deleted_files: list[str] = Field(default_factory=list)

    @classmethod
    def from_report(cls, vault_path: str | None, report: SyncReport) -> "SyncResponse":
        return cls(
            vault_path=vault_path,
            status=report.status,
            new_files=report.new_files,
            modified_files=report.modified_files,
            deleted_files=report.deleted_files,
        )


class RetrieveRequest(BaseModel):
    query: str = Field(min_length=1)
    vault_path: str | None = None
    mode: ModeName | None = None
    max_k: int | None = Field(default=None, ge=1, le=100)
    display_k: int | None = Field(default=None, ge=1, le=100)
    similarity_threshold: float | None = Field(default=None, ge=0.0, le=1.0)
    rerank: bool | None = None
    filters: dict[str, str] | None = None


class ChunkResult(BaseModel):
    id: str
    text: str
    source_path: str
    score: float
    section_title: str | None = None
    metadata: dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_chunk(cls, chunk: RagChunk) -> "ChunkResult":
        return cls(
            id=chunk.id,
            text=chunk.text,
            source_path=chunk.source_path,
            score=chunk.score,
            section_title=chunk.section_title,
            metadata=chunk.metadata,
        )


class WebResult(BaseModel):
    title: str
    url: str
    snippet: str

    @classmethod
    def from_snippet(cls, snippet: WebSnippet) -> "WebResult":
        return cls(title=snippet.title, url=snippet.url, snippet=snippet.snippet)


class RetrieveResponse(BaseModel):
    mode: ModeName
    local_chunks: list[ChunkResult]
    web_snippets: list[WebResult]
    used_reranker: bool

    @classmethod
    def from_context(cls, mode: str, context: RetrievalContext) -> "RetrieveResponse":
        return cls(
            mode=mode,
            local_chunks=[ChunkResult.from_chunk(chunk) for chunk in context.local_chunks],
            web_snippets=[WebResult.from_snippet(snippet) for snippet in context.web_snippets],
            used_reranker=context.used_reranker,
        )


class AnswerResponse(BaseModel):
    answer: str
    chunks: list[ChunkResult]
    used_reranker: bool
    metadata: dict[str, str]

    @classmethod
    def from_result(cls, result: RagResult) -> "AnswerResponse":
        return cls(
            answer=result.answer,
            chunks=[ChunkResult.from_chunk(chunk) for chunk in result.chunks],
            used_reranker=result.used_reranker,
            metadata=result.metadata,
        )


class HealthResponse(BaseModel):
    ok: bool
    vector_store: bool
    reranker: str
    web_search: bool


__all__ = [
    "AnswerResponse",
    "ChunkResult",
    "HealthResponse",
    "IndexReportResponse",
    "IndexRequest",
    "IndexResponse",
    "RemoveFileRequest",
    "RetrieveRequest",
    "RetrieveResponse",
    "SyncResponse",
    "WebResult",
]

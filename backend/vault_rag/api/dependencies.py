"""Shared FastAPI dependencies."""

from __future__ import annotations

import asyncio
import weakref
from functools import lru_cache
from pathlib import Path

from fastapi import HTTPException

from vault_rag.clients.chroma import ChromaCloudVectorStore, ChromaVectorStore
from vault_rag.clients.embedders import Embedder, GeminiEmbedder, OllamaEmbedder
from vault_rag.clients.llm import GeminiClient, LanguageModelClient, OllamaClient
from vault_rag.clients.model_registry import ModelRegistry, OllamaModelRegistry
from vault_rag.clients.vector_store import InMemoryVectorStore, VectorStore
from vault_rag.clients.web_search import TavilySearchClient, WebSearchClient
from vault_rag.core.config import Settings, get_settings
from vault_rag.core.logging import get_logger
from vault_rag.ingest.chunker import MarkdownChunker
from vault_rag.ingest.filesystem import LocalFileSystem
from vault_rag.ingest.indexer import Indexer
from vault_rag.ingest.metadata_store import VaultMetadataStore
from vault_rag.ingest.sanitizer import EmbeddingTextSanitizer
from vault_rag.retrieval import (
    AnswerComposer,
    QueryPreprocessor,
    RagRetriever,
    RerankerChoice,
    RetrievalService,
    SyncStatusService,
    build_reranker,
)
from vault_rag.models.entities import SyncStatus
from vault_rag.retrieval.rerank import NoOpReranker
from vault_rag.security.secrets import CHROMA_API_KEY, GEMINI_API_KEY, TAVILY_API_KEY, get_secret
from vault_rag.utils.ids import vault_key

logger = get_logger(__name__)

_FS: LocalFileSystem | None = None
_METADATA_STORE: VaultMetadataStore | None = None
_SANITIZER: EmbeddingTextSanitizer | None = None
_EMBEDDER: Embedder | None = None
_EMBEDDER_RESOLVED = False
_VECTOR_STORE: VectorStore | None = None
_VECTOR_STORE_RESOLVED = False
_LLM: LanguageModelClient | None = None
_LLM_RESOLVED = False
_WEB_CLIENT: WebSearchClient | None = None
_WEB_RESOLVED = False
_RERANKER_CHOICE: RerankerChoice | None = None
_RETRIEVER: RagRetriever | None = None
_RETRIEVAL_SERVICE: RetrievalService | None = None
_ANSWER_COMPOSER: AnswerComposer | None = None
_SYNC_SERVICE: SyncStatusService | None = None
_INDEXER: Indexer | None = None
_INDEX_LOCKS: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()
_WATCHED_STATUSES: dict[str, SyncStatus] = {}


@lru_cache(maxsize=1)
def get_app_settings() -> Settings:
    return get_settings()


def get_filesystem() -> LocalFileSystem:
    global _FS
    if _FS is None:
        _FS = LocalFileSystem()
    return _FS


def get_metadata_store() -> VaultMetadataStore:
    global _METADATA_STORE
    if _METADATA_STORE is None:
        _METADATA_STORE = VaultMetadataStore(get_app_settings().metadata_dir)
    return _METADATA_STORE


def get_sanitizer() -> EmbeddingTextSanitizer:
    global _SANITIZER
    if _SANITIZER is None:
        settings = get_app_settings()
        _SANITIZER = EmbeddingTextSanitizer(
            max_tokens=settings.embedding_max_tokens,
            max_chars=settings.embedding_max_chars,
            chars_per_token=settings.chars_per_token,
        )
    return _SANITIZER


def get_chunker() -> MarkdownChunker:
    settings = get_app_settings()
    return MarkdownChunker(
        target_tokens=settings.chunk_target_tokens,
        min_tokens=settings.chunk_min_tokens,
        max_tokens=settings.chunk_max_tokens,
        overlap_tokens=settings.chunk_overlap_tokens,
        chars_per_token=settings.chars_per_token,
    )


def get_embedder() -> Embedder | None:
    global _EMBEDDER, _EMBEDDER_RESOLVED
    if not _EMBEDDER_RESOLVED:
        settings = get_app_settings()
        if settings.llm_provider == "gemini":
            api_key = get_secret(GEMINI_API_KEY, settings.secrets_path)
            if api_key:
                _EMBEDDER = GeminiEmbedder(
                    api_key=api_key,
                    model=settings.gemini_embedding_model,
                    output_dimension=settings.embedding_output_dimension,
                    batch_size=settings.embedding_batch_size,
                    sanitizer=get_sanitizer(),
                )
            else:
                logger.warning(
                    "Gemini selected but %s is not set; note retrieval and indexing disabled",
                    GEMINI_API_KEY,
                )
        else:
            _EMBEDDER = OllamaEmbedder(
                base_url=settings.embedding_base_url,
                model=settings.embedding_model,
                sanitizer=get_sanitizer(),
                batch_size=settings.embedding_batch_size,
            )
        _EMBEDDER_RESOLVED = True
    return _EMBEDDER


def require_embedder() -> Embedder:
    embedder = get_embedder()
    if embedder is None:
        raise HTTPException(status_code=503, detail="No embedding backend configured")
    return embedder


def get_vector_store() -> VectorStore | None:
    global _VECTOR_STORE, _VECTOR_STORE_RESOLVED
    if not _VECTOR_STORE_RESOLVED:
        settings = get_app_settings()
        if settings.vector_backend == "memory":
            _VECTOR_STORE = InMemoryVectorStore()
        elif settings.vector_backend == "chroma_cloud":
            api_key = get_secret(CHROMA_API_KEY, settings.secrets_path)
            if api_key:
                _VECTOR_STORE = ChromaCloudVectorStore(
                    api_key=api_key,
                    tenant=settings.chroma_tenant,
                    database=settings.chroma_database,
                )
            else:
                logger.warning("Chroma Cloud selected but %s is not set; local retrieval disabled", CHROMA_API_KEY)
        else:
            _VECTOR_STORE = ChromaVectorStore(
                base_url=settings.chroma_base_url,
                tenant=settings.chroma_tenant,
                database=settings.chroma_database,
            )
        _VECTOR_STORE_RESOLVED = True
    return _VECTOR_STORE


def require_vector_store() -> VectorStore:
    store = get_vector_store()
    if store is None:
        raise HTTPException(status_code=503, detail="No vector store configured")
    return store


def get_llm() -> LanguageModelClient | None:
    global _LLM, _LLM_RESOLVED
    if not _LLM_RESOLVED:
        settings = get_app_settings()
        if settings.llm_provider == "gemini":
            api_key = get_secret(GEMINI_API_KEY, settings.secrets_path)
            if api_key:
                _LLM = GeminiClient(api_key=api_key, model=settings.gemini_model, timeout=settings.llm_timeout_seconds)
            else:
                logger.warning("Gemini selected but %s is not set; generation disabled", GEMINI_API_KEY)
        else:
            _LLM = OllamaClient(
                base_url=settings.ollama_base_url,
                model=settings.ollama_model,
                timeout=settings.llm_timeout_seconds,
            )
        _LLM_RESOLVED = True
    return _LLM


def get_model_registry() -> ModelRegistry | None:
    settings = get_app_settings()
    if settings.llm_provider != "ollama":
        return None
    return OllamaModelRegistry(settings.ollama_base_url)


def get_web_client() -> WebSearchClient | None:
    global _WEB_CLIENT, _WEB_RESOLVED
    if not _WEB_RESOLVED:
        settings = get_app_settings()
        if not settings.web_search_enabled:
            logger.info("Web search disabled in settings")
        else:
            api_key = get_secret(TAVILY_API_KEY, settings.secrets_path)
            if api_key:
                _WEB_CLIENT = TavilySearchClient(api_key=api_key)
            else:
                logger.warning("Web search enabled but %s is not set; web retrieval disabled", TAVILY_API_KEY)
        _WEB_RESOLVED = True
    return _WEB_CLIENT


async def init_reranker() -> RerankerChoice:
    """Resolve the reranker once; later calls return the same choice."""
    global _RERANKER_CHOICE
    if _RERANKER_CHOICE is None:
        settings = get_app_settings()
        registry = get_model_registry()
        try:
            _RERANKER_CHOICE = await build_reranker(
                get_llm(),
                registry,
                dedicated_model=settings.rerank_model,
                enabled=settings.rerank_enabled,
            )
        finally:
            if isinstance(registry, OllamaModelRegistry):
                await registry.aclose()
        if _RETRIEVER is not None:
            _RETRIEVER.reranker = _RERANKER_CHOICE.reranker
    return _RERANKER_CHOICE


def get_reranker_choice() -> RerankerChoice | None:
    return _RERANKER_CHOICE


def get_preprocessor() -> QueryPreprocessor | None:
    settings = get_app_settings()
    llm = get_llm()
    if llm is None or not (settings.query_rewriting_enabled or settings.multi_query_enabled):
        return None
    return QueryPreprocessor(
        llm,
        rewriting_enabled=settings.query_rewriting_enabled,
        multi_query_enabled=settings.multi_query_enabled,
    )


def get_retriever() -> RagRetriever | None:
    global _RETRIEVER
    if _RETRIEVER is None:
        store = get_vector_store()
        embedder = get_embedder()
        if store is None or embedder is None:
            return None
        settings = get_app_settings()
        _RETRIEVER = RagRetriever(
            embedder=embedder,
            vector_store=store,
            reranker=_RERANKER_CHOICE.reranker if _RERANKER_CHOICE else NoOpReranker(),
            preprocessor=get_preprocessor(),
            max_k=settings.max_k,
            display_k=settings.display_k,
            similarity_threshold=settings.similarity_threshold,
            rerank_enabled=settings.rerank_enabled,
            collection_prefix=settings.collection_prefix,
        )
    return _RETRIEVER


def get_retrieval_service() -> RetrievalService:
    global _RETRIEVAL_SERVICE
    if _RETRIEVAL_SERVICE is None:
        _RETRIEVAL_SERVICE = RetrievalService(
            rag_retriever=get_retriever(),
            web_client=get_web_client(),
            web_max_results=get_app_settings().web_max_results,
        )
    return _RETRIEVAL_SERVICE


def get_answer_composer() -> AnswerComposer:
    global _ANSWER_COMPOSER
    if _ANSWER_COMPOSER is None:
        llm = get_llm()
        if llm is None:
            raise HTTPException(status_code=503, detail="No language model configured")
        _ANSWER_COMPOSER = AnswerComposer(get_retrieval_service(), llm)
    return _ANSWER_COMPOSER


def get_sync_service() -> SyncStatusService | None:
    global _SYNC_SERVICE
    if _SYNC_SERVICE is None:
        store = get_vector_store()
        if store is None:
            return None
        _SYNC_SERVICE = SyncStatusService(
            fs=get_filesystem(),
            vector_store=store,
            metadata_store=get_metadata_store(),
            collection_prefix=get_app_settings().collection_prefix,
        )
    return _SYNC_SERVICE


def get_indexer() -> Indexer:
    global _INDEXER
    if _INDEXER is None:
        settings = get_app_settings()
        _INDEXER = Indexer(
            fs=get_filesystem(),
            chunker=get_chunker(),
            embedder=require_embedder(),
            vector_store=require_vector_store(),
            metadata_store=get_metadata_store(),
            sanitizer=get_sanitizer(),
            collection_prefix=settings.collection_prefix,
            commit_every=settings.metadata_commit_every,
        )
    return _INDEXER


def get_index_lock(vault_path: str) -> asyncio.Lock:
    """One lock per vault; index operations on the same vault never overlap.

    Locks live only while a request holds or awaits them.
    """
    key = vault_key(vault_path)
    lock = _INDEX_LOCKS.get(key)
    if lock is None:
        lock = asyncio.Lock()
        _INDEX_LOCKS[key] = lock
    return lock


def record_watched_status(vault: Path, status: SyncStatus) -> None:
    _WATCHED_STATUSES[vault_key(vault)] = status


def get_watched_statuses() -> dict[str, SyncStatus]:
    """Latest status published by the vault watcher, keyed by vault path."""
    return dict(_WATCHED_STATUSES)


def install_components(
    *,
    embedder: Embedder | None = None,
    vector_store: VectorStore | None = None,
    llm: LanguageModelClient | None = None,
    web_client: WebSearchClient | None = None,
) -> None:
    """Replace backends before first use, e.g. with in-process fakes."""
    global _EMBEDDER, _EMBEDDER_RESOLVED, _VECTOR_STORE, _VECTOR_STORE_RESOLVED
    global _LLM, _LLM_RESOLVED, _WEB_CLIENT, _WEB_RESOLVED
    if embedder is not None:
        _EMBEDDER, _EMBEDDER_RESOLVED = embedder, True
    if vector_store is not None:
        _VECTOR_STORE, _VECTOR_STORE_RESOLVED = vector_store, True
    if llm is not None:
        _LLM, _LLM_RESOLVED = llm, True
    if web_client is not None:
        _WEB_CLIENT, _WEB_RESOLVED = web_client, True


async def close_clients() -> None:
    for component in (_EMBEDDER, _VECTOR_STORE, _LLM, _WEB_CLIENT):
        aclose = getattr(component, "aclose", None)
        if aclose is not None:
            await aclose()


def reset_dependencies() -> None:
    global _FS, _METADATA_STORE, _SANITIZER, _EMBEDDER, _EMBEDDER_RESOLVED, _VECTOR_STORE, _VECTOR_STORE_RESOLVED
    global _LLM, _LLM_RESOLVED, _WEB_CLIENT, _WEB_RESOLVED, _RERANKER_CHOICE
    global _RETRIEVER, _RETRIEVAL_SERVICE, _ANSWER_COMPOSER, _SYNC_SERVICE, _INDEXER
    _FS = _METADATA_STORE = _SANITIZER = _EMBEDDER = _VECTOR_STORE = None
    _LLM = _WEB_CLIENT = _RERANKER_CHOICE = None
    _RETRIEVER = _RETRIEVAL_SERVICE = _ANSWER_COMPOSER = _SYNC_SERVICE = _INDEXER = None
    _EMBEDDER_RESOLVED = _VECTOR_STORE_RESOLVED = _LLM_RESOLVED = _WEB_RESOLVED = False
    _INDEX_LOCKS.clear()
    _WATCHED_STATUSES.clear()
    get_app_settings.cache_clear()
    get_settings.cache_clear()


__all__ = [
    "close_clients",
    "get_answer_composer",
    "get_app_settings",
    "get_embedder",
    "get_index_lock",
    "get_indexer",
    "get_llm",
    "get_reranker_choice",
    "get_retrieval_service",
    "get_retriever",
    "get_sync_service",
    "get_vector_store",
    "get_watched_statuses",
    "get_web_client",
    "init_reranker",
    "install_components",
    "record_watched_status",
    "require_vector_store",
    "require_embedder",
    "reset_dependencies",
]

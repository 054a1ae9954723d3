"""Retrieval orchestration components."""

from .answer import AnswerComposer
from .preprocess import QueryPreprocessor
from .rerank import RerankerChoice, RerankerKind, build_reranker
from .retriever import RagRetriever, RetrievalOptions
from .service import RetrievalService
from .sync import SyncStatusService

__all__ = [
    "AnswerComposer",
    "QueryPreprocessor",
    "RagRetriever",
    "RerankerChoice",
    "RerankerKind",
    "RetrievalOptions",
    "RetrievalService",
    "SyncStatusService",
    "build_reranker",
]

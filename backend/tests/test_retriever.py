"""Retrieval pipeline tests."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from conftest import FakeEmbedder, FakeLLM
from vault_rag.clients.vector_store import InMemoryVectorStore
from vault_rag.core.errors import RetrievalError
from vault_rag.models.entities import Chunk, EmbeddedChunk, SearchResult
from vault_rag.retrieval.preprocess import QueryPreprocessor
from vault_rag.retrieval.rerank import LlmFallbackReranker
from vault_rag.retrieval.retriever import RagRetriever, RetrievalOptions, merge_results
from vault_rag.utils.ids import collection_name_for_vault

NOTES = {
    "garden.md:1:3": "tomatoes need full sun and watering",
    "garden.md:5:7": "aphids on tomatoes wash off with soapy water",
    "cooking.md:1:3": "sourdough bread needs a starter",
    "cooking.md:5:7": "tomato soup with basil and garlic",
    "travel.md:1:3": "train tickets to lisbon",
}


@pytest_asyncio.fixture
async def store(embedder: FakeEmbedder, tmp_path: Path) -> InMemoryVectorStore:
    store = InMemoryVectorStore()
    collection = collection_name_for_vault(tmp_path)
    items = [
        EmbeddedChunk(
            chunk=Chunk(
                id=chunk_id,
                text=text,
                source_path=chunk_id.split(":")[0],
                metadata={"filePath": chunk_id.split(":")[0]},
            ),
            embedding=embedder.vector(text),
        )
        for chunk_id, text in NOTES.items()
    ]
    await store.upsert(collection, items)
    return store


@pytest.mark.asyncio
async def test_results_respect_threshold_and_display_k(embedder, store, tmp_path: Path) -> None:
    retriever = RagRetriever(embedder, store, max_k=5, display_k=2, similarity_threshold=0.0)

    chunks = await retriever.retrieve("tomatoes", tmp_path)

    assert len(chunks) == 2
    assert chunks[0].score >= chunks[1].score
    assert all("tomato" in chunk.text for chunk in chunks)


@pytest.mark.asyncio
async def test_raising_threshold_never_adds_results(embedder, store, tmp_path: Path) -> None:
    retriever = RagRetriever(embedder, store, max_k=5, display_k=5)
    counts = []
    for threshold in (0.0, 0.2, 0.4, 0.6, 0.8, 1.0):
        chunks = await retriever.retrieve("tomatoes sun", tmp_path, RetrievalOptions(similarity_threshold=threshold))
        assert all(chunk.score >= threshold for chunk in chunks)
        counts.append(len(chunks))
    assert counts == sorted(counts, reverse=True)


@pytest.mark.asyncio
async def test_filters_restrict_results(embedder, store, tmp_path: Path) -> None:
    retriever = RagRetriever(embedder, store, similarity_threshold=0.0)
    chunks = await retriever.retrieve("tomato", tmp_path, RetrievalOptions(filters={"filePath": "cooking.md"}))
    assert chunks
    assert {chunk.source_path for chunk in chunks} == {"cooking.md"}


@pytest.mark.asyncio
async def test_unindexed_vault_returns_nothing(embedder, store, tmp_path: Path) -> None:
    retriever = RagRetriever(embedder, store)
    assert await retriever.retrieve("tomatoes", tmp_path / "other") == []


def test_display_k_above_max_k_is_rejected(embedder) -> None:
    with pytest.raises(ValueError):
        RagRetriever(embedder, InMemoryVectorStore(), max_k=3, display_k=5)


@pytest.mark.asyncio
async def test_request_display_k_above_max_k_is_rejected(embedder, store, tmp_path: Path) -> None:
    retriever = RagRetriever(embedder, store, max_k=5, display_k=2)
    with pytest.raises(ValueError):
        await retriever.retrieve("tomatoes", tmp_path, RetrievalOptions(max_k=2, display_k=4))


@pytest.mark.asyncio
async def test_embedding_failure_becomes_retrieval_error(embedder, store, tmp_path: Path) -> None:
    embedder.fail_on = {"tomatoes"}
    retriever = RagRetriever(embedder, store)
    with pytest.raises(RetrievalError):
        await retriever.retrieve("tomatoes", tmp_path)


@pytest.mark.asyncio
async def test_store_outage_becomes_retrieval_error(embedder, store, tmp_path: Path) -> None:
    store.available = False
    with pytest.raises(RetrievalError):
        await RagRetriever(embedder, store).retrieve("tomatoes", tmp_path)


@pytest.mark.asyncio
async def test_reranker_order_is_applied(embedder, store, tmp_path: Path) -> None:
    reranker = LlmFallbackReranker(FakeLLM(default='{"cooking.md:5:7": 0.99}'))
    retriever = RagRetriever(embedder, store, reranker=reranker, max_k=5, display_k=3, similarity_threshold=0.0)

    run = await retriever.run("tomatoes", tmp_path)

    assert run.used_reranker is True
    assert run.chunks[0].id == "cooking.md:5:7"


@pytest.mark.asyncio
async def test_rerank_override_skips_reranker(embedder, store, tmp_path: Path) -> None:
    reranker = AsyncMock()
    retriever = RagRetriever(embedder, store, reranker=reranker, similarity_threshold=0.0)

    run = await retriever.run("tomatoes", tmp_path, RetrievalOptions(rerank=False))

    assert run.used_reranker is False
    reranker.rerank.assert_not_called()


@pytest.mark.asyncio
async def test_multi_query_searches_every_phrasing(embedder, store, tmp_path: Path) -> None:
    llm = FakeLLM(default="sourdough starter bread\ntrain tickets lisbon")
    retriever = RagRetriever(
        embedder,
        store,
        preprocessor=QueryPreprocessor(llm, multi_query_enabled=True),
        max_k=2,
        display_k=2,
        similarity_threshold=0.3,
    )

    run = await retriever.run("tomatoes", tmp_path)

    assert run.queries == ["tomatoes", "sourdough starter bread", "train tickets lisbon"]
    assert len(run.chunks) == 2
    assert len({chunk.id for chunk in run.chunks}) == 2
    assert run.retrieved_count >= 4


def test_merge_keeps_best_score_per_chunk() -> None:
    chunk_a = Chunk(id="a", text="a", source_path="a.md")
    chunk_b = Chunk(id="b", text="b", source_path="b.md")
    merged = merge_results(
        [
            [SearchResult(chunk_a, 0.4), SearchResult(chunk_b, 0.6)],
            [SearchResult(chunk_a, 0.9)],
        ]
    )
    assert [(result.chunk.id, result.score) for result in merged] == [("a", 0.9), ("b", 0.6)]

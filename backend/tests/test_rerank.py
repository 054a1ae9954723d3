"""Reranker selection and response parsing tests."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from conftest import FakeLLM
from vault_rag.models.entities import Chunk, SearchResult
from vault_rag.retrieval.rerank import (
    DedicatedModelReranker,
    LlmFallbackReranker,
    NoOpReranker,
    RerankerKind,
    build_rerank_prompt,
    build_reranker,
    parse_rerank_response,
    should_rerank,
)


def _results(*pairs: tuple[str, float]) -> list[SearchResult]:
    return [
        SearchResult(chunk=Chunk(id=chunk_id, text=f"text {chunk_id}", source_path="n.md"), score=score)
        for chunk_id, score in pairs
    ]


def test_parse_tolerates_surrounding_text_and_trailing_commas() -> None:
    response = 'Sure! Here are the scores:\n```json\n{"a": 0.2, "b": 0.9,}\n```'
    assert parse_rerank_response(response) == {"a": 0.2, "b": 0.9}


def test_parse_clamps_and_drops_invalid_scores() -> None:
    response = '{"a": 1.7, "b": -0.3, "c": "0.5", "d": true, "e": "high", "f": null}'
    assert parse_rerank_response(response) == {"a": 1.0, "b": 0.0, "c": 0.5}


@pytest.mark.parametrize("response", ["", "no json here", "{not json}", "[0.1, 0.2]"])
def test_parse_garbage_yields_nothing(response: str) -> None:
    assert parse_rerank_response(response) == {}


def test_prompt_lists_every_candidate() -> None:
    prompt = build_rerank_prompt("soup", _results(("a", 0.5), ("b", 0.4)))
    assert "Query: soup" in prompt
    assert "ID: a" in prompt and "ID: b" in prompt


def test_request_override_wins() -> None:
    assert should_rerank(True, None) is True
    assert should_rerank(True, False) is False
    assert should_rerank(False, True) is True


@pytest.mark.asyncio
async def test_rerank_reorders_and_keeps_unscored_by_similarity() -> None:
    llm = FakeLLM(default='{"c": 0.95, "a": 0.1}')
    reranker = LlmFallbackReranker(llm)

    ranked = await reranker.rerank("q", _results(("a", 0.9), ("b", 0.5), ("c", 0.3)))

    assert [result.chunk.id for result in ranked] == ["c", "b", "a"]
    assert llm.models == [None]


@pytest.mark.asyncio
async def test_rerank_failure_keeps_input_order() -> None:
    reranker = DedicatedModelReranker(FakeLLM(fail=True), "xitao/bge-reranker-v2-m3")
    results = _results(("a", 0.9), ("b", 0.5))
    assert await reranker.rerank("q", results) == results


@pytest.mark.asyncio
async def test_unparseable_rerank_keeps_input_order() -> None:
    reranker = LlmFallbackReranker(FakeLLM(default="I cannot rank these."))
    results = _results(("a", 0.9), ("b", 0.5))
    assert await reranker.rerank("q", results) == results


@pytest.mark.asyncio
async def test_dedicated_model_chosen_when_available() -> None:
    registry = AsyncMock()
    registry.has_model.return_value = True
    llm = FakeLLM(default='{"a": 1.0}')

    choice = await build_reranker(llm, registry, "xitao/bge-reranker-v2-m3")

    assert choice.kind is RerankerKind.DEDICATED
    await choice.reranker.rerank("q", _results(("a", 0.5)))
    assert llm.models == ["xitao/bge-reranker-v2-m3"]


@pytest.mark.asyncio
async def test_missing_dedicated_model_falls_back_to_llm() -> None:
    registry = AsyncMock()
    registry.has_model.return_value = False

    choice = await build_reranker(FakeLLM(), registry, "xitao/bge-reranker-v2-m3")

    assert choice.kind is RerankerKind.LLM_FALLBACK


@pytest.mark.asyncio
async def test_blank_model_name_uses_llm_fallback() -> None:
    choice = await build_reranker(FakeLLM(), None, None)
    assert choice.kind is RerankerKind.LLM_FALLBACK


@pytest.mark.asyncio
async def test_construction_error_resolves_to_noop() -> None:
    registry = AsyncMock()
    registry.has_model.side_effect = RuntimeError("registry exploded")

    choice = await build_reranker(FakeLLM(), registry, "xitao/bge-reranker-v2-m3")

    assert choice.kind is RerankerKind.NOOP
    assert "registry exploded" in choice.reason


@pytest.mark.asyncio
async def test_missing_llm_resolves_to_noop() -> None:
    choice = await build_reranker(None, None)
    assert isinstance(choice.reranker, NoOpReranker)


@pytest.mark.asyncio
async def test_disabled_reranking_is_noop() -> None:
    registry = AsyncMock()
    choice = await build_reranker(FakeLLM(), registry, enabled=False)
    assert choice.kind is RerankerKind.NOOP
    registry.has_model.assert_not_called()

"""Query preprocessing tests."""

from __future__ import annotations

import pytest

from conftest import FakeLLM
from vault_rag.retrieval.preprocess import QueryPreprocessor, parse_alternatives


@pytest.mark.asyncio
async def test_disabled_steps_pass_query_through() -> None:
    llm = FakeLLM()
    assert await QueryPreprocessor(llm).prepare("tomato care") == ["tomato care"]
    assert llm.prompts == []


@pytest.mark.asyncio
async def test_rewrite_replaces_query() -> None:
    llm = FakeLLM(default="  how to care for tomato plants \n")
    preprocessor = QueryPreprocessor(llm, rewriting_enabled=True)
    assert await preprocessor.prepare("tomatos??") == ["how to care for tomato plants"]


@pytest.mark.asyncio
async def test_failed_or_blank_rewrite_keeps_original() -> None:
    assert await QueryPreprocessor(FakeLLM(fail=True), rewriting_enabled=True).prepare("q1") == ["q1"]
    assert await QueryPreprocessor(FakeLLM(default="   "), rewriting_enabled=True).prepare("q2") == ["q2"]


@pytest.mark.asyncio
async def test_alternatives_keep_original_first_without_duplicates() -> None:
    llm = FakeLLM(default="1. watering tomato plants\n2. tomato care\n- caring for tomatoes in summer")
    preprocessor = QueryPreprocessor(llm, multi_query_enabled=True)

    queries = await preprocessor.prepare("tomato care")

    assert queries == ["tomato care", "watering tomato plants", "caring for tomatoes in summer"]


@pytest.mark.asyncio
async def test_alternatives_failure_returns_only_original() -> None:
    preprocessor = QueryPreprocessor(FakeLLM(fail=True), multi_query_enabled=True)
    assert await preprocessor.prepare("tomato care") == ["tomato care"]


def test_parse_alternatives_drops_preamble_and_caps_count() -> None:
    response = (
        "Here are some options:\n"
        "1. first way to ask\n"
        "2. second way to ask\n"
        "ok\n"
        "3. third way to ask\n"
        "4. fourth way to ask\n"
    )
    assert parse_alternatives(response) == ["first way to ask", "second way to ask", "third way to ask"]

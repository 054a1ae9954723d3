"""Reranking of retrieved candidates."""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from enum import Enum
from typing import Mapping, Protocol, Sequence

import orjson

from vault_rag.clients.llm import LanguageModelClient
from vault_rag.clients.model_registry import ModelRegistry
from vault_rag.core.errors import LanguageModelError, RerankerInitError
from vault_rag.core.logging import get_logger
from vault_rag.core.metrics import RERANKER_SELECTED
from vault_rag.models.entities import SearchResult
from vault_rag.utils.text import truncate

logger = get_logger(__name__)

DEFAULT_RERANK_MODEL = "xitao/bge-reranker-v2-m3"
RERANK_INSTRUCTION = (
    "You are a reranker. Given a query and candidate documents, return a JSON object mapping "
    "document IDs to relevance scores (0.0 to 1.0, where 1.0 is most relevant)."
)
RERANK_RESPONSE_FORMAT = (
    'Return only a JSON object in this format: {"id1": 0.95, "id2": 0.87, ...}\n'
    "Do not include any explanation or additional text, only the JSON object."
)
CANDIDATE_TEXT_LIMIT = 500
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")


class RerankerKind(str, Enum):
    DEDICATED = "dedicated"
    LLM_FALLBACK = "llm_fallback"
    NOOP = "noop"


class Reranker(Protocol):
    kind: RerankerKind

    async def rerank(self, query: str, results: Sequence[SearchResult]) -> list[SearchResult]: ...


class _PromptReranker:
    """Score candidates with a JSON-returning prompt; any failure keeps the input order."""

    kind: RerankerKind

    def __init__(self, llm: LanguageModelClient, model: str | None = None) -> None:
        self.llm = llm
        self.model = model

    async def rerank(self, query: str, results: Sequence[SearchResult]) -> list[SearchResult]:
        if not results:
            return []
        prompt = build_rerank_prompt(query, results)
        try:
            response = await self.llm.complete(prompt, model=self.model, temperature=0.0)
        except LanguageModelError as exc:
            logger.warning("Reranking with %s failed, keeping original order: %s", self.kind.value, exc)
            return list(results)
        scores = parse_rerank_response(response)
        if not scores:
            logger.warning("Reranker returned no usable scores, keeping original order")
            return list(results)
        return order_by_scores(results, scores)


class DedicatedModelReranker(_PromptReranker):
    """Uses a reranking model served next to the chat model."""

    kind = RerankerKind.DEDICATED

    def __init__(self, llm: LanguageModelClient, model: str) -> None:
        super().__init__(llm, model=model)


class LlmFallbackReranker(_PromptReranker):
    """Reuses the general generation model."""

    kind = RerankerKind.LLM_FALLBACK

    def __init__(self, llm: LanguageModelClient) -> None:
        super().__init__(llm, model=None)


class NoOpReranker:
    kind = RerankerKind.NOOP

    async def rerank(self, query: str, results: Sequence[SearchResult]) -> list[SearchResult]:
        return list(results)


@dataclass(slots=True)
class RerankerChoice:
    """Outcome of the one-time reranker selection."""

    reranker: Reranker
    reason: str

    @property
    def kind(self) -> RerankerKind:
        return self.reranker.kind


async def build_reranker(
    llm: LanguageModelClient | None,
    registry: ModelRegistry | None,
    dedicated_model: str | None = DEFAULT_RERANK_MODEL,
    enabled: bool = True,
) -> RerankerChoice:
    """Dedicated model if the registry has it, else the LLM fallback; any error gives no-op."""
    if not enabled:
        choice = RerankerChoice(NoOpReranker(), "reranking disabled")
    else:
        try:
            choice = await _select(llm, registry, dedicated_model)
        except Exception as exc:
            logger.warning("Reranker initialization failed, reranking disabled: %s", exc)
            choice = RerankerChoice(NoOpReranker(), f"initialization failed: {exc}")

    for kind in RerankerKind:
        RERANKER_SELECTED.labels(variant=kind.value).set(1 if kind is choice.kind else 0)
    logger.info("Selected %s reranker (%s)", choice.kind.value, choice.reason)
    return choice


async def _select(
    llm: LanguageModelClient | None,
    registry: ModelRegistry | None,
    dedicated_model: str | None,
) -> RerankerChoice:
    if llm is None:
        raise RerankerInitError("no language model client configured")
    if not dedicated_model:
        return RerankerChoice(LlmFallbackReranker(llm), "no dedicated model configured")
    if registry is not None and await registry.has_model(dedicated_model):
        return RerankerChoice(DedicatedModelReranker(llm, dedicated_model), f"{dedicated_model} available")
    return RerankerChoice(LlmFallbackReranker(llm), f"{dedicated_model} not available")


def should_rerank(enabled: bool, override: bool | None) -> bool:
    if override is not None:
        return override
    return enabled


def build_rerank_prompt(query: str, results: Sequence[SearchResult]) -> str:
    if not results:
        return f"Query: {query}\n\nNo candidates to rerank."
    lines = [RERANK_INSTRUCTION, "", f"Query: {query}", "", "Candidate documents:", ""]
    for result in results:
        chunk = result.chunk
        lines.append(f"ID: {chunk.id}")
        lines.append(f"Text: {truncate(chunk.text, CANDIDATE_TEXT_LIMIT)}")
        if chunk.metadata:
            lines.append("Metadata: " + ", ".join(f"{key}={value}" for key, value in chunk.metadata.items()))
        lines.append("")
    lines.append(RERANK_RESPONSE_FORMAT)
    return "\n".join(lines)


def parse_rerank_response(response: str) -> dict[str, float]:
    """Pull ``{id: score}`` out of free text; scores are clamped to [0, 1]."""
    text = response.strip()
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return {}
    try:
        payload = orjson.loads(_TRAILING_COMMA_RE.sub(r"\1", text[start : end + 1]))
    except orjson.JSONDecodeError:
        logger.debug("Unparseable rerank response: %s", text[:200])
        return {}
    if not isinstance(payload, dict):
        return {}
    scores: dict[str, float] = {}
    for key, value in payload.items():
        score = _to_score(value)
        if score is None:
            logger.debug("Ignoring invalid score for %s: %r", key, value)
            continue
        scores[str(key)] = min(1.0, max(0.0, score))
    return scores


def order_by_scores(results: Sequence[SearchResult], scores: Mapping[str, float]) -> list[SearchResult]:
    """Sort by reranker score, using the similarity score for IDs the reranker skipped."""
    return sorted(results, key=lambda result: scores.get(result.chunk.id, result.score), reverse=True)


def _to_score(value: object) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        return None
    try:
        score = float(value)
    except ValueError:
        return None
    return score if math.isfinite(score) else None


__all__ = [
    "DEFAULT_RERANK_MODEL",
    "DedicatedModelReranker",
    "LlmFallbackReranker",
    "NoOpReranker",
    "Reranker",
    "RerankerChoice",
    "RerankerKind",
    "build_rerank_prompt",
    "build_reranker",
    "order_by_scores",
    "parse_rerank_response",
    "should_rerank",
]

"""Grounded answer composition over retrieved context."""

from __future__ import annotations

from pathlib import Path, PurePosixPath

from vault_rag.clients.llm import LanguageModelClient
from vault_rag.core.errors import RetrievalError
from vault_rag.core.logging import get_logger
from vault_rag.models.entities import RagResult, RetrievalContext, RetrievalMode
from vault_rag.retrieval.retriever import RetrievalOptions
from vault_rag.retrieval.service import RetrievalService

logger = get_logger(__name__)

SYSTEM_PROMPT = """You are an assistant that answers questions using only the provided context from personal notes.

Rules:
- Only use information from the provided context
- If the answer is not in the context, explicitly say so
- When referencing sources, mention the note or section naturally (e.g., "According to my notes on X..." or "In the section about Y...")
- Do not mention "chunks" or "chunk numbers" in your response
- Answer naturally and conversationally, as if you're recalling information from memory
- Answer concisely and accurately"""


class AnswerComposer:
    """Retrieve context for a mode, then ask the generation model for an answer.

    A failed retrieval falls back to answering with empty context, except in RAG-only
    mode where the ``RetrievalError`` reaches the caller.
    """

    def __init__(
        self,
        retrieval: RetrievalService,
        llm: LanguageModelClient,
        system_prompt: str = SYSTEM_PROMPT,
    ) -> None:
        self.retrieval = retrieval
        self.llm = llm
        self.system_prompt = system_prompt

    async def answer(
        self,
        query: str,
        mode: RetrievalMode,
        vault_path: str | Path | None = None,
        options: RetrievalOptions | None = None,
    ) -> RagResult:
        try:
            context = await self.retrieval.retrieve(query, mode, vault_path, options)
        except RetrievalError as exc:
            if mode is RetrievalMode.RAG:
                raise
            logger.warning("Retrieval failed for %s mode, answering without context: %s", mode.value, exc)
            context = RetrievalContext()

        prompt = f"{self.system_prompt}\n\n{build_user_prompt(query, context)}"
        answer = await self.llm.complete(prompt)
        return RagResult(
            answer=answer,
            chunks=list(context.local_chunks),
            used_reranker=context.used_reranker,
            metadata={
                "query": query,
                "mode": mode.value,
                "localCount": str(len(context.local_chunks)),
                "webCount": str(len(context.web_snippets)),
            },
        )


def build_user_prompt(question: str, context: RetrievalContext) -> str:
    parts: list[str] = []
    if context.local_chunks:
        parts.append("Relevant information from my notes:\n")
        for chunk in context.local_chunks:
            parts.append(f'From "{_source_label(chunk.section_title, chunk.source_path)}":\n{chunk.text}\n')
    elif not context.web_snippets:
        parts.append("Context: No relevant notes found.\n")

    if context.web_snippets:
        parts.append("Relevant information from the web:\n")
        for snippet in context.web_snippets:
            parts.append(f'From "{snippet.title or snippet.url}" ({snippet.url}):\n{snippet.snippet}\n')

    parts.append(f"Question: {question}")
    return "\n".join(parts)


def _source_label(section_title: str | None, source_path: str) -> str:
    if section_title:
        return section_title
    return PurePosixPath(source_path).stem


__all__ = ["AnswerComposer", "SYSTEM_PROMPT", "build_user_prompt"]

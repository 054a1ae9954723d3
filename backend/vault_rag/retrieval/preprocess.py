"""LLM-assisted query rewriting and expansion."""

from __future__ import annotations

import re

from vault_rag.clients.llm import LanguageModelClient
from vault_rag.core.errors import LanguageModelError
from vault_rag.core.logging import get_logger

logger = get_logger(__name__)

REWRITE_PROMPT = (
    "Rewrite this query to be clear and specific for searching personal notes. "
    "Remove chit-chat. Expand acronyms if needed. Output only the rewritten query, nothing else.\n\n"
    "Original query: {query}\n\n"
    "Rewritten query:"
)

ALTERNATIVES_PROMPT = (
    "Generate 2-3 alternative phrasings of this query for semantic search.\n\n"
    "Rules:\n"
    "- Output ONLY the queries, one per line\n"
    "- No explanations, no prefixes, no numbering\n"
    "- Each line must be a complete search query\n"
    "- Do not include the original query in your output\n\n"
    "Original query: {query}\n\n"
    "Alternative queries (one per line, no other text):"
)

MAX_ALTERNATIVES = 3
_NUMBERING_RE = re.compile(r"^\d+[.)]\s*")
_BULLET_RE = re.compile(r"^[-*]\s*")
_PREAMBLE_MARKERS = ("here are", "alternative", "phrasing", "query:", "queries:")


class QueryPreprocessor:
    """Optional rewrite and multi-query steps; any LLM failure falls back to the original query."""

    def __init__(
        self,
        llm: LanguageModelClient,
        rewriting_enabled: bool = False,
        multi_query_enabled: bool = False,
    ) -> None:
        self.llm = llm
        self.rewriting_enabled = rewriting_enabled
        self.multi_query_enabled = multi_query_enabled

    async def prepare(self, query: str) -> list[str]:
        """Queries to search, the (possibly rewritten) primary query first."""
        primary = await self.rewrite(query) if self.rewriting_enabled else query
        if self.multi_query_enabled:
            return await self.alternatives(primary)
        return [primary]

    async def rewrite(self, query: str) -> str:
        try:
            rewritten = (await self.llm.complete(REWRITE_PROMPT.format(query=query))).strip()
        except LanguageModelError as exc:
            logger.warning("Query rewrite failed, using original query: %s", exc)
            return query
        if not rewritten:
            return query
        logger.debug("Rewrote query %r -> %r", query, rewritten)
        return rewritten

    async def alternatives(self, query: str) -> list[str]:
        try:
            response = await self.llm.complete(ALTERNATIVES_PROMPT.format(query=query))
        except LanguageModelError as exc:
            logger.warning("Alternative query generation failed, using original only: %s", exc)
            return [query]
        queries = [query] + parse_alternatives(response)
        return list(dict.fromkeys(queries))


def parse_alternatives(response: str) -> list[str]:
    """Extract at most three query lines, dropping numbering, bullets and preamble."""
    alternatives: list[str] = []
    for raw in response.strip().splitlines():
        line = _BULLET_RE.sub("", _NUMBERING_RE.sub("", raw.strip()), count=1).strip()
        lowered = line.lower()
        if len(line) <= 5 or lowered.startswith("original"):
            continue
        if any(marker in lowered for marker in _PREAMBLE_MARKERS):
            continue
        alternatives.append(line)
        if len(alternatives) == MAX_ALTERNATIVES:
            break
    return alternatives


__all__ = ["QueryPreprocessor", "parse_alternatives"]

"""Keep embedding inputs within model context limits."""

from __future__ import annotations

import re
from dataclasses import replace

from vault_rag.core.logging import get_logger
from vault_rag.models.entities import Chunk

logger = get_logger(__name__)

DOCUMENT_PREFIX = "search_document: "
QUERY_PREFIX = "search_query: "

_SENTENCE_END_RE = re.compile(r"[.!?]\s+")
_MIN_SPLIT_RATIO = 0.7


class EmbeddingTextSanitizer:
    """Trim embedding text to a char cap and an approximate token cap (4 chars per token)."""

    def __init__(self, max_tokens: int = 500, max_chars: int = 2000, chars_per_token: int = 4) -> None:
        self.max_tokens = max_tokens
        self.max_chars = max_chars
        self.chars_per_token = chars_per_token

    @property
    def limit(self) -> int:
        return min(self.max_chars, self.max_tokens * self.chars_per_token)

    def sanitize(self, text: str) -> str:
        if len(text) <= self.limit:
            return text
        logger.debug("Trimming embedding text from %s to %s chars", len(text), self.limit)
        return text[: self.limit]

    def sanitize_all(self, texts: list[str]) -> list[str]:
        return [self.sanitize(text) for text in texts]

    def split_chunk(self, chunk: Chunk, reserve: int = len(DOCUMENT_PREFIX)) -> list[Chunk]:
        """Split an oversized chunk so every piece embeds without truncation.

        The first piece keeps the original ID; later pieces get ``{id}:split{n}`` and
        record ``splitFrom``/``splitIndex`` in their metadata.
        """
        max_content = max(1, self.limit - reserve)
        if len(chunk.text) <= max_content:
            return [chunk]

        logger.warning(
            "Chunk %s exceeds embedding limit (%s > %s chars); splitting",
            chunk.id,
            len(chunk.text),
            max_content,
        )
        pieces: list[Chunk] = []
        remaining = chunk.text
        index = 0
        while remaining:
            cut = len(remaining) if len(remaining) <= max_content else _split_point(remaining, max_content)
            piece = remaining[:cut].strip()
            remaining = remaining[cut:].lstrip()
            if not piece:
                continue
            if index == 0:
                pieces.append(replace(chunk, text=piece))
            else:
                metadata = dict(chunk.metadata)
                metadata["splitFrom"] = chunk.id
                metadata["splitIndex"] = str(index)
                pieces.append(replace(chunk, id=f"{chunk.id}:split{index}", text=piece, metadata=metadata))
            index += 1
        return pieces


def _split_point(text: str, max_chars: int) -> int:
    floor = int(max_chars * _MIN_SPLIT_RATIO)
    sentence_end = 0
    for match in _SENTENCE_END_RE.finditer(text):
        if match.end() > max_chars:
            break
        sentence_end = match.end()
    if sentence_end >= floor:
        return sentence_end
    for separator in ("\n\n", "\n", " "):
        position = text.rfind(separator, 0, max_chars)
        if position > 0 and position >= floor:
            return position + len(separator)
    return max_chars


__all__ = ["EmbeddingTextSanitizer", "DOCUMENT_PREFIX", "QUERY_PREFIX"]

"""Heading-aware markdown chunking."""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from typing import Sequence

from markdown_it import MarkdownIt

from vault_rag.models.entities import Chunk
from vault_rag.utils.ids import chunk_id
from vault_rag.utils.text import estimate_tokens

_MD = MarkdownIt()
_SENTENCE_END_RE = re.compile(r"[.!?]\s+")
_ORDERED_ITEM_RE = re.compile(r"^\d+\.\s")
_FRONT_MATTER_FENCE = "---"


@dataclass(slots=True)
class Heading:
    line: int
    level: int
    text: str


class MarkdownChunker:
    """Split a note into sections at H1/H2 headings, then into token-bounded chunks.

    Chunks are identified by ``{path}:{startLine}:{endLine}`` so that re-chunking identical
    content yields identical IDs. Code fences and lists are never used as a split point.
    """

    def __init__(
        self,
        target_tokens: int = 400,
        min_tokens: int = 300,
        max_tokens: int = 512,
        overlap_tokens: int = 50,
        chars_per_token: int = 4,
    ) -> None:
        self.target_tokens = target_tokens
        self.min_tokens = min_tokens
        self.max_tokens = max_tokens
        self.overlap_tokens = overlap_tokens
        self.chars_per_token = chars_per_token

    def chunk(self, file_path: str, content: str) -> list[Chunk]:
        if not content.strip():
            return []

        lines = content.splitlines()
        headings = find_headings(lines)
        starts = [0] + [heading.line for heading in headings]
        ends = [heading.line for heading in headings] + [len(lines)]

        chunks: list[Chunk] = []
        for index, (start, end) in enumerate(zip(starts, ends)):
            if start >= end:
                continue
            section_text = "\n".join(lines[start:end])
            title = section_title(file_path, headings, index - 1) if index else None
            if self._tokens(section_text) < self.min_tokens:
                if section_text.strip():
                    chunks.append(_make_chunk(file_path, start + 1, end, section_text.strip(), title))
            else:
                chunks.extend(self._split_section(file_path, section_text, start + 1, end, title))
        return _unique_ids(chunks)

    def _tokens(self, text: str) -> int:
        return estimate_tokens(text, self.chars_per_token)

    def _split_section(
        self,
        file_path: str,
        text: str,
        first_line: int,
        last_line: int,
        title: str | None,
    ) -> list[Chunk]:
        paragraphs = [paragraph for paragraph in text.split("\n\n") if paragraph.strip()]
        chunks: list[Chunk] = []
        buffer: list[str] = []
        buffer_tokens = 0
        line_start = first_line

        for position, paragraph in enumerate(paragraphs, start=1):
            paragraph_tokens = self._tokens(paragraph)
            head = paragraph.lstrip()
            atomic = head.startswith("```") or _is_list(head)

            if buffer and buffer_tokens + paragraph_tokens > self.max_tokens:
                emitted = _emit(file_path, buffer, line_start, last_line, title)
                if emitted is not None:
                    chunks.append(emitted)
                buffer, buffer_tokens, line_start = self._carry_overlap(chunks, line_start)

            buffer.append(paragraph)
            buffer_tokens += paragraph_tokens

            if buffer_tokens >= self.target_tokens and position < len(paragraphs) and not atomic:
                emitted = _emit(file_path, buffer, line_start, last_line, title)
                if emitted is not None:
                    chunks.append(emitted)
                    line_start = int(emitted.metadata["endLine"]) + 1
                buffer, buffer_tokens = [], 0

        if buffer:
            emitted = _emit(file_path, buffer, line_start, last_line, title)
            if emitted is not None:
                chunks.append(emitted)
        return chunks

    def _carry_overlap(self, chunks: Sequence[Chunk], line_start: int) -> tuple[list[str], int, int]:
        """Seed the next chunk with the tail sentences of the previous one."""
        if not chunks:
            return [], 0, line_start
        previous = chunks[-1]
        previous_end = int(previous.metadata["endLine"])
        if self.overlap_tokens <= 0:
            return [], 0, previous_end + 1
        boundaries = _sentence_boundaries(previous.text)
        if len(boundaries) < 2:
            return [], 0, previous_end + 1
        overlap = previous.text[boundaries[-2] :].strip()
        overlap_tokens = self._tokens(overlap)
        if not overlap or overlap_tokens > self.overlap_tokens:
            return [], 0, previous_end + 1
        return [overlap], overlap_tokens, max(1, previous_end - len(overlap.splitlines()) + 1)


def find_headings(lines: Sequence[str]) -> list[Heading]:
    """Locate H1/H2 headings, ignoring fenced code and YAML front matter."""
    masked = _mask_front_matter(lines)
    tokens = _MD.parse("\n".join(masked))
    headings: list[Heading] = []
    for index, token in enumerate(tokens):
        if token.type != "heading_open" or token.tag not in ("h1", "h2") or not token.map:
            continue
        inline = tokens[index + 1] if index + 1 < len(tokens) else None
        text = inline.content.strip() if inline is not None else ""
        headings.append(Heading(line=token.map[0], level=int(token.tag[1]), text=text))
    return headings


def section_title(file_path: str, headings: Sequence[Heading], heading_index: int) -> str | None:
    """Build ``path#H1 > H2`` for the section opened by ``headings[heading_index]``."""
    if heading_index < 0 or heading_index >= len(headings):
        return None
    current = headings[heading_index]
    parts = [current.text]
    if current.level == 2:
        for earlier in reversed(headings[:heading_index]):
            if earlier.level == 1:
                parts.insert(0, earlier.text)
                break
    return f"{file_path}#{' > '.join(parts)}"


def _mask_front_matter(lines: Sequence[str]) -> list[str]:
    masked = list(lines)
    if not masked or masked[0].strip() != _FRONT_MATTER_FENCE:
        return masked
    for index in range(1, len(masked)):
        if masked[index].strip() == _FRONT_MATTER_FENCE:
            for blank in range(index + 1):
                masked[blank] = ""
            break
    return masked


def _is_list(text: str) -> bool:
    return text.startswith("- ") or text.startswith("* ") or bool(_ORDERED_ITEM_RE.match(text))


def _sentence_boundaries(text: str) -> list[int]:
    boundaries = [match.end() for match in _SENTENCE_END_RE.finditer(text)]
    if not boundaries or boundaries[-1] < len(text):
        boundaries.append(len(text))
    return boundaries


def _emit(
    file_path: str,
    buffer: Sequence[str],
    line_start: int,
    last_line: int,
    title: str | None,
) -> Chunk | None:
    body = "\n\n".join(buffer).strip()
    if not body:
        return None
    line_end = min(line_start + len(body.splitlines()) - 1, last_line)
    return _make_chunk(file_path, line_start, max(line_start, line_end), body, title)


def _make_chunk(file_path: str, start_line: int, end_line: int, text: str, title: str | None) -> Chunk:
    metadata = {
        "filePath": file_path,
        "startLine": str(start_line),
        "endLine": str(end_line),
    }
    if title:
        metadata["sectionTitle"] = title
    return Chunk(
        id=chunk_id(file_path, start_line, end_line),
        text=text,
        source_path=file_path,
        metadata=metadata,
    )


def _unique_ids(chunks: Sequence[Chunk]) -> list[Chunk]:
    seen: dict[str, int] = {}
    unique: list[Chunk] = []
    for chunk in chunks:
        count = seen.get(chunk.id, 0)
        seen[chunk.id] = count + 1
        unique.append(chunk if count == 0 else replace(chunk, id=f"{chunk.id}:{count}"))
    return unique


__all__ = ["MarkdownChunker", "Heading", "find_headings", "section_title"]

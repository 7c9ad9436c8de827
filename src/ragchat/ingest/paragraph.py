"""Paragraph chunker — blank-line aligned segments of bounded size."""

from __future__ import annotations

import re

from ragchat.ingest.base import BaseChunker
from ragchat.models import RAGChunk

_PARAGRAPH_BREAK = re.compile(r"\n\s*\n")
_JOINER = "\n\n"


class ParagraphChunker(BaseChunker):
    """Accumulate paragraphs until the next one would reach ``chunk_size``.

    The size check is ``len(buffer + paragraph) >= chunk_size`` (the joiner is
    not counted). A single paragraph longer than ``chunk_size`` is emitted as
    one oversized chunk; nothing is truncated.
    """

    def __init__(self, chunk_size: int = 500) -> None:
        super().__init__(chunk_size=chunk_size)

    def chunk(self, source_id: str, content: str) -> list[RAGChunk]:
        if not content.strip():
            return []
        return self._make_chunks(source_id, self.split(content))

    def split(self, content: str) -> list[str]:
        segments: list[str] = []
        buffer = ""
        for paragraph in _PARAGRAPH_BREAK.split(content):
            if not paragraph.strip():
                continue
            if len(buffer + paragraph) < self.chunk_size:
                buffer += (_JOINER if buffer else "") + paragraph
                continue
            if buffer:
                segments.append(buffer)
            buffer = paragraph
        if buffer:
            segments.append(buffer)
        return segments


def chunk(text: str, source_id: str = "", chunk_size: int = 500) -> list[RAGChunk]:
    """Chunk *text* with a default ParagraphChunker."""
    return ParagraphChunker(chunk_size=chunk_size).chunk(source_id, text)

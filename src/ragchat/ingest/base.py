"""Base chunker interface for RAG sources."""

from __future__ import annotations

from abc import ABC, abstractmethod

from ragchat.models import RAGChunk


class BaseChunker(ABC):
    """Abstract base for all chunkers.

    Subclasses implement ``chunk()`` and may use ``_make_chunks()`` to turn
    text segments into sequentially indexed RAGChunks.
    """

    def __init__(self, chunk_size: int = 500) -> None:
        if chunk_size < 1:
            raise ValueError("chunk_size must be >= 1")
        self.chunk_size = chunk_size

    @abstractmethod
    def chunk(self, source_id: str, content: str) -> list[RAGChunk]:
        """Split *content* into RAGChunk objects for *source_id*.

        Args:
            source_id: Identifier of the parent RAGSource.
            content: Full raw text of the source.

        Returns:
            Ordered list of RAGChunk objects with sequential ``index``.
        """

    @staticmethod
    def _make_chunks(source_id: str, texts: list[str]) -> list[RAGChunk]:
        """Convert a list of text strings into sequentially indexed chunks."""
        return [
            RAGChunk(source_id=source_id, index=i, content=t)
            for i, t in enumerate(texts)
        ]

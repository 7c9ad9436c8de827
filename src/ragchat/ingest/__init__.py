"""Source ingestion — chunking and source/attachment builders."""

from ragchat.ingest.base import BaseChunker
from ragchat.ingest.paragraph import ParagraphChunker, chunk

__all__ = [
    "BaseChunker",
    "ParagraphChunker",
    "chunk",
]

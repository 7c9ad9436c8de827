"""Keyword-overlap retriever.

score(chunk) = (# query keywords found as substrings of the chunk) / (# keywords)

Keywords are the whitespace-split, lowercased query. Repeated query words
are not de-duplicated: each occurrence counts in both numerator and
denominator. A keyword found several times in a chunk still counts once.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from ragchat.models import RAGChunk, RAGSource

DEFAULT_TOP_K = 3


@dataclass
class ScoredChunk:
    """A chunk together with its keyword-overlap score (0.0-1.0)."""

    chunk: RAGChunk
    score: float


def keywords(query: str) -> list[str]:
    return query.lower().split()


def score_chunk(chunk: RAGChunk, query_keywords: list[str]) -> float:
    if not query_keywords:
        return 0.0
    content = chunk.content.lower()
    hits = sum(1 for kw in query_keywords if kw in content)
    return hits / len(query_keywords)


def score_chunks(chunks: Iterable[RAGChunk], query: str) -> list[ScoredChunk]:
    """Score every chunk, best first, dropping zero scores. Ties keep input order."""
    query_keywords = keywords(query)
    if not query_keywords:
        return []
    scored = [ScoredChunk(chunk=c, score=score_chunk(c, query_keywords)) for c in chunks]
    scored = [s for s in scored if s.score > 0]
    # list.sort is stable, so equal scores keep their input order
    scored.sort(key=lambda s: s.score, reverse=True)
    return scored


def rank(chunks: Iterable[RAGChunk], query: str, top_k: int = DEFAULT_TOP_K) -> list[RAGChunk]:
    """Return at most *top_k* chunks relevant to *query*, best first."""
    return [s.chunk for s in score_chunks(chunks, query)[:top_k]]


def find_relevant_chunks(
    sources: Iterable[RAGSource], query: str, top_k: int = DEFAULT_TOP_K
) -> list[RAGChunk]:
    """Rank the chunks of all *sources* (in source order) against *query*."""
    all_chunks = [c for source in sources for c in source.chunks]
    return rank(all_chunks, query, top_k=top_k)

"""Tests for the keyword-overlap retriever."""

from __future__ import annotations

from ragchat.models import RAGChunk, RAGSource
from ragchat.rag.retriever import (
    find_relevant_chunks,
    keywords,
    rank,
    score_chunk,
    score_chunks,
)


def _chunk(content: str, index: int = 0, source_id: str = "src") -> RAGChunk:
    return RAGChunk(source_id=source_id, index=index, content=content)


# ------------------------------------------------------------------
# keywords / score_chunk
# ------------------------------------------------------------------


def test_keywords_lowercase_whitespace_split():
    assert keywords("  What IS\tRAG?  ") == ["what", "is", "rag?"]


def test_score_is_fraction_of_keywords_found():
    c = _chunk("RAG is retrieval augmented generation")
    assert score_chunk(c, keywords("what is rag")) == 2 / 3


def test_score_matches_substrings():
    # "is" is found inside "this"
    assert score_chunk(_chunk("this text"), ["is"]) == 1.0


def test_score_case_insensitive():
    assert score_chunk(_chunk("PYDANTIC models"), keywords("pydantic")) == 1.0


def test_repeated_query_words_count_each_time():
    c = _chunk("rag pipeline")
    assert score_chunk(c, keywords("rag rag python")) == 2 / 3


def test_repeated_content_matches_count_once():
    c = _chunk("rag rag rag rag")
    assert score_chunk(c, keywords("rag python")) == 1 / 2


def test_score_no_keywords_is_zero():
    assert score_chunk(_chunk("anything"), []) == 0.0


# ------------------------------------------------------------------
# rank / score_chunks
# ------------------------------------------------------------------


def test_rank_best_first():
    chunks = [
        _chunk("nothing relevant here", 0),
        _chunk("rag", 1),
        _chunk("what is rag", 2),
    ]
    ranked = rank(chunks, "what is rag")
    assert [c.index for c in ranked] == [2, 1]


def test_rank_drops_zero_scores():
    assert rank([_chunk("unrelated")], "pydantic") == []


def test_rank_respects_top_k():
    chunks = [_chunk(f"rag fragment {i}", i) for i in range(10)]
    assert len(rank(chunks, "rag", top_k=3)) == 3


def test_rank_ties_keep_input_order():
    chunks = [_chunk("rag a", 0), _chunk("rag b", 1), _chunk("rag c", 2), _chunk("rag d", 3)]
    assert [c.index for c in rank(chunks, "rag", top_k=3)] == [0, 1, 2]


def test_rank_empty_query_returns_empty():
    assert rank([_chunk("rag")], "   ") == []


def test_rank_no_chunks_returns_empty():
    assert rank([], "rag") == []


def test_score_chunks_carries_scores():
    scored = score_chunks([_chunk("what is rag"), _chunk("rag")], "what is rag")
    assert [s.score for s in scored] == [1.0, 1 / 3]


# ------------------------------------------------------------------
# find_relevant_chunks
# ------------------------------------------------------------------


def test_find_relevant_chunks_across_sources():
    s1 = RAGSource(name="a", type="text", content="", chunks=[_chunk("vectors", 0, "s1")])
    s2 = RAGSource(
        name="b",
        type="text",
        content="",
        chunks=[_chunk("RAG with Pydantic", 0, "s2"), _chunk("other", 1, "s2")],
    )
    found = find_relevant_chunks([s1, s2], "pydantic rag")
    assert [c.id for c in found] == ["s2:0"]


def test_find_relevant_chunks_no_sources():
    assert find_relevant_chunks([], "rag") == []

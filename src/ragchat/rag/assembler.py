"""Context assembler: render ranked chunks into one block for the system prompt."""

from __future__ import annotations

from ragchat.models import RAGChunk

_PREAMBLE = "Relevant context information:"
_INSTRUCTION = "Use this information to answer the user's question."


def assemble(chunks: list[RAGChunk]) -> str:
    """Render *chunks* (best first) as a labelled context block.

    Returns the empty string for no chunks; callers then omit the context
    block entirely.
    """
    if not chunks:
        return ""

    fragments = "\n\n".join(
        f"[Fragment {i + 1}]:\n{chunk.content}" for i, chunk in enumerate(chunks)
    )
    return f"{_PREAMBLE}\n\n{fragments}\n\n{_INSTRUCTION}"

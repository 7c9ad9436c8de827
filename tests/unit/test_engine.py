"""Tests for engine init/dispose."""

from __future__ import annotations

import asyncio

from ragchat.config import Credentials, RagChatConfig, RetrievalCfg
from ragchat.engine import dispose_engine, init_engine, with_chunks
from ragchat.ingest.paragraph import ParagraphChunker
from ragchat.models import RAGSource, SourceDraft
from ragchat.store.sqlite import SqliteStore
from ragchat.sync.cache import CONVERSATIONS, SOURCES


def test_init_preloads_conversations_and_sources(store):
    async def main():
        await store.create_conversation("first")
        await store.create_source(SourceDraft(name="n", type="text", content="one\n\ntwo"))
        handle = await init_engine(Credentials(), store)
        try:
            return (
                handle.cache.snapshot(CONVERSATIONS),
                handle.cache.snapshot(SOURCES),
                handle.listener.active,
            )
        finally:
            await dispose_engine(handle)

    conversations, sources, active = asyncio.run(main())
    assert [c.title for c in conversations] == ["first"]
    assert sources[0].chunks[0].source_id == sources[0].id
    assert active


def test_init_uses_configured_chunk_size(store):
    config = RagChatConfig(retrieval=RetrievalCfg(chunk_size=3))

    async def main():
        await store.create_source(SourceDraft(name="n", type="text", content="aaaa\n\nbbbb"))
        handle = await init_engine(Credentials(), store, config)
        try:
            return handle.cache.snapshot(SOURCES)[0]
        finally:
            await dispose_engine(handle)

    assert len(asyncio.run(main()).chunks) == 2


def test_failed_preload_is_notified_not_raised(tmp_path):
    unopened = SqliteStore(tmp_path / "never.db")

    async def main():
        handle = await init_engine(Credentials(), unopened)
        levels = handle.notifier.levels()
        await dispose_engine(handle)
        return levels

    assert asyncio.run(main()) == ["warning", "warning"]


def test_dispose_cancels_tracked_tasks(store):
    async def main():
        handle = await init_engine(Credentials(), store, preload=False)
        task = handle.track(asyncio.create_task(asyncio.sleep(10)))
        await dispose_engine(handle)
        return task, handle

    task, handle = asyncio.run(main())
    assert task.cancelled()
    assert handle.disposed
    assert handle.tasks == set()


def test_with_chunks_recomputes_for_new_id():
    chunker = ParagraphChunker(chunk_size=500)
    source = RAGSource(name="n", type="text", content="body", id="local-1")
    source = with_chunks(source, chunker)
    stored = RAGSource(name="n", type="text", content="body", chunks=source.chunks, id="srv-1")

    rechunked = with_chunks(stored, chunker)
    assert [c.source_id for c in rechunked.chunks] == ["srv-1"]
    assert with_chunks(rechunked, chunker) is rechunked

"""Tests for the in-process ChangeFeed."""

from __future__ import annotations

import asyncio
import logging

from ragchat.store.base import OP_DELETE, OP_INSERT, ChangeEvent
from ragchat.store.changes import ChangeFeed


def _event(table: str = "messages", op: str = OP_INSERT, row_id: str = "m1") -> ChangeEvent:
    return ChangeEvent(table=table, op=op, new={"id": row_id, "conversation_id": "c1"})


def test_publish_delivers_on_next_loop_iteration():
    feed = ChangeFeed()
    received: list[ChangeEvent] = []
    feed.subscribe("messages", received.append)

    async def scenario():
        feed.publish(_event())
        assert received == []  # never inline
        await asyncio.sleep(0)
        return list(received)

    assert [e.row_id for e in asyncio.run(scenario())] == ["m1"]


def test_publish_only_reaches_matching_table():
    feed = ChangeFeed()
    messages: list[ChangeEvent] = []
    sources: list[ChangeEvent] = []
    feed.subscribe("messages", messages.append)
    feed.subscribe("rag_sources", sources.append)

    async def scenario():
        feed.publish(_event("rag_sources", row_id="s1"))
        await asyncio.sleep(0)

    asyncio.run(scenario())
    assert messages == []
    assert [e.row_id for e in sources] == ["s1"]


def test_publish_without_subscribers_is_noop():
    ChangeFeed().publish(_event())  # no running loop needed when nobody listens


def test_unsubscribe_after_publish_skips_delivery():
    feed = ChangeFeed()
    received: list[ChangeEvent] = []
    sub = feed.subscribe("messages", received.append)

    async def scenario():
        feed.publish(_event())
        feed.unsubscribe(sub)
        await asyncio.sleep(0)

    asyncio.run(scenario())
    assert received == []
    assert feed.subscriber_count() == 0


def test_unsubscribe_unknown_is_ignored():
    feed = ChangeFeed()
    sub = feed.subscribe("messages", lambda e: None)
    feed.unsubscribe(sub)
    feed.unsubscribe(sub)
    assert feed.subscriber_count("messages") == 0


def test_failing_subscriber_does_not_block_others(caplog):
    feed = ChangeFeed()
    received: list[ChangeEvent] = []

    def boom(event):
        raise RuntimeError("subscriber bug")

    feed.subscribe("messages", boom)
    feed.subscribe("messages", received.append)

    async def scenario():
        feed.publish(_event(op=OP_DELETE))
        await asyncio.sleep(0)

    with caplog.at_level(logging.ERROR, logger="ragchat.store.changes"):
        asyncio.run(scenario())
    assert len(received) == 1
    assert "subscriber failed" in caplog.text


def test_event_row_falls_back_to_old():
    event = ChangeEvent(table="messages", op=OP_DELETE, old={"id": "m9", "conversation_id": "c"})
    assert event.row_id == "m9"
    assert event.row["conversation_id"] == "c"

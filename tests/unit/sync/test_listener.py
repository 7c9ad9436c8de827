"""Tests for ReconciliationListener: change events to cache updates."""

from __future__ import annotations

import asyncio
import logging

from ragchat.errors import TransportError
from ragchat.models import Message
from ragchat.store.base import (
    OP_DELETE,
    OP_INSERT,
    OP_UPDATE,
    TABLE_CONVERSATIONS,
    TABLE_MESSAGES,
    ChangeEvent,
)
from ragchat.store.changes import ChangeFeed
from ragchat.sync.cache import CONVERSATIONS, MESSAGES, LocalCache
from ragchat.sync.listener import ReconciliationListener


def _msg(mid: str, ts: int, conv: str = "c1") -> Message:
    return Message(
        conversation_id=conv,
        role="user",
        content=mid,
        timestamp=f"2025-01-01T00:00:{ts:02d}.000000Z",
        id=mid,
    )


class _Rows:
    """Mutable fake server state with a call log."""

    def __init__(self, messages: dict | None = None) -> None:
        self.messages = messages or {}
        self.calls: list = []
        self.fail = False

    async def load_messages(self, key):
        self.calls.append(key)
        if self.fail:
            raise TransportError("store offline")
        return list(self.messages.get(key, []))

    async def load_conversations(self, _key):
        self.calls.append("conversations")
        return []


def _setup(rows: _Rows):
    feed = ChangeFeed()
    cache = LocalCache({MESSAGES: rows.load_messages, CONVERSATIONS: rows.load_conversations})
    listener = ReconciliationListener(feed, cache)
    listener.start()
    return feed, cache, listener


async def _deliver(listener: ReconciliationListener) -> None:
    await asyncio.sleep(0)
    await listener.idle()


def _message_event(op: str, mid: str, conv: str = "c1") -> ChangeEvent:
    row = {"id": mid, "conversation_id": conv}
    if op == OP_DELETE:
        return ChangeEvent(table=TABLE_MESSAGES, op=op, old=row)
    return ChangeEvent(table=TABLE_MESSAGES, op=op, new=row)


def test_start_is_idempotent():
    feed, _, listener = _setup(_Rows())
    listener.start()
    assert listener.active
    assert feed.subscriber_count() == 3


def test_stop_leaves_no_subscriptions():
    feed, _, listener = _setup(_Rows())
    asyncio.run(listener.stop())
    assert not listener.active
    assert feed.subscriber_count() == 0


def test_insert_echo_of_cached_item_is_ignored():
    rows = _Rows({"c1": [_msg("m1", 1)]})
    feed, cache, listener = _setup(rows)

    async def scenario():
        await cache.read(MESSAGES, "c1")
        feed.publish(_message_event(OP_INSERT, "m1"))
        await _deliver(listener)

    asyncio.run(scenario())
    assert rows.calls == ["c1"]
    assert not cache.is_stale(MESSAGES, "c1")


def test_insert_of_unknown_item_refetches_loaded_partition():
    rows = _Rows({"c1": [_msg("m1", 1)]})
    feed, cache, listener = _setup(rows)

    async def scenario():
        await cache.read(MESSAGES, "c1")
        rows.messages["c1"].append(_msg("m2", 2))
        feed.publish(_message_event(OP_INSERT, "m2"))
        await _deliver(listener)

    asyncio.run(scenario())
    assert [m.id for m in cache.snapshot(MESSAGES, "c1")] == ["m1", "m2"]
    assert rows.calls == ["c1", "c1"]


def test_update_refetches_even_when_cached():
    rows = _Rows({"c1": [_msg("m1", 1)]})
    feed, cache, listener = _setup(rows)

    async def scenario():
        await cache.read(MESSAGES, "c1")
        feed.publish(_message_event(OP_UPDATE, "m1"))
        await _deliver(listener)

    asyncio.run(scenario())
    assert rows.calls == ["c1", "c1"]


def test_delete_removes_without_refetch():
    rows = _Rows({"c1": [_msg("m1", 1), _msg("m2", 2)]})
    feed, cache, listener = _setup(rows)

    async def scenario():
        await cache.read(MESSAGES, "c1")
        feed.publish(_message_event(OP_DELETE, "m1"))
        await _deliver(listener)

    asyncio.run(scenario())
    assert [m.id for m in cache.snapshot(MESSAGES, "c1")] == ["m2"]
    assert rows.calls == ["c1"]


def test_event_for_unloaded_partition_does_not_fetch():
    rows = _Rows()
    feed, cache, listener = _setup(rows)

    async def scenario():
        feed.publish(_message_event(OP_INSERT, "m1", conv="other"))
        await _deliver(listener)

    asyncio.run(scenario())
    assert rows.calls == []
    assert not cache.is_loaded(MESSAGES, "other")


def test_message_event_without_conversation_id_ignored():
    rows = _Rows({"c1": []})
    feed, cache, listener = _setup(rows)

    async def scenario():
        await cache.read(MESSAGES, "c1")
        feed.publish(ChangeEvent(table=TABLE_MESSAGES, op=OP_INSERT, new={"id": "m9"}))
        await _deliver(listener)

    asyncio.run(scenario())
    assert rows.calls == ["c1"]


def test_refetch_deferred_while_writes_pending():
    rows = _Rows({"c1": []})
    feed, cache, listener = _setup(rows)

    async def scenario():
        await cache.read(MESSAGES, "c1")
        handle = cache.optimistic_append(MESSAGES, "c1", _msg("local-1", 1))
        rows.messages["c1"] = [_msg("srv-1", 1)]
        feed.publish(_message_event(OP_INSERT, "srv-1"))
        await _deliver(listener)
        calls_while_pending = list(rows.calls)

        cache.confirm(handle, _msg("srv-1", 1))
        await _deliver(listener)
        return calls_while_pending

    calls_while_pending = asyncio.run(scenario())
    assert calls_while_pending == ["c1"]
    assert rows.calls == ["c1", "c1"]
    assert [m.id for m in cache.snapshot(MESSAGES, "c1")] == ["srv-1"]


def test_conversation_events_refetch_conversation_list():
    rows = _Rows()
    feed, cache, listener = _setup(rows)

    async def scenario():
        await cache.read(CONVERSATIONS)
        feed.publish(ChangeEvent(table=TABLE_CONVERSATIONS, op=OP_UPDATE, new={"id": "c1"}))
        await _deliver(listener)

    asyncio.run(scenario())
    assert rows.calls == ["conversations", "conversations"]


def test_failed_refetch_logged_and_partition_stays_stale(caplog):
    rows = _Rows({"c1": []})
    feed, cache, listener = _setup(rows)

    async def scenario():
        await cache.read(MESSAGES, "c1")
        rows.fail = True
        feed.publish(_message_event(OP_INSERT, "m5"))
        await _deliver(listener)

    with caplog.at_level(logging.WARNING, logger="ragchat.sync.listener"):
        asyncio.run(scenario())
    assert "refetch of messages/c1 failed" in caplog.text
    assert cache.is_stale(MESSAGES, "c1")


def _confirm_server_copy(cache: LocalCache, rows: _Rows, server: Message) -> None:
    local = Message(conversation_id="c1", role="user", content=server.content)
    handle = cache.optimistic_append(MESSAGES, "c1", local)
    rows.messages.setdefault("c1", []).append(server)
    assert cache.confirm(handle, server)


def test_repeated_insert_for_confirmed_message_changes_nothing():
    rows = _Rows({"c1": [_msg("m1", 1)]})
    feed, cache, listener = _setup(rows)
    seen: list = []

    async def scenario():
        await cache.read(MESSAGES, "c1")
        _confirm_server_copy(cache, rows, _msg("m2", 2))
        before = cache.snapshot(MESSAGES, "c1")
        cache.watch(lambda partition, key: seen.append((partition, key)))
        feed.publish(_message_event(OP_INSERT, "m2"))
        feed.publish(_message_event(OP_INSERT, "m2"))
        await _deliver(listener)
        return before

    before = asyncio.run(scenario())
    after = cache.snapshot(MESSAGES, "c1")
    assert after == before
    assert [m.id for m in after] == ["m1", "m2"]
    assert rows.calls == ["c1"]
    assert seen == []


def test_update_for_confirmed_message_refetches_without_duplicate():
    rows = _Rows({"c1": [_msg("m1", 1)]})
    feed, cache, listener = _setup(rows)

    async def scenario():
        await cache.read(MESSAGES, "c1")
        _confirm_server_copy(cache, rows, _msg("m2", 2))
        feed.publish(_message_event(OP_UPDATE, "m2"))
        await _deliver(listener)

    asyncio.run(scenario())
    assert rows.calls == ["c1", "c1"]
    assert [m.id for m in cache.snapshot(MESSAGES, "c1")] == ["m1", "m2"]
    assert not cache.has_pending(MESSAGES, "c1")

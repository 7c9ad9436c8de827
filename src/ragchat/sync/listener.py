"""Reconciliation listener: turns store change events into cache updates.

Per event:
  DELETE of a cached id           → cache.remove()
  INSERT of an id already cached  → ignored (echo of our own confirmed write)
  anything else                   → invalidate the partition, and refetch it
                                    right away if it has been loaded before

A refetch of a partition that still has optimistic writes in flight is
deferred until those writes settle, so an echo that races the confirm can
never show the same message twice.
"""

from __future__ import annotations

import asyncio
import logging

from ragchat.errors import RagChatError
from ragchat.store.base import (
    OP_DELETE,
    OP_INSERT,
    TABLE_CONVERSATIONS,
    TABLE_MESSAGES,
    TABLE_SOURCES,
    ChangeEvent,
)
from ragchat.store.changes import ChangeFeed, Subscription
from ragchat.sync.cache import CONVERSATIONS, MESSAGES, SOURCES, LocalCache

logger = logging.getLogger(__name__)


class ReconciliationListener:
    def __init__(self, feed: ChangeFeed, cache: LocalCache) -> None:
        self._feed = feed
        self._cache = cache
        self._subscriptions: list[Subscription] = []
        self._tasks: set[asyncio.Task] = set()
        self._deferred: set[tuple[str, str | None]] = set()
        self._unwatch = None

    @property
    def active(self) -> bool:
        return bool(self._subscriptions)

    def start(self) -> None:
        """Subscribe to conversations, messages and sources. Calling twice is a no-op."""
        if self._subscriptions:
            return
        self._subscriptions = [
            self._feed.subscribe(TABLE_CONVERSATIONS, self._on_conversation),
            self._feed.subscribe(TABLE_MESSAGES, self._on_message),
            self._feed.subscribe(TABLE_SOURCES, self._on_source),
        ]
        self._unwatch = self._cache.watch(self._on_cache_change)
        logger.debug("reconciliation listener started")

    async def stop(self) -> None:
        """Unsubscribe and cancel in-flight refetches."""
        for sub in self._subscriptions:
            self._feed.unsubscribe(sub)
        self._subscriptions = []
        if self._unwatch is not None:
            self._unwatch()
            self._unwatch = None
        self._deferred.clear()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.debug("reconciliation listener stopped")

    async def idle(self) -> None:
        """Wait until every scheduled refetch has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------

    def _on_conversation(self, event: ChangeEvent) -> None:
        self._reconcile(CONVERSATIONS, None, event)

    def _on_message(self, event: ChangeEvent) -> None:
        conversation_id = event.row.get("conversation_id")
        if not conversation_id:
            logger.debug("message event without conversation_id ignored: %s", event)
            return
        self._reconcile(MESSAGES, conversation_id, event)

    def _on_source(self, event: ChangeEvent) -> None:
        self._reconcile(SOURCES, None, event)

    def _reconcile(self, partition: str, key: str | None, event: ChangeEvent) -> None:
        row_id = event.row_id
        if event.op == OP_DELETE:
            if row_id:
                self._cache.remove(partition, key, row_id)
            return
        if (
            event.op == OP_INSERT
            and row_id
            and self._cache.contains(partition, key, row_id)
            and not self._cache.is_pending(partition, key, row_id)
        ):
            return
        self._cache.invalidate(partition, key)
        self._schedule_refresh(partition, key)

    # ------------------------------------------------------------------
    # Refetch scheduling
    # ------------------------------------------------------------------

    def _schedule_refresh(self, partition: str, key: str | None) -> None:
        if not self._cache.is_loaded(partition, key):
            return  # the next read() fetches
        if self._cache.has_pending(partition, key):
            self._deferred.add((partition, key))
            return
        task = asyncio.get_running_loop().create_task(self._refresh(partition, key))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _refresh(self, partition: str, key: str | None) -> None:
        try:
            await self._cache.refresh(partition, key)
        except RagChatError as exc:
            logger.warning("refetch of %s/%s failed: %s", partition, key, exc)

    def _on_cache_change(self, partition: str, key: str | None) -> None:
        target = (partition, key)
        if target not in self._deferred or self._cache.has_pending(partition, key):
            return
        self._deferred.discard(target)
        if self._cache.is_stale(partition, key):
            self._schedule_refresh(partition, key)

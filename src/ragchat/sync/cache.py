"""Local cache: keyed in-memory mirror of the remote collections.

Partitions (partition name, key):
  ("conversations", None)          all conversations, newest update first
  ("messages", <conversation id>)  one conversation's messages, oldest first
  ("sources", None)                all RAG sources, oldest first

Writes are applied optimistically and settled later:

  optimistic_append ──► confirm      server record replaces the local one (id remap)
                    ├─► rollback     local item removed, partition as before
                    └─► keep_local   durable write failed; item stays, marked local-only

A refetch (read of a stale partition, or refresh()) is merged by identifier:
fetched items replace cached ones, except that a locally confirmed/replaced
server item wins over the fetched copy once; pending, local-only and
confirmed-but-not-yet-fetched items survive the merge. Every mutation builds
a new tuple and swaps it in, so readers never observe a half-applied change.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from operator import attrgetter
from typing import Any

logger = logging.getLogger(__name__)

CONVERSATIONS = "conversations"
MESSAGES = "messages"
SOURCES = "sources"
PARTITIONS = (CONVERSATIONS, MESSAGES, SOURCES)

Loader = Callable[[str | None], Awaitable[list[Any]]]
Watcher = Callable[[str, str | None], None]

# partition → (sort key, descending)
_ORDERING: dict[str, tuple[Callable[[Any], Any], bool]] = {
    CONVERSATIONS: (attrgetter("updated_at"), True),
    MESSAGES: (attrgetter("timestamp"), False),
    SOURCES: (attrgetter("created_at"), False),
}


@dataclass(frozen=True)
class PendingWrite:
    """Correlation handle returned by optimistic_append()."""

    handle_id: str
    partition: str
    key: str | None
    local_id: str


class _Partition:
    def __init__(self) -> None:
        self.items: tuple[Any, ...] = ()
        self.loaded = False
        self.stale = True
        self.generation = 0  # bumped by invalidate(); detects invalidation during a fetch
        self.pending: set[str] = set()
        self.local_only: set[str] = set()
        self.confirmed: dict[str, Any] = {}
        self.lock = asyncio.Lock()

    def index_of(self, item_id: str) -> int:
        for i, item in enumerate(self.items):
            if item.id == item_id:
                return i
        return -1


class LocalCache:
    """In-memory mirror of conversations, messages and sources.

    Loaders are coroutine functions ``loader(key) -> list`` registered per
    partition; they are only called by read()/refresh().
    """

    def __init__(self, loaders: dict[str, Loader] | None = None) -> None:
        self._loaders: dict[str, Loader] = {}
        self._partitions: dict[tuple[str, str | None], _Partition] = {}
        self._handles: dict[str, tuple[str, str | None, str]] = {}
        self._watchers: list[Watcher] = []
        for partition, loader in (loaders or {}).items():
            self.set_loader(partition, loader)

    def set_loader(self, partition: str, loader: Loader) -> None:
        _check_partition(partition)
        self._loaders[partition] = loader

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def snapshot(self, partition: str, key: str | None = None) -> list[Any]:
        """Current items without fetching."""
        part = self._get_part(partition, key)
        return list(part.items) if part else []

    def get(self, partition: str, key: str | None, item_id: str) -> Any | None:
        part = self._get_part(partition, key)
        if part is None:
            return None
        idx = part.index_of(item_id)
        return part.items[idx] if idx >= 0 else None

    def contains(self, partition: str, key: str | None, item_id: str) -> bool:
        return self.get(partition, key, item_id) is not None

    def is_stale(self, partition: str, key: str | None = None) -> bool:
        part = self._get_part(partition, key)
        return part is None or part.stale

    def is_loaded(self, partition: str, key: str | None = None) -> bool:
        part = self._get_part(partition, key)
        return part is not None and part.loaded

    def is_pending(self, partition: str, key: str | None, item_id: str) -> bool:
        part = self._get_part(partition, key)
        return part is not None and item_id in part.pending

    def is_local_only(self, partition: str, key: str | None, item_id: str) -> bool:
        part = self._get_part(partition, key)
        return part is not None and item_id in part.local_only

    def has_pending(self, partition: str, key: str | None = None) -> bool:
        part = self._get_part(partition, key)
        return part is not None and bool(part.pending)

    def keys(self, partition: str) -> list[str | None]:
        _check_partition(partition)
        return [k for (p, k) in self._partitions if p == partition]

    async def read(self, partition: str, key: str | None = None) -> list[Any]:
        """Return the partition, refetching first if it is stale or never loaded."""
        part = self._part(partition, key)
        if part.stale:
            async with part.lock:
                if part.stale:
                    await self._fetch(partition, key, part)
        return list(part.items)

    async def refresh(self, partition: str, key: str | None = None) -> list[Any]:
        """Refetch unconditionally and merge by identifier."""
        part = self._part(partition, key)
        async with part.lock:
            await self._fetch(partition, key, part)
        return list(part.items)

    # ------------------------------------------------------------------
    # Optimistic writes
    # ------------------------------------------------------------------

    def optimistic_append(self, partition: str, key: str | None, item: Any) -> PendingWrite:
        """Insert *item* before the remote write resolves."""
        part = self._part(partition, key)
        if part.index_of(item.id) >= 0:
            raise ValueError(f"Item '{item.id}' is already in {partition}/{key}.")
        handle = PendingWrite(
            handle_id=str(uuid.uuid4()), partition=partition, key=key, local_id=item.id
        )
        part.pending.add(item.id)
        self._handles[handle.handle_id] = (partition, key, item.id)
        self._commit(partition, key, part, [*part.items, item])
        return handle

    def confirm(self, handle: PendingWrite, server_item: Any) -> bool:
        """Swap the optimistic item for the server's canonical record.

        Returns False if the handle was already settled or its item removed.
        """
        resolved = self._settle(handle)
        if resolved is None:
            return False
        partition, key, part, current_id = resolved

        items: list[Any] = []
        replaced = False
        for item in part.items:
            if item.id == current_id:
                items.append(server_item)
                replaced = True
            elif item.id == server_item.id:
                # a refetch already brought the server copy in; drop the duplicate
                continue
            else:
                items.append(item)
        if not replaced:
            return False
        part.confirmed[server_item.id] = server_item
        self._commit(partition, key, part, items)
        return True

    def rollback(self, handle: PendingWrite) -> bool:
        """Remove the optimistic item; the partition returns to its pre-append state."""
        resolved = self._settle(handle)
        if resolved is None:
            return False
        partition, key, part, current_id = resolved
        self._commit(partition, key, part, [i for i in part.items if i.id != current_id])
        return True

    def keep_local(self, handle: PendingWrite) -> bool:
        """Durable write failed: keep the item visible and preserve it across refetches."""
        resolved = self._settle(handle)
        if resolved is None:
            return False
        partition, key, part, current_id = resolved
        if part.index_of(current_id) < 0:
            return False
        part.local_only.add(current_id)
        logger.warning("%s/%s item %s kept locally only", partition, key, current_id)
        self._notify(partition, key)
        return True

    # ------------------------------------------------------------------
    # Direct mutation
    # ------------------------------------------------------------------

    def replace(self, partition: str, key: str | None, item_id: str, new_item: Any) -> bool:
        """Replace item *item_id* in place (placeholder substitution, local edits)."""
        part = self._get_part(partition, key)
        if part is None:
            return False
        idx = part.index_of(item_id)
        if idx < 0:
            return False

        new_id = new_item.id
        if item_id in part.pending:
            part.pending.discard(item_id)
            part.pending.add(new_id)
            for handle_id, (p, k, current) in list(self._handles.items()):
                if (p, k, current) == (partition, key, item_id):
                    self._handles[handle_id] = (p, k, new_id)
        elif item_id in part.local_only:
            part.local_only.discard(item_id)
            part.local_only.add(new_id)
        else:
            part.confirmed.pop(item_id, None)
            part.confirmed[new_id] = new_item

        items = list(part.items)
        items[idx] = new_item
        self._commit(partition, key, part, items)
        return True

    def remove(self, partition: str, key: str | None, item_id: str) -> bool:
        """Remove *item_id*. Idempotent: removing an absent item returns False."""
        part = self._get_part(partition, key)
        if part is None or part.index_of(item_id) < 0:
            return False
        part.pending.discard(item_id)
        part.local_only.discard(item_id)
        part.confirmed.pop(item_id, None)
        for handle_id, (p, k, current) in list(self._handles.items()):
            if (p, k, current) == (partition, key, item_id):
                del self._handles[handle_id]
        self._commit(partition, key, part, [i for i in part.items if i.id != item_id])
        return True

    def invalidate(self, partition: str, key: str | None = None) -> None:
        """Mark stale so the next read refetches.

        ``invalidate(MESSAGES)`` without a key invalidates every message partition.
        """
        _check_partition(partition)
        if partition == MESSAGES and key is None:
            targets = [(p, k) for (p, k) in self._partitions if p == MESSAGES]
        else:
            targets = [(partition, key)] if (partition, key) in self._partitions else []
        for p, k in targets:
            part = self._partitions[(p, k)]
            part.stale = True
            part.generation += 1
            self._notify(p, k)

    # ------------------------------------------------------------------
    # Observation + lifecycle
    # ------------------------------------------------------------------

    def watch(self, callback: Watcher) -> Callable[[], None]:
        """Call *callback(partition, key)* after every change. Returns an unsubscribe function."""
        self._watchers.append(callback)

        def _unwatch() -> None:
            if callback in self._watchers:
                self._watchers.remove(callback)

        return _unwatch

    def clear(self) -> None:
        self._partitions.clear()
        self._handles.clear()
        self._watchers.clear()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _get_part(self, partition: str, key: str | None) -> _Partition | None:
        _check_partition(partition)
        return self._partitions.get((partition, key))

    def _part(self, partition: str, key: str | None) -> _Partition:
        _check_partition(partition)
        part = self._partitions.get((partition, key))
        if part is None:
            part = self._partitions[(partition, key)] = _Partition()
        return part

    def _settle(
        self, handle: PendingWrite
    ) -> tuple[str, str | None, _Partition, str] | None:
        entry = self._handles.pop(handle.handle_id, None)
        if entry is None:
            logger.debug("handle %s already settled", handle.handle_id)
            return None
        partition, key, current_id = entry
        part = self._get_part(partition, key)
        if part is None:
            return None
        part.pending.discard(current_id)
        return partition, key, part, current_id

    async def _fetch(self, partition: str, key: str | None, part: _Partition) -> None:
        loader = self._loaders.get(partition)
        if loader is None:
            raise RuntimeError(f"No loader registered for partition '{partition}'.")
        generation = part.generation
        fetched = await loader(key)
        if self._partitions.get((partition, key)) is not part:
            return  # cleared while fetching
        self._merge(partition, key, part, fetched)
        part.loaded = True
        part.stale = part.generation != generation

    def _merge(self, partition: str, key: str | None, part: _Partition, fetched: list[Any]) -> None:
        fetched_ids = {item.id for item in fetched}
        merged: list[Any] = []
        for item in fetched:
            local = part.confirmed.pop(item.id, None)
            merged.append(local if local is not None else item)
        for item in part.items:
            if item.id in fetched_ids:
                continue
            if item.id in part.pending or item.id in part.local_only or item.id in part.confirmed:
                merged.append(item)
        self._commit(partition, key, part, merged)

    def _commit(self, partition: str, key: str | None, part: _Partition, items: list[Any]) -> None:
        sort_key, descending = _ORDERING[partition]
        part.items = tuple(sorted(items, key=sort_key, reverse=descending))
        self._notify(partition, key)

    def _notify(self, partition: str, key: str | None) -> None:
        for watcher in list(self._watchers):
            try:
                watcher(partition, key)
            except Exception:
                logger.exception("cache watcher failed for %s/%s", partition, key)


def _check_partition(partition: str) -> None:
    if partition not in PARTITIONS:
        raise ValueError(f"Unknown cache partition '{partition}'.")

"""Engine lifecycle: wire store, cache, listener and notifier into one handle.

init_engine() is called once a session is authenticated; dispose_engine()
tears everything down again (sign-out, shutdown). No module-level state: two
handles never share a cache or a subscription.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from dataclasses import dataclass, field

from ragchat.config import Credentials, RagChatConfig
from ragchat.errors import EngineDisposedError, RagChatError
from ragchat.ingest.paragraph import ParagraphChunker
from ragchat.models import RAGSource
from ragchat.notify import Notifier
from ragchat.store.base import RemoteStore
from ragchat.sync.cache import CONVERSATIONS, MESSAGES, SOURCES, LocalCache
from ragchat.sync.listener import ReconciliationListener

logger = logging.getLogger(__name__)


@dataclass
class EngineHandle:
    """Everything one authenticated session owns."""

    credentials: Credentials
    config: RagChatConfig
    store: RemoteStore
    cache: LocalCache
    listener: ReconciliationListener
    notifier: Notifier
    chunker: ParagraphChunker
    disposed: bool = False
    tasks: set[asyncio.Task] = field(default_factory=set)

    def ensure_active(self) -> None:
        if self.disposed:
            raise EngineDisposedError("The engine has been disposed.")

    def track(self, task: asyncio.Task) -> asyncio.Task:
        """Bind *task* to the engine's lifetime; dispose_engine() cancels it."""
        self.tasks.add(task)
        task.add_done_callback(self.tasks.discard)
        return task


def with_chunks(source: RAGSource, chunker: ParagraphChunker) -> RAGSource:
    """Return *source* with chunks computed from its content, keyed by its id."""
    if source.chunks and all(c.source_id == source.id for c in source.chunks):
        return source
    return dataclasses.replace(source, chunks=chunker.chunk(source.id, source.content))


async def init_engine(
    credentials: Credentials,
    store: RemoteStore,
    config: RagChatConfig | None = None,
    notifier: Notifier | None = None,
    *,
    preload: bool = True,
) -> EngineHandle:
    """Build an EngineHandle, start the listener and load the session's data.

    A failed initial load is reported through the notifier, not raised: the
    engine starts with an empty cache and the next read retries.
    """
    config = config or RagChatConfig()
    notifier = notifier or Notifier()
    chunker = ParagraphChunker(chunk_size=config.retrieval.chunk_size)
    cache = LocalCache()

    async def load_conversations(_key: str | None) -> list:
        return await store.list_conversations()

    async def load_messages(conversation_id: str | None) -> list:
        if conversation_id is None:
            return []
        return await store.list_messages(conversation_id)

    async def load_sources(_key: str | None) -> list:
        return [with_chunks(s, chunker) for s in await store.list_sources()]

    cache.set_loader(CONVERSATIONS, load_conversations)
    cache.set_loader(MESSAGES, load_messages)
    cache.set_loader(SOURCES, load_sources)

    listener = ReconciliationListener(store.changes, cache)
    handle = EngineHandle(
        credentials=credentials,
        config=config,
        store=store,
        cache=cache,
        listener=listener,
        notifier=notifier,
        chunker=chunker,
    )
    listener.start()
    logger.info("engine started for user %s", credentials.user_id or "<anonymous>")

    if preload:
        for partition in (CONVERSATIONS, SOURCES):
            try:
                await cache.read(partition)
            except RagChatError as exc:
                notifier.warning(f"Could not load {partition}: {exc}")
    return handle


async def dispose_engine(handle: EngineHandle) -> None:
    """Cancel in-flight work, stop the listener and drop the cache. Idempotent."""
    if handle.disposed:
        return
    handle.disposed = True
    tasks = list(handle.tasks)
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)
    await handle.listener.stop()
    handle.cache.clear()
    logger.info("engine disposed")

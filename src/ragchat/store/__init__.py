"""Remote store contract, change feed, and the bundled SQLite implementation."""

from ragchat.store.base import ChangeEvent, RemoteStore
from ragchat.store.changes import ChangeFeed, Subscription
from ragchat.store.sqlite import SqliteStore

__all__ = [
    "ChangeEvent",
    "ChangeFeed",
    "RemoteStore",
    "SqliteStore",
    "Subscription",
]

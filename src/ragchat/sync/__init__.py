"""Optimistic local cache and its reconciliation with store change events."""

from ragchat.sync.cache import (
    CONVERSATIONS,
    MESSAGES,
    PARTITIONS,
    SOURCES,
    LocalCache,
    PendingWrite,
)
from ragchat.sync.listener import ReconciliationListener

__all__ = [
    "CONVERSATIONS",
    "MESSAGES",
    "PARTITIONS",
    "SOURCES",
    "LocalCache",
    "PendingWrite",
    "ReconciliationListener",
]

"""In-process change feed: per-table push notifications delivered on the event loop."""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass

from ragchat.store.base import ChangeEvent

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[ChangeEvent], None]


@dataclass(frozen=True)
class Subscription:
    id: str
    table: str


class ChangeFeed:
    """Fan-out of ChangeEvents to per-table subscribers.

    ``publish()`` never calls subscribers inline: delivery is scheduled with
    ``loop.call_soon`` so the publisher's own await chain finishes first and
    notifications interleave with other coroutines the way network pushes do.
    """

    def __init__(self) -> None:
        self._subscribers: dict[str, dict[str, ChangeCallback]] = {}

    def subscribe(self, table: str, callback: ChangeCallback) -> Subscription:
        sub = Subscription(id=str(uuid.uuid4()), table=table)
        self._subscribers.setdefault(table, {})[sub.id] = callback
        logger.debug("subscribed %s to %s", sub.id, table)
        return sub

    def unsubscribe(self, subscription: Subscription) -> None:
        """Remove *subscription*. Unknown subscriptions are ignored."""
        table_subs = self._subscribers.get(subscription.table, {})
        table_subs.pop(subscription.id, None)
        if not table_subs:
            self._subscribers.pop(subscription.table, None)

    def subscriber_count(self, table: str | None = None) -> int:
        if table is not None:
            return len(self._subscribers.get(table, {}))
        return sum(len(s) for s in self._subscribers.values())

    def publish(self, event: ChangeEvent) -> None:
        """Schedule delivery of *event* to the current subscribers of its table."""
        sub_ids = list(self._subscribers.get(event.table, {}))
        if not sub_ids:
            return
        loop = asyncio.get_running_loop()
        for sub_id in sub_ids:
            loop.call_soon(self._deliver, sub_id, event)

    def _deliver(self, sub_id: str, event: ChangeEvent) -> None:
        # Subscribers removed after publish() must not see the event.
        callback = self._subscribers.get(event.table, {}).get(sub_id)
        if callback is None:
            return
        try:
            callback(event)
        except Exception:
            logger.exception("change subscriber failed for %s %s", event.table, event.op)

"""User-facing notification channel (transient toasts in a UI, lines in the CLI).

Every error the orchestrator catches ends up here as exactly one
Notification. Message builders keep the wording in one place and always say
what happened and what the user can do about it.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field

from ragchat.models import DegradedModeNotice, utc_now

logger = logging.getLogger(__name__)

INFO = "info"
SUCCESS = "success"
WARNING = "warning"
ERROR = "error"


@dataclass(frozen=True)
class Notification:
    level: str
    message: str
    timestamp: str = field(default_factory=utc_now)


NotificationSink = Callable[[Notification], None]


class Notifier:
    """Bounded notification history plus fan-out to registered sinks."""

    def __init__(self, history_size: int = 100) -> None:
        self.history: deque[Notification] = deque(maxlen=history_size)
        self._sinks: list[NotificationSink] = []

    def add_sink(self, sink: NotificationSink) -> None:
        self._sinks.append(sink)

    def notify(self, level: str, message: str) -> Notification:
        note = Notification(level=level, message=message)
        self.history.append(note)
        logger.debug("notification [%s] %s", level, message)
        for sink in self._sinks:
            sink(note)
        return note

    def info(self, message: str) -> Notification:
        return self.notify(INFO, message)

    def success(self, message: str) -> Notification:
        return self.notify(SUCCESS, message)

    def warning(self, message: str) -> Notification:
        return self.notify(WARNING, message)

    def error(self, message: str) -> Notification:
        return self.notify(ERROR, message)

    def levels(self) -> list[str]:
        return [n.level for n in self.history]


# ---------------------------------------------------------------------------
# Message builders
# ---------------------------------------------------------------------------


def model_call_failed(reason: str) -> str:
    return (
        f"Error sending the message: {reason}\n"
        "  Check your API key and connection, then send again."
    )


def degraded_write(notice: DegradedModeNotice) -> str:
    return (
        f"Could not save {notice.entity} to the server ({notice.reason}).\n"
        "  It stays visible for this session but is not stored durably."
    )


def conversation_failed(reason: str) -> str:
    return f"Error creating the conversation: {reason}"


def source_added(name: str) -> str:
    return f"Source added: {name}"


def source_failed(reason: str) -> str:
    return f"Error adding the source: {reason}"


def source_removed() -> str:
    return "Source removed"


def source_remove_failed(reason: str) -> str:
    return f"Error removing the source: {reason}"


def message_deleted() -> str:
    return "Message deleted"


def message_delete_failed(reason: str) -> str:
    return f"Error deleting the message: {reason}"


def attachment_deleted() -> str:
    return "File deleted"


def attachment_delete_failed(reason: str) -> str:
    return f"Error deleting the file: {reason}"


def search_failed(query: str) -> str:
    return f"Web search for '{query}' failed; showing a fallback link instead."


def send_cancelled() -> str:
    return "Message generation was cancelled. Your message was kept; send again to retry."

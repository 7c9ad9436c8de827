"""Remote store contract consumed by the engine."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, Protocol

from ragchat.models import Attachment, Conversation, Message, RAGSource, SourceDraft

TABLE_CONVERSATIONS = "conversations"
TABLE_MESSAGES = "messages"
TABLE_ATTACHMENTS = "attachments"
TABLE_SOURCES = "rag_sources"

OP_INSERT = "INSERT"
OP_UPDATE = "UPDATE"
OP_DELETE = "DELETE"


@dataclass(frozen=True)
class ChangeEvent:
    """A per-table change notification.

    Attributes:
        table: Affected table name.
        op: INSERT | UPDATE | DELETE.
        new: Row after the change (None for DELETE).
        old: Row identifiers before the change (None for INSERT).
    """

    table: str
    op: str
    new: dict[str, Any] | None = None
    old: dict[str, Any] | None = None
    event_id: str = field(default="", compare=False)

    @property
    def row(self) -> dict[str, Any]:
        return self.new or self.old or {}

    @property
    def row_id(self) -> str | None:
        return self.row.get("id")


class RemoteStore(Protocol):
    """Authoritative store. Every call may raise TransportError or ValidationError."""

    @property
    def changes(self) -> Any:  # ragchat.store.changes.ChangeFeed
        ...

    async def list_conversations(self) -> list[Conversation]: ...

    async def create_conversation(self, title: str) -> Conversation: ...

    async def update_conversation_title(self, conversation_id: str, title: str) -> Conversation: ...

    async def list_messages(self, conversation_id: str) -> list[Message]: ...

    async def create_message(
        self,
        conversation_id: str,
        content: str,
        role: str,
        attachments: Iterable[Attachment] = (),
    ) -> Message: ...

    async def delete_message(self, message_id: str) -> None: ...

    async def delete_attachment(self, attachment_id: str) -> None: ...

    async def list_sources(self) -> list[RAGSource]: ...

    async def create_source(self, draft: SourceDraft) -> RAGSource: ...

    async def delete_source(self, source_id: str) -> None: ...

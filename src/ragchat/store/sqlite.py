"""SQLite-backed RemoteStore with an in-process change feed.

Every successful write publishes a ChangeEvent for the affected table, the
way a hosted database's realtime channel would. sqlite3 errors are mapped to
the engine's error taxonomy:

  sqlite3.IntegrityError   → ValidationError  (bad role, unknown parent, ...)
  other sqlite3.Error      → TransportError
"""

from __future__ import annotations

import logging
import sqlite3
import uuid
from collections.abc import Callable, Iterable
from dataclasses import asdict
from pathlib import Path
from typing import TypeVar

from ragchat.db.connection import Database
from ragchat.db.migrations import initialize
from ragchat.db.repository import Repository
from ragchat.errors import TransportError, ValidationError
from ragchat.models import (
    ATTACHMENT_TYPES,
    ROLES,
    SOURCE_TYPES,
    Attachment,
    Conversation,
    Message,
    RAGSource,
    SourceDraft,
)
from ragchat.store.base import (
    OP_DELETE,
    OP_INSERT,
    OP_UPDATE,
    TABLE_ATTACHMENTS,
    TABLE_CONVERSATIONS,
    TABLE_MESSAGES,
    TABLE_SOURCES,
    ChangeEvent,
)
from ragchat.store.changes import ChangeFeed

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SqliteStore:
    """RemoteStore implementation over a local SQLite file."""

    def __init__(self, db_path: Path | str, *, changes: ChangeFeed | None = None) -> None:
        self._db = Database(db_path)
        self._conn: sqlite3.Connection | None = None
        self._changes = changes or ChangeFeed()

    @property
    def changes(self) -> ChangeFeed:
        return self._changes

    def open(self) -> SqliteStore:
        """Connect and run migrations. Idempotent."""
        if self._conn is None:
            try:
                self._conn = self._db.connect()
                initialize(self._conn)
            except sqlite3.Error as exc:
                raise TransportError(f"Cannot open store at '{self._db.db_path}': {exc}") from exc
        return self

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    async def list_conversations(self) -> list[Conversation]:
        return self._call(lambda repo: repo.list_conversations())

    async def create_conversation(self, title: str) -> Conversation:
        if not title.strip():
            raise ValidationError("Conversation title must not be empty.")
        conv = self._call(lambda repo: repo.add_conversation(title))
        self._publish(TABLE_CONVERSATIONS, OP_INSERT, new=_conversation_row(conv))
        return conv

    async def update_conversation_title(self, conversation_id: str, title: str) -> Conversation:
        conv = self._call(lambda repo: repo.update_conversation_title(conversation_id, title))
        if conv is None:
            raise ValidationError(f"Conversation '{conversation_id}' does not exist.")
        self._publish(TABLE_CONVERSATIONS, OP_UPDATE, new=_conversation_row(conv))
        return conv

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def list_messages(self, conversation_id: str) -> list[Message]:
        return self._call(lambda repo: repo.list_messages(conversation_id))

    async def create_message(
        self,
        conversation_id: str,
        content: str,
        role: str,
        attachments: Iterable[Attachment] = (),
    ) -> Message:
        attachments = list(attachments)
        if role not in ROLES:
            raise ValidationError(f"Invalid message role '{role}'.")
        for att in attachments:
            if att.type not in ATTACHMENT_TYPES:
                raise ValidationError(f"Invalid attachment type '{att.type}'.")
        message = self._call(
            lambda repo: repo.add_message(conversation_id, content, role, attachments)
        )
        self._publish(TABLE_MESSAGES, OP_INSERT, new=_message_row(message))
        # add_message bumps the parent conversation's updated_at
        self._publish(
            TABLE_CONVERSATIONS,
            OP_UPDATE,
            new={"id": conversation_id, "updated_at": message.timestamp},
        )
        for att in message.attachments:
            self._publish(
                TABLE_ATTACHMENTS,
                OP_INSERT,
                new={"id": att.id, "message_id": att.message_id, "type": att.type},
            )
        return message

    async def delete_message(self, message_id: str) -> None:
        existing = self._call(lambda repo: repo.get_message(message_id))
        if existing is None:
            raise ValidationError(f"Message '{message_id}' does not exist.")
        self._call(lambda repo: repo.delete_message(message_id))
        self._publish(TABLE_MESSAGES, OP_DELETE, old=_message_row(existing))

    async def delete_attachment(self, attachment_id: str) -> None:
        existing = self._call(lambda repo: repo.get_attachment(attachment_id))
        if existing is None:
            raise ValidationError(f"Attachment '{attachment_id}' does not exist.")
        self._call(lambda repo: repo.delete_attachment(attachment_id))
        self._publish(
            TABLE_ATTACHMENTS,
            OP_DELETE,
            old={"id": existing.id, "message_id": existing.message_id},
        )

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    async def list_sources(self) -> list[RAGSource]:
        return self._call(lambda repo: repo.list_sources())

    async def create_source(self, draft: SourceDraft) -> RAGSource:
        if draft.type not in SOURCE_TYPES:
            raise ValidationError(f"Invalid source type '{draft.type}'.")
        if not draft.name.strip():
            raise ValidationError("Source name must not be empty.")
        source = self._call(lambda repo: repo.add_source(draft))
        self._publish(TABLE_SOURCES, OP_INSERT, new=_source_row(source))
        return source

    async def delete_source(self, source_id: str) -> None:
        deleted = self._call(lambda repo: repo.delete_source(source_id))
        if not deleted:
            raise ValidationError(f"Source '{source_id}' does not exist.")
        self._publish(TABLE_SOURCES, OP_DELETE, old={"id": source_id})

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _call(self, fn: Callable[[Repository], T]) -> T:
        if self._conn is None:
            raise TransportError("Store is not connected. Call open() first.")
        try:
            return fn(Repository(self._conn))
        except sqlite3.IntegrityError as exc:
            raise ValidationError(str(exc)) from exc
        except sqlite3.Error as exc:
            raise TransportError(str(exc)) from exc

    def _publish(self, table: str, op: str, *, new: dict | None = None, old: dict | None = None) -> None:
        event = ChangeEvent(table=table, op=op, new=new, old=old, event_id=str(uuid.uuid4()))
        logger.debug("publish %s %s %s", table, op, event.row_id)
        self._changes.publish(event)


def _conversation_row(conv: Conversation) -> dict:
    return {
        "id": conv.id,
        "title": conv.title,
        "created_at": conv.created_at,
        "updated_at": conv.updated_at,
    }


def _message_row(message: Message) -> dict:
    row = asdict(message)
    row.pop("attachments")
    row.pop("status")
    return row


def _source_row(source: RAGSource) -> dict:
    return {"id": source.id, "name": source.name, "type": source.type}

"""Repository pattern for all store database operations.

Single interface for: conversations, messages (+ attachments), RAG sources.
Identifiers and timestamps are assigned here, i.e. server-side from the
client's point of view. Chunks are never persisted; they are derived from
source content by the client.
"""

from __future__ import annotations

import sqlite3
import uuid
from collections.abc import Iterable

from ragchat.models import (
    Attachment,
    Conversation,
    Message,
    RAGSource,
    SourceDraft,
    utc_now,
)


class Repository:
    """Data access layer for all store entities.

    Wraps an open sqlite3.Connection. The connection is owned by the caller
    and must be closed after use.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        """Initialise with an open database connection.

        Args:
            conn: An open sqlite3.Connection with the schema initialised
                (see ragchat.db.migrations.initialize).
        """
        self._conn = conn

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    def add_conversation(self, title: str) -> Conversation:
        """Insert a conversation and return it with its assigned id and timestamps."""
        now = utc_now()
        conv = Conversation(id=str(uuid.uuid4()), title=title, created_at=now, updated_at=now)
        self._conn.execute(
            "INSERT INTO conversations (id, title, created_at, updated_at) VALUES (?, ?, ?, ?)",
            (conv.id, conv.title, conv.created_at, conv.updated_at),
        )
        self._conn.commit()
        return conv

    def get_conversation(self, conversation_id: str) -> Conversation | None:
        row = self._conn.execute(
            "SELECT id, title, created_at, updated_at FROM conversations WHERE id = ?",
            (conversation_id,),
        ).fetchone()
        return _row_to_conversation(row) if row else None

    def list_conversations(self) -> list[Conversation]:
        """Return all conversations, most recently updated first."""
        rows = self._conn.execute(
            "SELECT id, title, created_at, updated_at FROM conversations ORDER BY updated_at DESC"
        ).fetchall()
        return [_row_to_conversation(r) for r in rows]

    def update_conversation_title(self, conversation_id: str, title: str) -> Conversation | None:
        """Set the title and bump updated_at. Returns the updated row or None if missing."""
        cur = self._conn.execute(
            "UPDATE conversations SET title = ?, updated_at = ? WHERE id = ?",
            (title, utc_now(), conversation_id),
        )
        self._conn.commit()
        if cur.rowcount == 0:
            return None
        return self.get_conversation(conversation_id)

    def delete_conversation(self, conversation_id: str) -> bool:
        cur = self._conn.execute("DELETE FROM conversations WHERE id = ?", (conversation_id,))
        self._conn.commit()
        return cur.rowcount > 0

    # ------------------------------------------------------------------
    # Messages + attachments
    # ------------------------------------------------------------------

    def add_message(
        self,
        conversation_id: str,
        content: str,
        role: str,
        attachments: Iterable[Attachment] = (),
    ) -> Message:
        """Insert a message and its attachments in one transaction.

        Raises:
            sqlite3.IntegrityError: Unknown conversation, or invalid role /
                attachment type.
        """
        now = utc_now()
        message = Message(
            id=str(uuid.uuid4()),
            conversation_id=conversation_id,
            role=role,
            content=content,
            timestamp=now,
        )
        try:
            self._conn.execute(
                """
                INSERT INTO messages (id, conversation_id, role, content, timestamp)
                VALUES (?, ?, ?, ?, ?)
                """,
                (message.id, conversation_id, role, content, now),
            )
            for att in attachments:
                stored = Attachment(
                    id=str(uuid.uuid4()),
                    message_id=message.id,
                    type=att.type,
                    name=att.name,
                    data=att.data,
                    url=att.url,
                    size=att.size or 0,
                    mime_type=att.mime_type,
                )
                self._conn.execute(
                    """
                    INSERT INTO attachments (id, message_id, type, url, data, name, size, mime_type)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        stored.id,
                        stored.message_id,
                        stored.type,
                        stored.url,
                        stored.data,
                        stored.name,
                        stored.size,
                        stored.mime_type,
                    ),
                )
                message.attachments.append(stored)
            self._conn.execute(
                "UPDATE conversations SET updated_at = ? WHERE id = ?", (now, conversation_id)
            )
        except sqlite3.Error:
            self._conn.rollback()
            raise
        self._conn.commit()
        return message

    def get_message(self, message_id: str) -> Message | None:
        row = self._conn.execute(
            "SELECT id, conversation_id, role, content, timestamp FROM messages WHERE id = ?",
            (message_id,),
        ).fetchone()
        if row is None:
            return None
        message = _row_to_message(row)
        message.attachments = self._attachments_for([message.id]).get(message.id, [])
        return message

    def list_messages(self, conversation_id: str) -> list[Message]:
        """Return a conversation's messages, oldest first, with attachments."""
        rows = self._conn.execute(
            """
            SELECT id, conversation_id, role, content, timestamp
            FROM messages WHERE conversation_id = ? ORDER BY timestamp
            """,
            (conversation_id,),
        ).fetchall()
        messages = [_row_to_message(r) for r in rows]
        by_message = self._attachments_for([m.id for m in messages])
        for m in messages:
            m.attachments = by_message.get(m.id, [])
        return messages

    def delete_message(self, message_id: str) -> bool:
        """Delete a message; its attachments cascade."""
        cur = self._conn.execute("DELETE FROM messages WHERE id = ?", (message_id,))
        self._conn.commit()
        return cur.rowcount > 0

    def get_attachment(self, attachment_id: str) -> Attachment | None:
        row = self._conn.execute(
            """
            SELECT id, message_id, type, url, data, name, size, mime_type
            FROM attachments WHERE id = ?
            """,
            (attachment_id,),
        ).fetchone()
        return _row_to_attachment(row) if row else None

    def delete_attachment(self, attachment_id: str) -> bool:
        cur = self._conn.execute("DELETE FROM attachments WHERE id = ?", (attachment_id,))
        self._conn.commit()
        return cur.rowcount > 0

    def _attachments_for(self, message_ids: list[str]) -> dict[str, list[Attachment]]:
        if not message_ids:
            return {}
        placeholders = ",".join("?" * len(message_ids))
        rows = self._conn.execute(
            f"""
            SELECT id, message_id, type, url, data, name, size, mime_type
            FROM attachments WHERE message_id IN ({placeholders}) ORDER BY rowid
            """,  # noqa: S608
            message_ids,
        ).fetchall()
        grouped: dict[str, list[Attachment]] = {}
        for r in rows:
            grouped.setdefault(r["message_id"], []).append(_row_to_attachment(r))
        return grouped

    # ------------------------------------------------------------------
    # RAG sources
    # ------------------------------------------------------------------

    def add_source(self, draft: SourceDraft) -> RAGSource:
        """Insert a source and return it with its assigned id and timestamp."""
        source = RAGSource(
            id=str(uuid.uuid4()),
            name=draft.name,
            type=draft.type,
            content=draft.content,
            url=draft.url,
            created_at=utc_now(),
        )
        self._conn.execute(
            """
            INSERT INTO rag_sources (id, name, type, content, url, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (source.id, source.name, source.type, source.content, source.url, source.created_at),
        )
        self._conn.commit()
        return source

    def get_source(self, source_id: str) -> RAGSource | None:
        row = self._conn.execute(
            "SELECT id, name, type, content, url, created_at FROM rag_sources WHERE id = ?",
            (source_id,),
        ).fetchone()
        return _row_to_source(row) if row else None

    def list_sources(self) -> list[RAGSource]:
        """Return all sources, oldest first. Chunks are not populated."""
        rows = self._conn.execute(
            "SELECT id, name, type, content, url, created_at FROM rag_sources ORDER BY created_at"
        ).fetchall()
        return [_row_to_source(r) for r in rows]

    def delete_source(self, source_id: str) -> bool:
        cur = self._conn.execute("DELETE FROM rag_sources WHERE id = ?", (source_id,))
        self._conn.commit()
        return cur.rowcount > 0


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------


def _row_to_conversation(row: sqlite3.Row) -> Conversation:
    return Conversation(
        id=row["id"],
        title=row["title"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_message(row: sqlite3.Row) -> Message:
    return Message(
        id=row["id"],
        conversation_id=row["conversation_id"],
        role=row["role"],
        content=row["content"],
        timestamp=row["timestamp"],
    )


def _row_to_attachment(row: sqlite3.Row) -> Attachment:
    return Attachment(
        id=row["id"],
        message_id=row["message_id"],
        type=row["type"],
        url=row["url"],
        data=row["data"],
        name=row["name"],
        size=row["size"],
        mime_type=row["mime_type"],
    )


def _row_to_source(row: sqlite3.Row) -> RAGSource:
    return RAGSource(
        id=row["id"],
        name=row["name"],
        type=row["type"],
        content=row["content"],
        url=row["url"],
        created_at=row["created_at"],
    )

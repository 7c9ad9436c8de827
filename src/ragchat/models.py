"""Domain models for conversations, messages and RAG sources."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone

ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"
ROLE_SYSTEM = "system"
ROLES = frozenset([ROLE_USER, ROLE_ASSISTANT, ROLE_SYSTEM])

STATUS_PENDING = "pending"
STATUS_FINAL = "final"
STATUS_ERROR = "error"

ATTACHMENT_TYPES = frozenset(["image", "document", "url"])
SOURCE_TYPES = frozenset(["document", "url", "text"])

_LOCAL_PREFIX = "local-"


def utc_now() -> str:
    """ISO-8601 UTC timestamp with microseconds; sorts chronologically as a string."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def local_id() -> str:
    """Temporary identifier for an item the server has not assigned an id to yet."""
    return f"{_LOCAL_PREFIX}{uuid.uuid4()}"


def is_local_id(item_id: str) -> bool:
    return item_id.startswith(_LOCAL_PREFIX)


@dataclass
class Attachment:
    type: str  # image | document | url
    name: str
    data: str | None = None  # base64 payload
    url: str | None = None
    size: int = 0
    mime_type: str | None = None
    id: str = field(default_factory=local_id)
    message_id: str | None = None


@dataclass
class Message:
    conversation_id: str
    role: str  # user | assistant | system
    content: str
    timestamp: str = field(default_factory=utc_now)
    attachments: list[Attachment] = field(default_factory=list)
    status: str = STATUS_FINAL  # pending | final | error
    id: str = field(default_factory=local_id)

    @property
    def is_pending(self) -> bool:
        return self.status == STATUS_PENDING

    def image_attachments(self) -> list[Attachment]:
        return [a for a in self.attachments if a.type == "image"]


@dataclass
class Conversation:
    title: str
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)
    messages: list[Message] = field(default_factory=list)
    id: str = field(default_factory=local_id)


@dataclass
class RAGChunk:
    source_id: str
    index: int
    content: str
    embedding: list[float] | None = None  # reserved, unused by the keyword ranker

    @property
    def id(self) -> str:
        return f"{self.source_id}:{self.index}"


@dataclass
class SourceDraft:
    """A source as submitted by the user, before the store assigns id/timestamp."""

    name: str
    type: str  # document | url | text
    content: str
    url: str | None = None


@dataclass
class RAGSource:
    name: str
    type: str
    content: str
    url: str | None = None
    chunks: list[RAGChunk] = field(default_factory=list)
    created_at: str = field(default_factory=utc_now)
    id: str = field(default_factory=local_id)


@dataclass
class SearchResult:
    title: str
    url: str
    snippet: str


@dataclass
class DegradedModeNotice:
    """A write that only reached the local cache, not the remote store."""

    step: str
    entity: str
    item_id: str
    reason: str

    def __str__(self) -> str:
        return f"{self.entity} {self.item_id} kept locally only ({self.step}): {self.reason}"


def derive_title(content: str, limit: int = 30) -> str:
    """Conversation title from the first user message: first *limit* chars, '...' if cut."""
    return content[:limit] + ("..." if len(content) > limit else "")

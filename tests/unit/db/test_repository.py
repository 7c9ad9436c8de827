"""Tests for the store Repository."""

from __future__ import annotations

import sqlite3

import pytest

from ragchat.db.repository import Repository
from ragchat.models import Attachment, SourceDraft, is_local_id


@pytest.fixture
def repo(tmp_db):
    return Repository(tmp_db)


# ------------------------------------------------------------------
# Conversations
# ------------------------------------------------------------------


def test_add_conversation_assigns_server_id(repo):
    conv = repo.add_conversation("Conversation 1")
    assert not is_local_id(conv.id)
    assert conv.created_at == conv.updated_at
    assert repo.get_conversation(conv.id).title == "Conversation 1"


def test_list_conversations_most_recent_first(repo):
    first = repo.add_conversation("first")
    second = repo.add_conversation("second")
    repo.add_message(first.id, "bump", "user")
    assert [c.id for c in repo.list_conversations()] == [first.id, second.id]


def test_update_conversation_title(repo):
    conv = repo.add_conversation("Conversation 1")
    updated = repo.update_conversation_title(conv.id, "What is RAG?")
    assert updated.title == "What is RAG?"
    assert updated.updated_at >= conv.updated_at


def test_update_missing_conversation_returns_none(repo):
    assert repo.update_conversation_title("missing", "x") is None


def test_delete_conversation_cascades_messages(repo):
    conv = repo.add_conversation("c")
    msg = repo.add_message(conv.id, "hi", "user")
    assert repo.delete_conversation(conv.id) is True
    assert repo.get_message(msg.id) is None


# ------------------------------------------------------------------
# Messages + attachments
# ------------------------------------------------------------------


def test_add_message_with_attachments(repo):
    conv = repo.add_conversation("c")
    att = Attachment(type="image", name="p.png", data="QUJD", size=3, mime_type="image/png")
    msg = repo.add_message(conv.id, "look", "user", [att])

    assert not is_local_id(msg.id)
    assert len(msg.attachments) == 1
    stored = msg.attachments[0]
    assert stored.message_id == msg.id
    assert stored.id != att.id
    assert repo.get_attachment(stored.id).data == "QUJD"


def test_list_messages_ordered_with_attachments(repo):
    conv = repo.add_conversation("c")
    m1 = repo.add_message(conv.id, "one", "user")
    m2 = repo.add_message(
        conv.id, "two", "assistant", [Attachment(type="url", name="link", url="https://x.y")]
    )
    messages = repo.list_messages(conv.id)
    assert [m.id for m in messages] == [m1.id, m2.id]
    assert messages[0].attachments == []
    assert messages[1].attachments[0].url == "https://x.y"


def test_add_message_unknown_conversation_rolls_back(repo, tmp_db):
    with pytest.raises(sqlite3.IntegrityError):
        repo.add_message("missing", "hi", "user")
    assert tmp_db.execute("SELECT COUNT(*) FROM messages").fetchone()[0] == 0


def test_add_message_bad_attachment_rolls_back_message(repo, tmp_db):
    conv = repo.add_conversation("c")
    with pytest.raises(sqlite3.IntegrityError):
        repo.add_message(conv.id, "hi", "user", [Attachment(type="video", name="v")])
    assert repo.list_messages(conv.id) == []


def test_delete_message_cascades_attachments(repo):
    conv = repo.add_conversation("c")
    msg = repo.add_message(conv.id, "hi", "user", [Attachment(type="document", name="d")])
    att_id = msg.attachments[0].id
    assert repo.delete_message(msg.id) is True
    assert repo.get_attachment(att_id) is None
    assert repo.delete_message(msg.id) is False


def test_delete_attachment(repo):
    conv = repo.add_conversation("c")
    msg = repo.add_message(conv.id, "hi", "user", [Attachment(type="document", name="d")])
    assert repo.delete_attachment(msg.attachments[0].id) is True
    assert repo.get_message(msg.id).attachments == []


# ------------------------------------------------------------------
# Sources
# ------------------------------------------------------------------


def test_add_and_list_sources(repo):
    s1 = repo.add_source(SourceDraft(name="Custom text", type="text", content="a"))
    s2 = repo.add_source(
        SourceDraft(name="example.com", type="url", content="b", url="https://example.com")
    )
    sources = repo.list_sources()
    assert [s.id for s in sources] == [s1.id, s2.id]
    assert sources[1].url == "https://example.com"
    assert all(s.chunks == [] for s in sources)


def test_delete_source(repo):
    s = repo.add_source(SourceDraft(name="n", type="text", content="c"))
    assert repo.delete_source(s.id) is True
    assert repo.get_source(s.id) is None
    assert repo.delete_source(s.id) is False

"""Shared pytest fixtures."""

from __future__ import annotations

import pytest

from ragchat.db.connection import Database
from ragchat.db.migrations import initialize
from ragchat.store.sqlite import SqliteStore


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path with schema initialized, closed after test."""
    db = Database(tmp_path / ".ragchat.db")
    conn = db.connect()
    initialize(conn)
    yield conn
    conn.close()


@pytest.fixture
def store(tmp_path):
    """Open SqliteStore over a fresh file in tmp_path."""
    s = SqliteStore(tmp_path / ".ragchat.db").open()
    yield s
    s.close()

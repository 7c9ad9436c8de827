"""SQLite persistence for the bundled remote store."""

from ragchat.db.connection import Database
from ragchat.db.migrations import MIGRATIONS, initialize, run_migrations
from ragchat.db.repository import Repository

__all__ = [
    "Database",
    "initialize",
    "run_migrations",
    "MIGRATIONS",
    "Repository",
]

"""Open an engine session for one CLI command."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

import typer
from rich.console import Console

from ragchat.cli.errors import err_config
from ragchat.config import ConfigError, RagChatConfig, load_config, load_credentials
from ragchat.engine import dispose_engine, init_engine
from ragchat.notify import ERROR, SUCCESS, WARNING, Notification, Notifier
from ragchat.orchestrator import SessionOrchestrator
from ragchat.store.sqlite import SqliteStore

_STYLES = {ERROR: "red", WARNING: "yellow", SUCCESS: "green"}


def console_sink(console: Console):
    """Notification sink printing to *console*, coloured by level."""

    def _sink(note: Notification) -> None:
        style = _STYLES.get(note.level, "dim")
        console.print(note.message, style=style, markup=False, highlight=False)

    return _sink


def config_or_exit(console: Console) -> RagChatConfig:
    """load_config(), printing the problem and exiting 1 on a bad config file."""
    try:
        return load_config()
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1)


@asynccontextmanager
async def open_session(
    cfg: RagChatConfig, db: Path, console: Console
) -> AsyncIterator[SessionOrchestrator]:
    """Yield a SessionOrchestrator over the store at *db*; dispose it on exit.

    Raises:
        TransportError: If the store cannot be opened.
    """
    store = SqliteStore(db).open()
    notifier = Notifier()
    notifier.add_sink(console_sink(console))
    handle = await init_engine(load_credentials(), store, cfg, notifier)
    try:
        yield SessionOrchestrator(handle)
    finally:
        await dispose_engine(handle)
        store.close()

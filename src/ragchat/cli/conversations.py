"""ragchat conversations — list conversations, or print one transcript."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ragchat.cli.errors import err_conversation_not_found, err_no_db
from ragchat.cli.session import config_or_exit, open_session
from ragchat.config import RagChatConfig
from ragchat.models import STATUS_ERROR, Conversation

console = Console()

_ROLE_STYLE = {"user": "bold cyan", "assistant": "bold green", "system": "bold magenta"}


def conversations_cmd(
    conversation_id: Annotated[
        str | None,
        typer.Argument(help="Show this conversation's messages."),
    ] = None,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the store file (default: store.path)."),
    ] = None,
) -> None:
    """List conversations, newest first; with an ID, print its transcript."""
    cfg = config_or_exit(console)
    db_path = db or Path(cfg.store.path)
    if not db_path.exists():
        console.print(err_no_db(str(db_path)))
        raise typer.Exit(1)

    if conversation_id is None:
        _show_list(asyncio.run(_list(cfg, db_path)))
        return

    conv = asyncio.run(_get(cfg, db_path, conversation_id))
    if conv is None:
        console.print(err_conversation_not_found(conversation_id))
        raise typer.Exit(1)
    _show_transcript(conv)


async def _list(cfg: RagChatConfig, db: Path) -> list[Conversation]:
    async with open_session(cfg, db, console) as session:
        return session.conversations()


async def _get(cfg: RagChatConfig, db: Path, conversation_id: str) -> Conversation | None:
    async with open_session(cfg, db, console) as session:
        return await session.conversation(conversation_id)


def _show_list(conversations: list[Conversation]) -> None:
    if not conversations:
        console.print("[yellow]No conversations yet.[/]\n  Run:  ragchat ask \"...\"")
        return
    table = Table(title="Conversations", show_header=True, header_style="bold")
    table.add_column("ID", style="dim")
    table.add_column("Title", style="bold")
    table.add_column("Updated")
    for c in conversations:
        table.add_row(c.id, escape(c.title), c.updated_at[:19])
    console.print(table)


def _show_transcript(conv: Conversation) -> None:
    console.print(f"[bold]{escape(conv.title)}[/]  [dim]{conv.id}[/]\n")
    for m in conv.messages:
        style = "bold red" if m.status == STATUS_ERROR else _ROLE_STYLE.get(m.role, "bold")
        console.print(f"[{style}]{m.role}[/]  [dim]{m.timestamp[:19]}[/]")
        console.print(m.content, markup=False, highlight=False)
        for att in m.attachments:
            console.print(f"  [dim]📎 {escape(att.name)} ({att.type})[/]")
        console.print()

"""ragchat sources — manage the knowledge base used for retrieval.

Commands:
  ragchat sources add "pasted text"        — text source
  ragchat sources add https://example.com  — url source (page text)
  ragchat sources add --file notes.pdf     — document source
  ragchat sources list                     — show all sources with chunk counts
  ragchat sources remove <id>              — delete a source
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ragchat.cli.errors import err_no_db, err_source_not_found, err_store_unavailable
from ragchat.cli.session import config_or_exit, open_session
from ragchat.config import RagChatConfig
from ragchat.errors import TransportError
from ragchat.models import RAGSource

console = Console()

sources_app = typer.Typer(
    name="sources",
    help="Manage RAG sources (add, list, remove).",
    add_completion=False,
)

_DbOption = Annotated[
    Path | None,
    typer.Option("--db", help="Path to the store file (default: store.path)."),
]


@sources_app.command("add")
def sources_add_cmd(
    value: Annotated[
        str | None,
        typer.Argument(help="Text to add, or a URL whose page text is added."),
    ] = None,
    file: Annotated[
        Path | None,
        typer.Option("--file", "-f", help="Add a document (PDF or text file)."),
    ] = None,
    db: _DbOption = None,
) -> None:
    """Add a text, URL or document source."""
    if (value is None) == (file is None):
        console.print(
            "[red]Error:[/] Give either a TEXT/URL argument or --file, not both.\n"
            "  Example:  ragchat sources add --file notes.pdf"
        )
        raise typer.Exit(1)

    cfg = config_or_exit(console)
    db_path = db or Path(cfg.store.path)
    try:
        source = asyncio.run(_add(cfg, db_path, value, file))
    except TransportError as exc:
        console.print(err_store_unavailable(str(db_path), str(exc)))
        raise typer.Exit(1)
    if source is None:
        raise typer.Exit(1)
    console.print(f"  id: {source.id}  |  chunks: {len(source.chunks)}")


async def _add(
    cfg: RagChatConfig, db: Path, value: str | None, file: Path | None
) -> RAGSource | None:
    async with open_session(cfg, db, console) as session:
        if file is not None:
            return await session.add_document(file)
        return await session.add_source_input(value or "")


@sources_app.command("list")
def sources_list_cmd(db: _DbOption = None) -> None:
    """List all sources."""
    cfg = config_or_exit(console)
    db_path = db or Path(cfg.store.path)
    if not db_path.exists():
        console.print(err_no_db(str(db_path)))
        raise typer.Exit(1)

    sources = asyncio.run(_list(cfg, db_path))
    if not sources:
        console.print("[yellow]No sources yet.[/]\n  Run:  ragchat sources add \"...\"")
        raise typer.Exit(0)

    table = Table(title="Sources", show_header=True, header_style="bold")
    table.add_column("ID", style="dim")
    table.add_column("Name", style="bold")
    table.add_column("Type")
    table.add_column("Chunks", justify="right")
    table.add_column("Added")
    for s in sources:
        table.add_row(s.id, escape(s.name), s.type, str(len(s.chunks)), s.created_at[:19])
    console.print(table)


async def _list(cfg: RagChatConfig, db: Path) -> list[RAGSource]:
    async with open_session(cfg, db, console) as session:
        return session.sources()


@sources_app.command("remove")
def sources_remove_cmd(
    source_id: Annotated[str, typer.Argument(help="Source id (see: ragchat sources list).")],
    db: _DbOption = None,
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Skip confirmation prompt."),
    ] = False,
) -> None:
    """Remove a source from the knowledge base."""
    cfg = config_or_exit(console)
    db_path = db or Path(cfg.store.path)
    if not db_path.exists():
        console.print(err_no_db(str(db_path)))
        raise typer.Exit(1)

    existing = {s.id: s for s in asyncio.run(_list(cfg, db_path))}
    if source_id not in existing:
        console.print(err_source_not_found(source_id))
        raise typer.Exit(0)

    console.print(f"\nRemove source: [bold]{escape(existing[source_id].name)}[/]")
    if not yes and not typer.confirm("Confirm removal?", default=False):
        console.print("[dim]Cancelled.[/]")
        raise typer.Exit(0)

    removed = asyncio.run(_remove(cfg, db_path, source_id))
    if not removed:
        raise typer.Exit(1)


async def _remove(cfg: RagChatConfig, db: Path, source_id: str) -> bool:
    async with open_session(cfg, db, console) as session:
        return await session.remove_source(source_id)

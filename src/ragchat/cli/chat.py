"""ragchat ask / ragchat search — one conversation turn from the command line.

Usage:
  ragchat ask "What is RAG?"
  ragchat ask "What is in this picture?" --image photo.jpg
  ragchat ask "And in more detail?" --conversation <id>
  ragchat search "pydantic rag example"
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.markdown import Markdown
from rich.markup import escape

from ragchat.cli.errors import (
    err_conversation_not_found,
    err_empty_message,
    err_model_call,
    err_no_api_key,
    err_store_unavailable,
    warn_degraded,
)
from ragchat.cli.session import config_or_exit, open_session
from ragchat.config import RagChatConfig, load_credentials
from ragchat.errors import TransportError, ValidationError
from ragchat.ingest.sources import image_attachment
from ragchat.orchestrator import SendResult
from ragchat.rag.llm_client import provider_of, validate_api_key

console = Console()


def ask_cmd(
    text: Annotated[str, typer.Argument(help="Message to send.")] = "",
    image: Annotated[
        Path | None,
        typer.Option("--image", "-i", help="Attach an image (uses the vision model)."),
    ] = None,
    conversation: Annotated[
        str | None,
        typer.Option("--conversation", "-c", help="Continue an existing conversation."),
    ] = None,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the store file (default: store.path)."),
    ] = None,
) -> None:
    """Send a message; the answer streams as it is generated."""
    cfg = config_or_exit(console)

    if not text.strip() and image is None:
        console.print(err_empty_message())
        raise typer.Exit(1)

    model = cfg.models.vision_model if image is not None else cfg.models.text_model
    try:
        validate_api_key(model, load_credentials().model_api_key)
    except EnvironmentError:
        console.print(err_no_api_key(provider_of(model)))
        raise typer.Exit(1)

    attachments = []
    if image is not None:
        try:
            attachments.append(image_attachment(image))
        except ValidationError as exc:
            console.print(f"[red]Error:[/] {exc}")
            raise typer.Exit(1)

    db_path = db or Path(cfg.store.path)
    try:
        result = asyncio.run(_ask(cfg, db_path, text, attachments, conversation))
    except TransportError as exc:
        console.print(err_store_unavailable(str(db_path), str(exc)))
        raise typer.Exit(1)
    except ValidationError:
        console.print(err_conversation_not_found(conversation or ""))
        raise typer.Exit(1)

    if not result.ok:
        console.print(err_model_call(result.error or "unknown error"))
        raise typer.Exit(1)
    if result.degraded:
        console.print(warn_degraded(len(result.notices)))
    console.print(f"[dim]conversation {result.conversation_id}[/]")


async def _ask(
    cfg: RagChatConfig,
    db: Path,
    text: str,
    attachments: list,
    conversation: str | None,
) -> SendResult:
    async with open_session(cfg, db, console) as session:
        if conversation:
            session.select_conversation(conversation)
        streamed: list[str] = []

        def on_delta(delta: str) -> None:
            streamed.append(delta)
            console.print(delta, end="", markup=False, highlight=False)

        result = await session.send_message(text, attachments, on_delta=on_delta)
        if streamed:
            console.print()
        elif result.ok and result.assistant_message is not None:
            console.print(Markdown(result.assistant_message.content))
        return result


def search_cmd(
    query: Annotated[str, typer.Argument(help="Search query.")],
    conversation: Annotated[
        str | None,
        typer.Option("--conversation", "-c", help="Record the results in this conversation."),
    ] = None,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the store file (default: store.path)."),
    ] = None,
) -> None:
    """Search the web and record the results in a conversation."""
    cfg = config_or_exit(console)
    if not query.strip():
        console.print(err_empty_message())
        raise typer.Exit(1)

    db_path = db or Path(cfg.store.path)
    try:
        conversation_id = asyncio.run(_search(cfg, db_path, query, conversation))
    except TransportError as exc:
        console.print(err_store_unavailable(str(db_path), str(exc)))
        raise typer.Exit(1)
    except ValidationError:
        console.print(err_conversation_not_found(conversation or ""))
        raise typer.Exit(1)
    console.print(f"[dim]conversation {conversation_id}[/]")


async def _search(
    cfg: RagChatConfig, db: Path, query: str, conversation: str | None
) -> str | None:
    async with open_session(cfg, db, console) as session:
        if conversation:
            session.select_conversation(conversation)
        results = await session.search_internet(query)
        for r in results:
            console.print(f"[bold]{escape(r.title)}[/]", highlight=False)
            console.print(f"  {r.url}", markup=False, highlight=False)
            console.print(f"  [dim]{escape(r.snippet)}[/]", highlight=False)
        return session.current_conversation_id

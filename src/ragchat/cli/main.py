"""ragchat CLI entry point."""

from __future__ import annotations

import importlib.metadata
import logging
import sys
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler

from ragchat.cli.chat import ask_cmd, search_cmd
from ragchat.cli.conversations import conversations_cmd
from ragchat.cli.sources import sources_app


def _version() -> str:
    try:
        return importlib.metadata.version("ragchat")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"ragchat {_version()}")
        raise typer.Exit()


def _configure_logging(verbose: bool) -> None:
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(name)s: %(message)s",
            handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
            force=True,
        )
    else:
        logging.basicConfig(
            level=logging.ERROR,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            stream=sys.stderr,
            force=True,
        )
    # LiteLLM logs every request at INFO
    logging.getLogger("LiteLLM").setLevel(logging.WARNING)


app = typer.Typer(
    name="ragchat",
    help=(
        "ragchat — chat with a language model over your own sources.\n\n"
        "  ragchat sources add  Add text, a URL or a document to the knowledge base.\n"
        "  ragchat ask          Ask a question; relevant source fragments are added to the prompt."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Log engine activity to stderr."),
    ] = False,
) -> None:
    """ragchat — chat with a language model over your own sources."""
    _configure_logging(verbose)


app.command("ask")(ask_cmd)
app.command("search")(search_cmd)
app.command("conversations")(conversations_cmd)
app.add_typer(sources_app, name="sources")


@app.command("version")
def version_cmd() -> None:
    """Show the installed ragchat version."""
    typer.echo(f"ragchat {_version()}")


if __name__ == "__main__":
    app()

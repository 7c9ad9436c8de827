"""ragchat rich error messages — actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from ragchat.cli.errors import err_no_api_key, err_no_db
    console.print(err_no_api_key("openrouter"))
    raise typer.Exit(1)
"""

from __future__ import annotations


def err_no_api_key(provider: str) -> str:
    """No API key for *provider*.

    Example:
        No API key for 'openrouter'. Set:  export OPENROUTER_API_KEY=sk-...
    """
    env_map = {
        "openrouter": "OPENROUTER_API_KEY",
        "openai": "OPENAI_API_KEY",
        "anthropic": "ANTHROPIC_API_KEY",
        "google": "GOOGLE_API_KEY",
        "mistral": "MISTRAL_API_KEY",
        "groq": "GROQ_API_KEY",
    }
    env_var = env_map.get(provider.lower(), f"{provider.upper()}_API_KEY")
    return (
        f"[red]Error:[/] No API key for '{provider}'.\n"
        f"  Set:  export {env_var}=sk-..."
    )


def err_no_db(db_path: str = ".ragchat.db") -> str:
    """No store file at *db_path*."""
    return (
        f"[red]Error:[/] No database found at '{db_path}'.\n"
        "  Start a conversation first:  ragchat ask \"...\""
    )


def err_store_unavailable(db_path: str, reason: str) -> str:
    return (
        f"[red]Error:[/] Cannot open the store at '{db_path}': {reason}\n"
        "  Check the path (--db or store.path in ragchat.yaml) and its permissions."
    )


def err_config(reason: str) -> str:
    return f"[red]Error:[/] Invalid configuration.\n  {reason}"


def err_empty_message() -> str:
    return (
        "[red]Error:[/] Nothing to send.\n"
        "  Pass a message, an --image, or both."
    )


def err_conversation_not_found(conversation_id: str) -> str:
    return (
        f"[yellow]Conversation not found:[/] '{conversation_id}'.\n"
        "  Run:  ragchat conversations  to see all conversations."
    )


def err_source_not_found(source_id: str) -> str:
    """Source not found in the store."""
    return (
        f"[yellow]Source not found:[/] '{source_id}' is not in the knowledge base.\n"
        "  Run:  ragchat sources list  to see all sources."
    )


def err_model_call(reason: str) -> str:
    return (
        f"[red]Error:[/] The model did not answer: {reason}\n"
        "  Check your API key and connection, then run the same command again."
    )


def warn_degraded(count: int) -> str:
    """Shown after a turn whose durable writes partly failed."""
    noun = "item was" if count == 1 else "items were"
    return (
        f"[yellow]⚠[/] {count} {noun} not saved to the store.\n"
        "  They will be missing from the next session."
    )

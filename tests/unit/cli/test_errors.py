"""Tests for ragchat rich error messages."""

from __future__ import annotations

import pytest

from ragchat.cli.errors import (
    err_config,
    err_conversation_not_found,
    err_empty_message,
    err_model_call,
    err_no_api_key,
    err_no_db,
    err_source_not_found,
    err_store_unavailable,
    warn_degraded,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _has_action(msg: str) -> bool:
    """Every error must say what to do next."""
    lower = msg.lower()
    return any(kw in lower for kw in ["run:", "set:", "export ", "ragchat ", "check ", "pass "])


# ---------------------------------------------------------------------------
# Actionable messages
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "msg",
    [
        err_no_api_key("openrouter"),
        err_no_db(),
        err_store_unavailable(".ragchat.db", "disk I/O error"),
        err_empty_message(),
        err_conversation_not_found("abc"),
        err_source_not_found("abc"),
        err_model_call("timeout"),
    ],
)
def test_errors_are_actionable(msg: str) -> None:
    assert _has_action(msg)


def test_no_api_key_names_env_var() -> None:
    assert "OPENROUTER_API_KEY" in err_no_api_key("openrouter")
    assert "ACME_API_KEY" in err_no_api_key("acme")


def test_no_db_includes_path() -> None:
    assert "chats.db" in err_no_db("chats.db")


def test_config_error_includes_reason() -> None:
    assert "top_k must be >= 1" in err_config("retrieval.top_k must be >= 1")


def test_warn_degraded_pluralises() -> None:
    assert "1 item was" in warn_degraded(1)
    assert "2 items were" in warn_degraded(2)

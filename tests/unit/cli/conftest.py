"""Fixtures shared by the CLI tests."""

from __future__ import annotations

import logging

import pytest


@pytest.fixture(autouse=True)
def _isolated_cli(tmp_path, monkeypatch):
    """Run every command from an empty directory with no ragchat env overrides."""
    monkeypatch.chdir(tmp_path)
    for var in (
        "RAGCHAT_TEXT_MODEL",
        "RAGCHAT_VISION_MODEL",
        "RAGCHAT_DB",
        "BRAVE_API_KEY",
    ):
        monkeypatch.delenv(var, raising=False)

    # the root callback reconfigures logging with force=True
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)

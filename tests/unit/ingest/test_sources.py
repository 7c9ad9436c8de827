"""Tests for source draft and attachment builders."""

from __future__ import annotations

import base64
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from ragchat.errors import ValidationError
from ragchat.ingest.sources import (
    document_source,
    draft_from_input,
    image_attachment,
    is_url,
    text_source,
    url_source,
)


def test_is_url():
    assert is_url("https://example.com")
    assert is_url("  HTTP://example.com ")
    assert not is_url("example.com")
    assert not is_url("just some text")


def test_text_source_defaults():
    draft = text_source("Pydantic is a validation library.")
    assert draft.type == "text"
    assert draft.name == "Custom text"
    assert draft.content == "Pydantic is a validation library."
    assert draft.url is None


def test_text_source_empty_raises():
    with pytest.raises(ValidationError):
        text_source("   ")


def test_url_source_named_after_hostname():
    fetcher = MagicMock()
    fetcher.fetch_text.return_value = "Page text"
    draft = url_source("https://ai.pydantic.dev/examples/rag/", fetcher)
    assert draft.type == "url"
    assert draft.name == "ai.pydantic.dev"
    assert draft.url == "https://ai.pydantic.dev/examples/rag/"
    assert draft.content == "Page text"


def test_url_source_empty_page_raises():
    fetcher = MagicMock()
    fetcher.fetch_text.return_value = "  "
    with pytest.raises(ValidationError, match="No readable text"):
        url_source("https://example.com", fetcher)


def test_draft_from_input_dispatch():
    fetcher = MagicMock()
    fetcher.fetch_text.return_value = "fetched"
    assert draft_from_input("https://example.com", fetcher).type == "url"
    assert draft_from_input("plain words", fetcher).type == "text"
    fetcher.fetch_text.assert_called_once()


def test_document_source_text_file(tmp_path: Path):
    f = tmp_path / "notes.md"
    f.write_text("# Notes\n\nRAG notes.", encoding="utf-8")
    draft = document_source(f)
    assert draft.type == "document"
    assert draft.name == "notes.md"
    assert "RAG notes." in draft.content


def test_document_source_binary_placeholder(tmp_path: Path):
    f = tmp_path / "blob.bin"
    f.write_bytes(b"\x00\x01\x02")
    draft = document_source(f)
    assert draft.content == "[Binary content of blob.bin]"


def test_document_source_pdf_uses_pypdf(tmp_path: Path):
    f = tmp_path / "paper.pdf"
    f.write_bytes(b"%PDF-1.4")
    page = MagicMock()
    page.extract_text.return_value = "Page one text"
    reader = MagicMock()
    reader.pages = [page]
    with patch("ragchat.ingest.sources.pypdf.PdfReader", return_value=reader):
        draft = document_source(f)
    assert draft.content == "Page one text"


def test_document_source_missing_file_raises(tmp_path: Path):
    with pytest.raises(ValidationError, match="File not found"):
        document_source(tmp_path / "nope.txt")


def test_image_attachment_base64(tmp_path: Path):
    f = tmp_path / "photo.png"
    f.write_bytes(b"\x89PNG fake")
    att = image_attachment(f)
    assert att.type == "image"
    assert att.name == "photo.png"
    assert att.mime_type == "image/png"
    assert att.size == len(b"\x89PNG fake")
    assert base64.b64decode(att.data) == b"\x89PNG fake"


def test_image_attachment_unknown_extension_defaults_to_jpeg(tmp_path: Path):
    f = tmp_path / "capture"
    f.write_bytes(b"raw")
    assert image_attachment(f).mime_type == "image/jpeg"


def test_image_attachment_rejects_non_image(tmp_path: Path):
    f = tmp_path / "notes.txt"
    f.write_text("hi", encoding="utf-8")
    with pytest.raises(ValidationError, match="not an image"):
        image_attachment(f)

"""Build source drafts and attachments from user input.

Source dispatch:
  http:// / https://     → url source (page fetched via WebFetcher)
  .pdf                   → document source, text extracted with pypdf
  text/* and known text  → document source, file read as UTF-8
  anything else          → document source with a named binary placeholder
  other strings          → text source
"""

from __future__ import annotations

import base64
import mimetypes
import urllib.parse
from pathlib import Path

import pypdf

from ragchat.errors import ValidationError
from ragchat.ingest.web import WebFetcher
from ragchat.models import Attachment, SourceDraft

_TEXT_EXTS = {".txt", ".md", ".markdown", ".rst", ".csv", ".log", ".json", ".text"}
_DEFAULT_TEXT_NAME = "Custom text"


def is_url(value: str) -> bool:
    return value.strip().lower().startswith(("http://", "https://"))


def text_source(text: str, name: str = _DEFAULT_TEXT_NAME) -> SourceDraft:
    if not text.strip():
        raise ValidationError("Source text must not be empty.")
    return SourceDraft(name=name, type="text", content=text)


def url_source(url: str, fetcher: WebFetcher | None = None) -> SourceDraft:
    """Fetch *url* and return a url-type draft named after its hostname."""
    url = url.strip()
    fetcher = fetcher or WebFetcher()
    content = fetcher.fetch_text(url)
    if not content.strip():
        raise ValidationError(f"No readable text found at '{url}'.")
    name = urllib.parse.urlparse(url).hostname or url
    return SourceDraft(name=name, type="url", content=content, url=url)


def draft_from_input(value: str, fetcher: WebFetcher | None = None) -> SourceDraft:
    """Pasted input: a URL becomes a url source, anything else a text source."""
    if is_url(value):
        return url_source(value, fetcher)
    return text_source(value)


def document_source(path: Path | str) -> SourceDraft:
    """Read an uploaded document into a draft.

    Raises:
        ValidationError: If the file does not exist.
    """
    path = Path(path)
    if not path.is_file():
        raise ValidationError(f"File not found: '{path}'")

    if path.suffix.lower() == ".pdf":
        content = _extract_pdf_text(path)
    elif _is_text_file(path):
        content = path.read_text(encoding="utf-8", errors="replace")
    else:
        content = f"[Binary content of {path.name}]"

    if not content.strip():
        content = f"[No extractable text in {path.name}]"
    return SourceDraft(name=path.name, type="document", content=content)


def image_attachment(path: Path | str) -> Attachment:
    """Read an image file into a base64 image attachment."""
    path = Path(path)
    if not path.is_file():
        raise ValidationError(f"File not found: '{path}'")
    mime, _ = mimetypes.guess_type(path.name)
    if mime is not None and not mime.startswith("image/"):
        raise ValidationError(f"'{path.name}' is not an image ({mime}).")
    raw = path.read_bytes()
    return Attachment(
        type="image",
        name=path.name,
        data=base64.b64encode(raw).decode("ascii"),
        size=len(raw),
        mime_type=mime or "image/jpeg",
    )


def _is_text_file(path: Path) -> bool:
    if path.suffix.lower() in _TEXT_EXTS:
        return True
    mime, _ = mimetypes.guess_type(path.name)
    return bool(mime and mime.startswith("text/"))


def _extract_pdf_text(path: Path) -> str:
    """Extract all page text from the PDF at *path*; pages without text are skipped."""
    reader = pypdf.PdfReader(str(path))
    parts: list[str] = []
    for page in reader.pages:
        page_text = (page.extract_text() or "").strip()
        if page_text:
            parts.append(page_text)
    return "\n\n".join(parts)

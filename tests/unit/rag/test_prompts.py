"""Tests for prompt and model-request construction."""

from __future__ import annotations

from ragchat.config import DEFAULT_PERSONA
from ragchat.models import Attachment
from ragchat.rag.prompts import (
    build_image_content,
    build_request,
    build_system_prompt,
    image_data_uri,
)

_TEXT = "openrouter/text-model"
_VISION = "openrouter/vision-model"


def _image(data: str = "QUJD", mime: str | None = "image/png") -> Attachment:
    return Attachment(type="image", name="photo.png", data=data, mime_type=mime)


def test_system_prompt_without_context():
    prompt = build_system_prompt("")
    assert prompt.startswith(DEFAULT_PERSONA)
    assert "Relevant context information" not in prompt
    assert "Markdown" in prompt


def test_system_prompt_context_between_persona_and_closing():
    prompt = build_system_prompt("CONTEXT BLOCK")
    assert prompt.index(DEFAULT_PERSONA) < prompt.index("CONTEXT BLOCK") < prompt.index("Markdown")


def test_image_data_uri_defaults_to_jpeg():
    assert image_data_uri(_image(mime=None)) == "data:image/jpeg;base64,QUJD"
    assert image_data_uri(_image()) == "data:image/png;base64,QUJD"


def test_image_content_text_part_only_when_text():
    with_text = build_image_content("what is this?", [_image()])
    assert with_text[0] == {"type": "text", "text": "what is this?"}
    assert with_text[1]["type"] == "image_url"

    without_text = build_image_content("", [_image(), _image()])
    assert [p["type"] for p in without_text] == ["image_url", "image_url"]


def test_build_request_text_streams():
    req = build_request("hi", [], "", text_model=_TEXT, vision_model=_VISION)
    assert req.model == _TEXT
    assert req.stream is True
    assert req.messages[0]["role"] == "system"
    assert req.messages[1] == {"role": "user", "content": "hi"}


def test_build_request_image_uses_vision_without_stream():
    req = build_request("describe", [_image()], "", text_model=_TEXT, vision_model=_VISION)
    assert req.model == _VISION
    assert req.stream is False
    parts = req.messages[1]["content"]
    assert parts[1]["image_url"]["url"] == "data:image/png;base64,QUJD"


def test_build_request_document_attachment_stays_on_text_model():
    doc = Attachment(type="document", name="a.txt", data="eA==")
    req = build_request("hi", [doc], "", text_model=_TEXT, vision_model=_VISION)
    assert req.model == _TEXT


def test_build_request_custom_persona():
    req = build_request("hi", [], "", text_model=_TEXT, vision_model=_VISION, persona="Be brief.")
    assert req.messages[0]["content"].startswith("Be brief.")

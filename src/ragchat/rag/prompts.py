"""Prompt templates for chat generation.

System prompt structure:
  {persona}
  {assembled context}       ← omitted entirely when retrieval found nothing
  {closing instructions}

The system prompt is always the first message sent to the model. Image
messages use the multi-part content format:
  [{"type": "text", "text": ...}?, {"type": "image_url", "image_url": {"url": data-uri}}, ...]
"""

from __future__ import annotations

from dataclasses import dataclass

from ragchat.config import DEFAULT_PERSONA
from ragchat.models import Attachment

_CLOSING = (
    "If the user asks about documents or sources that are not in the context, "
    "tell them they need to be added as sources first.\n\n"
    "If you are asked how to implement RAG with Pydantic, explain the approach "
    "based on this example: https://ai.pydantic.dev/examples/rag/\n\n"
    "Format your answer using Markdown when appropriate."
)

_DEFAULT_IMAGE_MIME = "image/jpeg"


@dataclass
class ModelRequest:
    """Everything the orchestrator sends to the model for one turn."""

    model: str
    messages: list[dict]
    stream: bool


def build_system_prompt(context: str, persona: str = DEFAULT_PERSONA) -> str:
    parts = [persona.strip()]
    if context:
        parts.append(context)
    parts.append(_CLOSING)
    return "\n\n".join(parts)


def image_data_uri(attachment: Attachment) -> str:
    mime = attachment.mime_type or _DEFAULT_IMAGE_MIME
    return f"data:{mime};base64,{attachment.data}"


def build_image_content(text: str, images: list[Attachment]) -> list[dict]:
    """Multi-part user content: optional text part, then one part per image."""
    content: list[dict] = []
    if text:
        content.append({"type": "text", "text": text})
    for image in images:
        if image.data:
            content.append({"type": "image_url", "image_url": {"url": image_data_uri(image)}})
    return content


def build_request(
    text: str,
    attachments: list[Attachment],
    context: str,
    *,
    text_model: str,
    vision_model: str,
    persona: str = DEFAULT_PERSONA,
) -> ModelRequest:
    """Pick the model branch and build the message list.

    Any image attachment selects the vision model with a non-streaming,
    multi-part payload; otherwise the text model streams.
    """
    system = {"role": "system", "content": build_system_prompt(context, persona)}
    images = [a for a in attachments if a.type == "image"]
    if images:
        user = {"role": "user", "content": build_image_content(text, images)}
        return ModelRequest(model=vision_model, messages=[system, user], stream=False)
    user = {"role": "user", "content": text}
    return ModelRequest(model=text_model, messages=[system, user], stream=True)

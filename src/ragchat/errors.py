"""Error taxonomy for the ragchat engine.

TransportError / ValidationError come from external endpoints (store, search,
URL fetch). ModelCallError covers the inference endpoint. Degraded writes are
not errors; see ragchat.models.DegradedModeNotice.
"""

from __future__ import annotations


class RagChatError(Exception):
    """Base class for all ragchat errors."""


class TransportError(RagChatError):
    """Network, HTTP or database I/O failure talking to an external endpoint."""


class ValidationError(RagChatError):
    """Malformed or rejected payload."""


class ModelCallError(RagChatError):
    """The model inference call failed, timed out, or was cancelled."""


class SendCancelledError(ModelCallError):
    """The model call was cancelled before it produced a response."""


class SendInProgressError(RagChatError):
    """A send is already in flight for this conversation."""

    def __init__(self, conversation_id: str | None) -> None:
        self.conversation_id = conversation_id
        target = conversation_id or "new conversation"
        super().__init__(f"A message is already being sent in '{target}'.")


class EngineDisposedError(RagChatError):
    """The engine handle was disposed; no further operations are accepted."""

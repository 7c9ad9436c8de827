"""Session orchestrator: the send-message state machine and conversation ops.

send_message() runs one turn:

  IDLE
   └─ ENSURE_CONVERSATION     create "Conversation N" if none is selected
       └─ PERSIST_USER_MESSAGE    title rule, optimistic append, durable write
           └─ RETRIEVE_CONTEXT        rank cached source chunks, assemble prompt
               └─ INSERT_PLACEHOLDER      pending assistant message
                   └─ CALL_MODEL              stream (text) or complete (vision)
                       ├─ PERSIST_MODEL_MESSAGE   placeholder → final, durable write
                       │   └─ IDLE
                       └─ ERROR                   placeholder → error, draft returned

A failed durable write never aborts the turn: the item stays in the cache
marked local-only and a DegradedModeNotice is added to the result. Only a
model failure ends in ERROR, and every failure produces one notification.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from ragchat import notify
from ragchat.engine import EngineHandle, with_chunks
from ragchat.errors import (
    ModelCallError,
    RagChatError,
    SendCancelledError,
    SendInProgressError,
    TransportError,
    ValidationError,
)
from ragchat.ingest.sources import document_source, draft_from_input
from ragchat.models import (
    ROLE_ASSISTANT,
    ROLE_USER,
    STATUS_ERROR,
    STATUS_FINAL,
    STATUS_PENDING,
    Attachment,
    Conversation,
    DegradedModeNotice,
    Message,
    RAGSource,
    SearchResult,
    SourceDraft,
    derive_title,
    is_local_id,
    utc_now,
)
from ragchat.rag import llm_client
from ragchat.rag.assembler import assemble
from ragchat.rag.prompts import ModelRequest, build_request
from ragchat.rag.retriever import find_relevant_chunks
from ragchat.search import fallback_result, results_markdown, search_web
from ragchat.sync.cache import CONVERSATIONS, MESSAGES, SOURCES, PendingWrite

logger = logging.getLogger(__name__)

THINKING = "Thinking..."
ANALYZING_IMAGE = "Analyzing image..."
MODEL_ERROR_TEXT = "Sorry, there was an error generating a response."

_NEW_CONVERSATION = "<new>"

DeltaSink = Callable[[str], None]


class SendState(str, Enum):
    IDLE = "IDLE"
    ENSURE_CONVERSATION = "ENSURE_CONVERSATION"
    PERSIST_USER_MESSAGE = "PERSIST_USER_MESSAGE"
    RETRIEVE_CONTEXT = "RETRIEVE_CONTEXT"
    INSERT_PLACEHOLDER = "INSERT_PLACEHOLDER"
    CALL_MODEL = "CALL_MODEL"
    PERSIST_MODEL_MESSAGE = "PERSIST_MODEL_MESSAGE"
    ERROR = "ERROR"


@dataclass
class Draft:
    """The user's input, handed back on failure so it can be restored."""

    text: str
    attachments: list[Attachment] = field(default_factory=list)


@dataclass
class SendResult:
    conversation_id: str | None
    state: SendState = SendState.IDLE
    user_message: Message | None = None
    assistant_message: Message | None = None
    model: str | None = None
    context: str = ""
    notices: list[DegradedModeNotice] = field(default_factory=list)
    error: str | None = None
    draft: Draft | None = None

    @property
    def ok(self) -> bool:
        return self.state == SendState.IDLE

    @property
    def degraded(self) -> bool:
        return bool(self.notices)


class SessionOrchestrator:
    """Coordinates cache, store, retrieval and model calls for one session."""

    def __init__(self, handle: EngineHandle) -> None:
        self._handle = handle
        self.current_conversation_id: str | None = None
        self._states: dict[str, SendState] = {}
        self._in_flight: set[str] = set()
        self._model_tasks: dict[str, asyncio.Task] = {}

    @property
    def cache(self):
        return self._handle.cache

    @property
    def store(self):
        return self._handle.store

    @property
    def notifier(self) -> notify.Notifier:
        return self._handle.notifier

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    def conversations(self) -> list[Conversation]:
        return self.cache.snapshot(CONVERSATIONS)

    def select_conversation(self, conversation_id: str | None) -> None:
        self._handle.ensure_active()
        if conversation_id is not None and not self.cache.contains(
            CONVERSATIONS, None, conversation_id
        ):
            raise ValidationError(f"Unknown conversation '{conversation_id}'.")
        self.current_conversation_id = conversation_id

    async def messages(self, conversation_id: str) -> list[Message]:
        """Messages of *conversation_id*, refetched if stale; cached copy when offline."""
        self._handle.ensure_active()
        try:
            return await self.cache.read(MESSAGES, conversation_id)
        except RagChatError as exc:
            logger.warning("could not load messages for %s: %s", conversation_id, exc)
            return self.cache.snapshot(MESSAGES, conversation_id)

    async def conversation(self, conversation_id: str) -> Conversation | None:
        conv = self.cache.get(CONVERSATIONS, None, conversation_id)
        if conv is None:
            return None
        return dataclasses.replace(conv, messages=await self.messages(conversation_id))

    async def create_conversation(
        self, notices: list[DegradedModeNotice] | None = None
    ) -> Conversation:
        """Create "Conversation N" and select it. Never raises on store failure."""
        self._handle.ensure_active()
        title = f"Conversation {len(self.cache.snapshot(CONVERSATIONS)) + 1}"
        optimistic = Conversation(title=title)
        pending = self.cache.optimistic_append(CONVERSATIONS, None, optimistic)
        try:
            conv = await self.store.create_conversation(title)
        except (TransportError, ValidationError) as exc:
            self.cache.keep_local(pending)
            self._degrade(notices, SendState.ENSURE_CONVERSATION, "conversation", optimistic.id, exc)
            conv = optimistic
        except BaseException:
            self.cache.keep_local(pending)
            raise
        else:
            self.cache.confirm(pending, conv)
        self.current_conversation_id = conv.id
        return conv

    def state_of(self, conversation_id: str | None) -> SendState:
        return self._states.get(conversation_id or _NEW_CONVERSATION, SendState.IDLE)

    def last_final_message(self, conversation_id: str) -> Message | None:
        finals = [m for m in self.cache.snapshot(MESSAGES, conversation_id) if not m.is_pending]
        return finals[-1] if finals else None

    def can_modify(self, conversation_id: str, message_id: str) -> bool:
        """Delete/copy affordances are only offered on settled messages."""
        message = self.cache.get(MESSAGES, conversation_id, message_id)
        return message is not None and not message.is_pending

    # ------------------------------------------------------------------
    # Send
    # ------------------------------------------------------------------

    async def send_message(
        self,
        text: str,
        attachments: Iterable[Attachment] = (),
        on_delta: DeltaSink | None = None,
    ) -> SendResult:
        """Run one user turn. Model failures end in SendState.ERROR, not an exception.

        Raises:
            ValidationError: Empty text and no attachments.
            SendInProgressError: A send is already running for this conversation.
            EngineDisposedError: The engine was disposed.
        """
        self._handle.ensure_active()
        attachments = list(attachments)
        if not text.strip() and not attachments:
            raise ValidationError("Cannot send an empty message.")

        guard = self.current_conversation_id or _NEW_CONVERSATION
        if guard in self._in_flight:
            raise SendInProgressError(self.current_conversation_id)
        self._in_flight.add(guard)
        result = SendResult(conversation_id=self.current_conversation_id)
        try:
            await self._run_send(text, attachments, on_delta, result)
        finally:
            self._in_flight.discard(guard)
            if result.conversation_id:
                self._in_flight.discard(result.conversation_id)
            self._states.pop(_NEW_CONVERSATION, None)
        return result

    async def _run_send(
        self,
        text: str,
        attachments: list[Attachment],
        on_delta: DeltaSink | None,
        result: SendResult,
    ) -> None:
        notices = result.notices
        cfg = self._handle.config

        cid = self.current_conversation_id
        if cid is None:
            self._transition(_NEW_CONVERSATION, SendState.ENSURE_CONVERSATION)
            cid = (await self.create_conversation(notices)).id
            self._in_flight.add(cid)
        result.conversation_id = cid

        self._transition(cid, SendState.PERSIST_USER_MESSAGE)
        result.user_message = await self._record(
            cid, ROLE_USER, text, attachments, SendState.PERSIST_USER_MESSAGE, notices
        )

        self._transition(cid, SendState.RETRIEVE_CONTEXT)
        chunks = find_relevant_chunks(
            self.cache.snapshot(SOURCES), text, top_k=cfg.retrieval.top_k
        )
        result.context = assemble(chunks)
        request = build_request(
            text,
            attachments,
            result.context,
            text_model=cfg.models.text_model,
            vision_model=cfg.models.vision_model,
            persona=cfg.assistant.persona,
        )
        result.model = request.model
        logger.info(
            "send in %s: %d context fragment(s), model %s", cid, len(chunks), request.model
        )

        self._transition(cid, SendState.INSERT_PLACEHOLDER)
        placeholder = Message(
            conversation_id=cid,
            role=ROLE_ASSISTANT,
            content=THINKING if request.stream else ANALYZING_IMAGE,
            status=STATUS_PENDING,
        )
        pending = self.cache.optimistic_append(MESSAGES, cid, placeholder)

        self._transition(cid, SendState.CALL_MODEL)
        try:
            content = await self._call_model(cid, request, placeholder.id, on_delta)
        except ModelCallError as exc:
            self._fail_placeholder(cid, placeholder.id, pending)
            result.state = SendState.ERROR
            result.error = str(exc)
            result.draft = Draft(text=text, attachments=attachments)
            self._states[cid] = SendState.ERROR
            if isinstance(exc, SendCancelledError):
                self.notifier.warning(notify.send_cancelled())
            else:
                self.notifier.error(notify.model_call_failed(str(exc)))
            return
        except BaseException:
            self._fail_placeholder(cid, placeholder.id, pending)
            raise

        self._transition(cid, SendState.PERSIST_MODEL_MESSAGE)
        final = dataclasses.replace(
            self.cache.get(MESSAGES, cid, placeholder.id) or placeholder,
            content=content,
            status=STATUS_FINAL,
        )
        self.cache.replace(MESSAGES, cid, placeholder.id, final)
        result.assistant_message = await self._persist(
            cid, pending, final, SendState.PERSIST_MODEL_MESSAGE, notices
        )
        self._transition(cid, SendState.IDLE)

    async def _call_model(
        self,
        cid: str,
        request: ModelRequest,
        placeholder_id: str,
        on_delta: DeltaSink | None,
    ) -> str:
        try:
            llm_client.validate_api_key(request.model, self._handle.credentials.model_api_key)
        except EnvironmentError as exc:
            raise ModelCallError(str(exc)) from exc

        timeout = self._handle.config.models.request_timeout
        task = asyncio.get_running_loop().create_task(
            asyncio.wait_for(
                self._generate(cid, request, placeholder_id, on_delta), timeout=timeout
            )
        )
        self._model_tasks[cid] = task
        self._handle.track(task)
        try:
            return await task
        except TimeoutError as exc:
            raise ModelCallError(
                f"No response from '{request.model}' within {timeout:g}s."
            ) from exc
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            raise SendCancelledError("The model call was cancelled.") from None
        finally:
            if self._model_tasks.get(cid) is task:
                del self._model_tasks[cid]

    async def _generate(
        self,
        cid: str,
        request: ModelRequest,
        placeholder_id: str,
        on_delta: DeltaSink | None,
    ) -> str:
        models = self._handle.config.models
        api_key = self._handle.credentials.model_api_key
        if not request.stream:
            return await llm_client.complete(
                request.model,
                request.messages,
                api_key=api_key,
                max_tokens=models.max_tokens,
                temperature=models.temperature,
            )
        parts: list[str] = []
        async for delta in llm_client.stream(
            request.model,
            request.messages,
            api_key=api_key,
            max_tokens=models.max_tokens,
            temperature=models.temperature,
        ):
            parts.append(delta)
            if on_delta is not None:
                on_delta(delta)
            current = self.cache.get(MESSAGES, cid, placeholder_id)
            if current is not None:
                self.cache.replace(
                    MESSAGES, cid, placeholder_id, dataclasses.replace(current, content="".join(parts))
                )
        return "".join(parts)

    def cancel(self, conversation_id: str) -> bool:
        """Cancel the in-flight model call for *conversation_id*."""
        task = self._model_tasks.get(conversation_id)
        if task is None or task.done():
            return False
        task.cancel()
        return True

    def _fail_placeholder(self, cid: str, placeholder_id: str, pending: PendingWrite) -> None:
        if self._handle.disposed:
            return
        current = self.cache.get(MESSAGES, cid, placeholder_id)
        if current is not None:
            self.cache.replace(
                MESSAGES,
                cid,
                placeholder_id,
                dataclasses.replace(current, content=MODEL_ERROR_TEXT, status=STATUS_ERROR),
            )
        self.cache.keep_local(pending)

    # ------------------------------------------------------------------
    # Persistence helpers
    # ------------------------------------------------------------------

    async def _record(
        self,
        cid: str,
        role: str,
        content: str,
        attachments: list[Attachment],
        step: SendState,
        notices: list[DegradedModeNotice],
    ) -> Message:
        """Append a message optimistically, then write it durably."""
        if role == ROLE_USER:
            await self._apply_title_rule(cid, content, step, notices)
        message = Message(
            conversation_id=cid, role=role, content=content, attachments=list(attachments)
        )
        pending = self.cache.optimistic_append(MESSAGES, cid, message)
        return await self._persist(cid, pending, message, step, notices)

    async def _persist(
        self,
        cid: str,
        pending: PendingWrite,
        message: Message,
        step: SendState,
        notices: list[DegradedModeNotice],
    ) -> Message:
        if is_local_id(cid):
            self.cache.keep_local(pending)
            self._degrade(notices, step, "message", message.id, "conversation is not stored")
            return message
        try:
            stored = await self.store.create_message(
                cid, message.content, message.role, message.attachments
            )
        except (TransportError, ValidationError) as exc:
            self.cache.keep_local(pending)
            self._degrade(notices, step, "message", message.id, exc)
            return message
        except BaseException:
            self.cache.keep_local(pending)
            raise
        self.cache.confirm(pending, stored)
        return stored

    async def _apply_title_rule(
        self,
        cid: str,
        content: str,
        step: SendState,
        notices: list[DegradedModeNotice],
    ) -> None:
        """The first user message of a conversation names it."""
        existing = await self.messages(cid)
        if any(not m.is_pending for m in existing):
            return
        conv = self.cache.get(CONVERSATIONS, None, cid)
        if conv is None:
            return
        title = derive_title(content)
        self.cache.replace(
            CONVERSATIONS, None, cid, dataclasses.replace(conv, title=title, updated_at=utc_now())
        )
        if is_local_id(cid):
            return
        try:
            await self.store.update_conversation_title(cid, title)
        except (TransportError, ValidationError) as exc:
            self._degrade(notices, step, "conversation title", cid, exc)

    def _degrade(
        self,
        notices: list[DegradedModeNotice] | None,
        step: SendState,
        entity: str,
        item_id: str,
        reason: object,
    ) -> None:
        notice = DegradedModeNotice(step=step.value, entity=entity, item_id=item_id, reason=str(reason))
        if notices is not None:
            notices.append(notice)
        self.notifier.warning(notify.degraded_write(notice))

    def _transition(self, key: str, state: SendState) -> None:
        self._handle.ensure_active()
        logger.debug("%s → %s", key, state.value)
        if state == SendState.IDLE:
            self._states.pop(key, None)
        else:
            self._states[key] = state

    # ------------------------------------------------------------------
    # Messages + attachments
    # ------------------------------------------------------------------

    async def delete_message(self, message_id: str, conversation_id: str | None = None) -> bool:
        self._handle.ensure_active()
        cid = conversation_id or self.current_conversation_id
        if cid is not None and self.cache.is_pending(MESSAGES, cid, message_id):
            return False
        if not is_local_id(message_id):
            try:
                await self.store.delete_message(message_id)
            except (TransportError, ValidationError) as exc:
                self.notifier.error(notify.message_delete_failed(str(exc)))
                return False
        if cid is not None:
            self.cache.remove(MESSAGES, cid, message_id)
        self.notifier.success(notify.message_deleted())
        return True

    async def delete_attachment(
        self, attachment_id: str, conversation_id: str | None = None
    ) -> bool:
        self._handle.ensure_active()
        if not is_local_id(attachment_id):
            try:
                await self.store.delete_attachment(attachment_id)
            except (TransportError, ValidationError) as exc:
                self.notifier.error(notify.attachment_delete_failed(str(exc)))
                return False
        cid = conversation_id or self.current_conversation_id
        if cid is not None:
            for message in self.cache.snapshot(MESSAGES, cid):
                kept = [a for a in message.attachments if a.id != attachment_id]
                if len(kept) != len(message.attachments):
                    self.cache.replace(
                        MESSAGES, cid, message.id, dataclasses.replace(message, attachments=kept)
                    )
        self.notifier.success(notify.attachment_deleted())
        return True

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    def sources(self) -> list[RAGSource]:
        return self.cache.snapshot(SOURCES)

    async def add_source(self, draft: SourceDraft) -> RAGSource | None:
        """Chunk and store *draft*. On failure the optimistic source is rolled back."""
        self._handle.ensure_active()
        chunker = self._handle.chunker
        optimistic = RAGSource(name=draft.name, type=draft.type, content=draft.content, url=draft.url)
        optimistic = with_chunks(optimistic, chunker)
        pending = self.cache.optimistic_append(SOURCES, None, optimistic)
        try:
            stored = await self.store.create_source(draft)
        except (TransportError, ValidationError) as exc:
            self.cache.rollback(pending)
            self.notifier.error(notify.source_failed(str(exc)))
            return None
        stored = with_chunks(stored, chunker)
        self.cache.confirm(pending, stored)
        logger.info("source %s added with %d chunk(s)", stored.id, len(stored.chunks))
        self.notifier.success(notify.source_added(stored.name))
        return stored

    async def add_source_input(self, value: str) -> RAGSource | None:
        """Pasted text or a URL."""
        try:
            draft = await asyncio.to_thread(draft_from_input, value)
        except (TransportError, ValidationError) as exc:
            self.notifier.error(notify.source_failed(str(exc)))
            return None
        return await self.add_source(draft)

    async def add_document(self, path: Path | str) -> RAGSource | None:
        try:
            draft = await asyncio.to_thread(document_source, path)
        except (TransportError, ValidationError) as exc:
            self.notifier.error(notify.source_failed(str(exc)))
            return None
        return await self.add_source(draft)

    async def remove_source(self, source_id: str) -> bool:
        self._handle.ensure_active()
        if not is_local_id(source_id):
            try:
                await self.store.delete_source(source_id)
            except (TransportError, ValidationError) as exc:
                self.notifier.error(notify.source_remove_failed(str(exc)))
                return False
        self.cache.remove(SOURCES, None, source_id)
        self.notifier.info(notify.source_removed())
        return True

    # ------------------------------------------------------------------
    # Web search
    # ------------------------------------------------------------------

    async def search_internet(self, query: str) -> list[SearchResult]:
        """Search the web and record the exchange in the current conversation."""
        self._handle.ensure_active()
        if not query.strip():
            raise ValidationError("Search query must not be empty.")
        guard = self.current_conversation_id or _NEW_CONVERSATION
        if guard in self._in_flight:
            raise SendInProgressError(self.current_conversation_id)
        self._in_flight.add(guard)
        cid = self.current_conversation_id
        try:
            results = await search_web(
                query, self._handle.credentials.search_api_key, self._handle.config.search
            )
            if results == [fallback_result(query)]:
                self.notifier.warning(notify.search_failed(query))

            notices: list[DegradedModeNotice] = []
            if cid is None:
                cid = (await self.create_conversation(notices)).id
                self._in_flight.add(cid)
            await self._record(
                cid, ROLE_USER, f"Web search: {query}", [], SendState.PERSIST_USER_MESSAGE, notices
            )
            await self._record(
                cid,
                ROLE_ASSISTANT,
                results_markdown(query, results),
                [],
                SendState.PERSIST_MODEL_MESSAGE,
                notices,
            )
        finally:
            self._in_flight.discard(guard)
            if cid is not None:
                self._in_flight.discard(cid)
        return results

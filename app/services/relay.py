"""Re-framing of the upstream completion stream into relay StreamEvents.

The relay reads ``data:`` lines from the provider, forwards every non-empty
text delta to the client as a ``token`` event and accumulates the full
reply. When the stream ends the reply is persisted once, in full, or not at
all.
"""
import asyncio
from contextlib import AsyncExitStack
import json
import logging
from typing import Any, AsyncIterator, Callable, Optional

from starlette.concurrency import run_in_threadpool

from app.core.sse import SSELineDecoder
from app.models.conversation import utc_now
from app.schemas.stream_events import (
    EMPTY_RESPONSE_MESSAGE,
    UPSTREAM_DONE_SENTINEL,
    ConversationEvent,
    DoneEvent,
    ErrorEvent,
    TokenEvent,
    encode_event,
)
from app.services.chat_store import ConversationStore

logger = logging.getLogger(__name__)


def _first_choice(payload: dict[str, Any]) -> dict[str, Any]:
    choices = payload.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        return choices[0]
    return {}


def _nested(mapping: Any, *keys: str) -> Any:
    for key in keys:
        if not isinstance(mapping, dict):
            return None
        mapping = mapping.get(key)
    return mapping


# Tried in order; the first rule yielding a non-None value decides the delta.
DELTA_RULES: tuple[tuple[str, Callable[[dict[str, Any]], Any]], ...] = (
    ("choices[0].delta.content", lambda p: _nested(_first_choice(p), "delta", "content")),
    ("choices[0].message.content", lambda p: _nested(_first_choice(p), "message", "content")),
    ("content", lambda p: p.get("content")),
)


def extract_delta(payload: dict[str, Any]) -> str:
    """Text delta of one upstream chunk, or "" when there is none."""
    for _, rule in DELTA_RULES:
        value = rule(payload)
        if value is not None:
            return value if isinstance(value, str) else ""
    return ""


def finish_reason(payload: dict[str, Any]) -> Optional[str]:
    return _first_choice(payload).get("finish_reason")


class ChatRelay:
    """
    One streamed assistant turn.

    Owns the upstream response (through ``stack``) from the moment the
    provider accepted the request until stream() finishes.
    """

    def __init__(
        self,
        store: ConversationStore,
        conversation_id: str,
        chunks: AsyncIterator[bytes],
        stack: Optional[AsyncExitStack] = None,
    ):
        self.store = store
        self.conversation_id = conversation_id
        self.chunks = chunks
        self.stack = stack or AsyncExitStack()
        self.content = ""
        self.chunk_count = 0
        self.token_count = 0

    async def stream(self) -> AsyncIterator[bytes]:
        """
        Yield encoded frames for the client.

        Emits ``conversation`` first, then one ``token`` per delta. A failure
        while reading upstream becomes an ``error`` event followed by the
        normal finalization. If the client goes away the upstream response
        is closed and nothing is persisted.
        """
        async with self.stack:
            yield encode_event(ConversationEvent(conversation_id=self.conversation_id))

            try:
                async for frame in self._reframe():
                    yield frame
            except (asyncio.CancelledError, GeneratorExit):
                logger.info(
                    f"Client disconnected from conversation {self.conversation_id}; "
                    f"discarding {len(self.content)} chars"
                )
                raise
            except Exception as e:
                logger.exception("Error streaming AI response")
                message = str(e) or e.__class__.__name__
                yield encode_event(ErrorEvent(message=f"Streaming interrupted: {message}"))

            if self.content.strip():
                await self._persist()
            else:
                logger.warning(
                    f"No assistant content to save. Content length: {len(self.content)}"
                )
                yield encode_event(ErrorEvent(message=EMPTY_RESPONSE_MESSAGE))

    async def _reframe(self) -> AsyncIterator[bytes]:
        lines = SSELineDecoder()
        async for chunk in self.chunks:
            self.chunk_count += 1
            for data in lines.feed(chunk):
                if data == UPSTREAM_DONE_SENTINEL:
                    logger.debug("Received [DONE] marker")
                    yield encode_event(DoneEvent())
                    break
                frame = self._handle_data(data)
                if frame is not None:
                    yield frame

        for data in lines.flush():
            if data == UPSTREAM_DONE_SENTINEL:
                yield encode_event(DoneEvent())
                continue
            frame = self._handle_data(data)
            if frame is not None:
                yield frame

        logger.info(
            f"Stream completed: {self.chunk_count} chunks, {self.token_count} tokens, "
            f"{len(self.content)} total chars"
        )

    def _handle_data(self, data: str) -> Optional[bytes]:
        if not data:
            return None
        try:
            payload = json.loads(data)
        except ValueError:
            # Keep-alive noise is dropped quietly; broken JSON objects are not
            if data.startswith("{"):
                logger.warning(
                    f"Failed to parse AI stream chunk #{self.chunk_count}: {data[:200]}"
                )
            return None
        if not isinstance(payload, dict):
            return None

        reason = finish_reason(payload)
        if reason:
            logger.debug(f"Finish reason: {reason}")
            if reason != "stop":
                logger.warning(f"Unexpected finish reason: {reason}")

        delta = extract_delta(payload)
        if not delta:
            return None
        self.token_count += 1
        self.content += delta
        return encode_event(TokenEvent(value=delta))

    async def _persist(self) -> None:
        """Store the reply and bump the conversation; failures are only logged."""
        insert_result, touch_result = await asyncio.gather(
            run_in_threadpool(
                self.store.add_message, self.conversation_id, "assistant", self.content
            ),
            run_in_threadpool(
                self.store.touch_conversation, self.conversation_id, utc_now()
            ),
            return_exceptions=True,
        )
        if isinstance(insert_result, BaseException):
            logger.error(f"Failed to store assistant message: {insert_result}")
        if isinstance(touch_result, BaseException):
            logger.error(f"Failed to update conversation metadata: {touch_result}")

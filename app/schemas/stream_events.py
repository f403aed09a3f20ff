"""Wire events the relay streams to the chat client.

Each frame is ``data: <json>\\n\\n`` where the JSON object carries a ``type``
discriminant: ``conversation``, ``token``, ``done`` or ``error``.
"""
import json
import logging
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from app.core.sse import SSELineDecoder

logger = logging.getLogger(__name__)

UPSTREAM_DONE_SENTINEL = "[DONE]"
EMPTY_RESPONSE_MESSAGE = "AI returned empty response"


class ConversationEvent(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["conversation"] = "conversation"
    conversation_id: str = Field(alias="conversationId")


class TokenEvent(BaseModel):
    type: Literal["token"] = "token"
    value: str


class DoneEvent(BaseModel):
    type: Literal["done"] = "done"


class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    message: str = ""


StreamEvent = Annotated[
    Union[ConversationEvent, TokenEvent, DoneEvent, ErrorEvent],
    Field(discriminator="type"),
]

_event_adapter = TypeAdapter(StreamEvent)


def encode_event(event: BaseModel) -> bytes:
    """Serialize one event as an SSE frame."""
    body = event.model_dump_json(by_alias=True)
    return f"data: {body}\n\n".encode("utf-8")


def parse_event(payload: str) -> Optional[StreamEvent]:
    """
    Parse the payload of one ``data:`` line.

    Returns None for malformed JSON and for unknown or invalid event types;
    those are logged and skipped instead of aborting the stream.
    """
    if payload == UPSTREAM_DONE_SENTINEL:
        return DoneEvent()
    if not payload:
        return None
    try:
        data = json.loads(payload)
    except ValueError:
        logger.warning("Failed to parse stream payload: %s", payload[:200])
        return None
    if not isinstance(data, dict) or "type" not in data:
        return None
    try:
        return _event_adapter.validate_python(data)
    except ValidationError:
        logger.debug("Ignoring unrecognized stream event: %s", payload[:200])
        return None


class EventStreamDecoder:
    """Turn raw response chunks into StreamEvents."""

    def __init__(self) -> None:
        self._lines = SSELineDecoder()

    def feed(self, chunk) -> list[StreamEvent]:
        return self._collect(self._lines.feed(chunk))

    def flush(self) -> list[StreamEvent]:
        return self._collect(self._lines.flush())

    @staticmethod
    def _collect(payloads: list[str]) -> list[StreamEvent]:
        events = []
        for payload in payloads:
            event = parse_event(payload)
            if event is not None:
                events.append(event)
        return events

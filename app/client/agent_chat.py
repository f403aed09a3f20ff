"""Async chat client for the relay endpoint.

Plays the role of the chat window: keeps the visible message list, streams
one turn at a time from ``POST /api/chat`` and reconciles the list when the
turn completes, fails or is cancelled.

Turn lifecycle::

    idle -> sending -> streaming -> completed | errored | cancelled -> idle
"""
import asyncio
from dataclasses import dataclass, field
from enum import Enum
import logging
from typing import Callable, Iterable, Optional
from uuid import uuid4

import httpx

from app.schemas.stream_events import (
    EMPTY_RESPONSE_MESSAGE,
    ConversationEvent,
    ErrorEvent,
    EventStreamDecoder,
    TokenEvent,
)

logger = logging.getLogger(__name__)

CHAT_PATH = "/api/chat"
RESET_PATH = "/api/chat/reset"
LATEST_PATH = "/api/chat/conversations/latest"

DEFAULT_ERROR = "Failed to reach the AI agent."
CONNECT_ERROR = "Failed to connect to the agent."
STREAM_ERROR = "Streaming error encountered."
EMPTY_REPLY_NOTICE = (
    "The agent did not return a response. Please check the server logs for details."
)
RESET_ERROR = "Failed to reset conversation"
RESET_NOTICE = "Conversation reset successfully"

Notifier = Callable[[str, str], None]


class TurnState(str, Enum):
    IDLE = "idle"
    SENDING = "sending"
    STREAMING = "streaming"
    COMPLETED = "completed"
    ERRORED = "errored"
    CANCELLED = "cancelled"


@dataclass
class AgentMessage:
    id: str
    role: str
    content: str
    created_at: Optional[str] = None


@dataclass
class ChatTurn:
    """The single in-flight turn; the only handle stop() acts on."""

    user_message: AgentMessage
    state: TurnState = TurnState.SENDING
    placeholder_id: Optional[str] = None
    content: str = ""
    error: Optional[str] = None
    task: Optional[asyncio.Task] = field(default=None, repr=False)
    cancel_requested: bool = False

    @property
    def finished(self) -> bool:
        return self.state in (TurnState.COMPLETED, TurnState.ERRORED, TurnState.CANCELLED)


class ChatTurnError(Exception):
    """A turn failed; the message is what the user is shown."""


class EmptyReplyError(ChatTurnError):
    pass


def _log_notification(level: str, message: str) -> None:
    logger.log(logging.ERROR if level == "error" else logging.INFO, message)


async def extract_error_message(response: httpx.Response, default: str = DEFAULT_ERROR) -> str:
    """Best available error text from a failed relay response."""
    await response.aread()
    try:
        data = response.json()
    except ValueError:
        return response.text or default
    if not isinstance(data, dict):
        return response.text or default
    message = data.get("details") or data.get("error") or default
    if data.get("hint"):
        message += f" ({data['hint']})"
    return message


class AgentChatClient:
    """
    Conversation view backed by the relay.

    Args:
        http_client: Client with base_url and auth headers set
        conversation_id: Conversation to continue, None to start fresh
        initial_messages: Messages already on screen
        notify: Transient notification sink, called as notify(level, text)
        on_change: Called with the message list after every mutation
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        *,
        conversation_id: Optional[str] = None,
        initial_messages: Iterable[AgentMessage] = (),
        notify: Optional[Notifier] = None,
        on_change: Optional[Callable[[list[AgentMessage]], None]] = None,
    ):
        self._http = http_client
        self.conversation_id = conversation_id
        self._messages: list[AgentMessage] = list(initial_messages)
        self._notify = notify or _log_notification
        self._on_change = on_change
        self._turn: Optional[ChatTurn] = None
        self._resetting = False

    @property
    def messages(self) -> list[AgentMessage]:
        return list(self._messages)

    @property
    def is_streaming(self) -> bool:
        return self._turn is not None

    @property
    def state(self) -> TurnState:
        return self._turn.state if self._turn else TurnState.IDLE

    async def send(self, text: str) -> Optional[ChatTurn]:
        """
        Submit one message and stream the reply.

        Returns the finished turn, or None when the text is blank or another
        turn is still in flight.
        """
        content = text.strip()
        if not content or self._turn is not None:
            return None

        turn = ChatTurn(
            user_message=AgentMessage(id=f"temp-user-{uuid4().hex}", role="user", content=content)
        )
        self._append(turn.user_message)
        self._turn = turn
        turn.task = asyncio.create_task(self._stream_turn(turn))

        try:
            await turn.task
        except asyncio.CancelledError:
            if not turn.cancel_requested:
                raise
            self._remove_placeholder(turn)
            turn.state = TurnState.CANCELLED
            logger.info("Turn cancelled; discarded %d streamed chars", len(turn.content))
        except EmptyReplyError as e:
            self._fail(turn, str(e))
        except ChatTurnError as e:
            self._fail(turn, str(e) or STREAM_ERROR)
        except httpx.HTTPError as e:
            logger.error("Chat request failed: %s", e)
            self._fail(turn, CONNECT_ERROR)
        finally:
            if self._turn is turn:
                self._turn = None
        return turn

    def stop(self) -> None:
        """Abort the in-flight turn. Safe to call at any time, any number of times."""
        turn = self._turn
        if turn is None or turn.task is None or turn.task.done():
            return
        turn.cancel_requested = True
        turn.task.cancel()

    async def reset(self) -> bool:
        """
        Clear the conversation on the server, then locally.

        Any in-flight turn is cancelled first so no late token can repopulate
        the cleared view. Local state is only cleared after the server
        confirms.
        """
        if self._resetting:
            return False
        self.stop()

        if self.conversation_id is None:
            self._clear()
            return True

        self._resetting = True
        try:
            response = await self._http.post(
                RESET_PATH, json={"conversationId": self.conversation_id}
            )
            if response.is_error:
                self._notify("error", await extract_error_message(response, RESET_ERROR))
                return False
        except httpx.HTTPError as e:
            logger.error("Error resetting conversation: %s", e)
            self._notify("error", RESET_ERROR)
            return False
        finally:
            self._resetting = False

        self._clear()
        self._notify("success", RESET_NOTICE)
        return True

    async def load_latest(self) -> None:
        """Resume the caller's most recent conversation."""
        response = await self._http.get(LATEST_PATH)
        response.raise_for_status()
        data = response.json()
        conversation = data.get("conversation")
        self.conversation_id = conversation["id"] if conversation else None
        self._messages = [
            AgentMessage(
                id=str(message["id"]),
                role=message["role"],
                content=message["content"],
                created_at=message.get("createdAt"),
            )
            for message in data.get("messages", [])
        ]
        self._changed()

    async def aclose(self) -> None:
        self.stop()
        turn = self._turn
        if turn is not None and turn.task is not None:
            await asyncio.gather(turn.task, return_exceptions=True)

    async def __aenter__(self) -> "AgentChatClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def _stream_turn(self, turn: ChatTurn) -> None:
        payload = {"message": turn.user_message.content, "conversationId": self.conversation_id}
        async with self._http.stream("POST", CHAT_PATH, json=payload) as response:
            if response.is_error:
                raise ChatTurnError(await extract_error_message(response))

            turn.state = TurnState.STREAMING
            turn.placeholder_id = f"temp-assistant-{uuid4().hex}"
            self._append(AgentMessage(id=turn.placeholder_id, role="assistant", content=""))

            decoder = EventStreamDecoder()
            async for chunk in response.aiter_bytes():
                for event in decoder.feed(chunk):
                    self._apply_event(turn, event)
            for event in decoder.flush():
                self._apply_event(turn, event)

        if not turn.content.strip():
            raise EmptyReplyError(EMPTY_REPLY_NOTICE)
        turn.state = TurnState.COMPLETED

    def _apply_event(self, turn: ChatTurn, event) -> None:
        if isinstance(event, ConversationEvent):
            self.conversation_id = event.conversation_id
        elif isinstance(event, TokenEvent):
            turn.content += event.value
            self._update_placeholder(turn)
        elif isinstance(event, ErrorEvent):
            if event.message == EMPTY_RESPONSE_MESSAGE and not turn.content.strip():
                raise EmptyReplyError(EMPTY_REPLY_NOTICE)
            raise ChatTurnError(event.message or STREAM_ERROR)
        # DoneEvent is informational; the stream closing ends the turn

    def _fail(self, turn: ChatTurn, message: str) -> None:
        self._remove_placeholder(turn)
        turn.state = TurnState.ERRORED
        turn.error = message
        logger.error("Chat turn failed: %s", message)
        self._notify("error", message)

    def _append(self, message: AgentMessage) -> None:
        self._messages.append(message)
        self._changed()

    def _update_placeholder(self, turn: ChatTurn) -> None:
        for message in self._messages:
            if message.id == turn.placeholder_id:
                message.content = turn.content
                break
        self._changed()

    def _remove_placeholder(self, turn: ChatTurn) -> None:
        if turn.placeholder_id is None:
            return
        self._messages = [m for m in self._messages if m.id != turn.placeholder_id]
        turn.placeholder_id = None
        self._changed()

    def _clear(self) -> None:
        self._messages = []
        self.conversation_id = None
        self._changed()

    def _changed(self) -> None:
        if self._on_change is not None:
            self._on_change(self.messages)

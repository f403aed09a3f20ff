"""Chat endpoint routes for the AI assistant.

Provides:
- POST /api/chat - Send a message; the reply streams back as StreamEvents
- POST /api/chat/reset - Delete a conversation and its messages
- GET /api/chat/conversations/latest - Most recent conversation with messages
"""
import logging
from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool

from app.core.auth import CurrentUser
from app.core.deps import get_chat_service, get_current_user, get_store
from app.core.errors import ChatAPIError, StoreError
from app.schemas.chat import (
    ChatRequest,
    ConversationSummary,
    ErrorResponse,
    LatestConversationResponse,
    MessageResponse,
    ResetRequest,
)
from app.services.chat_service import ChatService
from app.services.chat_store import ConversationStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/chat", tags=["chat"])

STREAM_HEADERS = {
    "Content-Type": "text/event-stream",
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
}


async def read_json_body(request: Request) -> Any:
    """Parse the request body, answering 400 when it is not JSON."""
    try:
        return await request.json()
    except ValueError:
        raise ChatAPIError(400, "Invalid JSON body")


def parse_chat_request(body: Any) -> ChatRequest:
    if not isinstance(body, dict):
        body = {}
    message = body.get("message")
    if not isinstance(message, str) or not message.strip():
        raise ChatAPIError(400, "Message is required")

    conversation_id = body.get("conversationId")
    if conversation_id is not None and not isinstance(conversation_id, str):
        raise ChatAPIError(400, "Invalid conversation ID")
    return ChatRequest(message=message, conversation_id=conversation_id or None)


@router.post(
    "",
    responses={
        200: {"content": {"text/event-stream": {}}},
        400: {"model": ErrorResponse, "description": "Invalid body or empty message"},
        401: {"model": ErrorResponse, "description": "Caller not identified"},
        404: {"model": ErrorResponse, "description": "Conversation not found or not owned"},
        500: {"model": ErrorResponse, "description": "Persistence or upstream failure"},
    },
)
async def send_chat_message(
    request: Request,
    current_user: CurrentUser = Depends(get_current_user),
    chat_service: ChatService = Depends(get_chat_service),
) -> StreamingResponse:
    """
    Send message to the AI assistant.

    Flow:
    1. Identify the caller (dependency, before the body is read)
    2. Validate the body
    3. Resolve/create conversation, store user message, load history
    4. Open the upstream completion stream
    5. Stream re-framed events; the reply is persisted when the stream ends

    Raises:
        ChatAPIError: 400/401/404/500 before streaming starts
    """
    chat_request = parse_chat_request(await read_json_body(request))
    relay = await chat_service.start_turn(current_user, chat_request)
    return StreamingResponse(relay.stream(), headers=STREAM_HEADERS)


@router.post("/reset")
async def reset_conversation(
    request: Request,
    current_user: CurrentUser = Depends(get_current_user),
    store: ConversationStore = Depends(get_store),
) -> dict[str, bool]:
    """
    Delete a conversation and all of its messages.

    Raises:
        ChatAPIError: 400 if the body or id is invalid, 404 if the
            conversation is not found or not owned, 500 when deleting the
            messages or the conversation fails
    """
    body = await read_json_body(request)
    try:
        reset_request = ResetRequest.model_validate(body)
    except ValidationError:
        raise ChatAPIError(400, "Conversation ID is required")
    if not reset_request.conversation_id:
        raise ChatAPIError(400, "Conversation ID is required")

    try:
        conversation = await run_in_threadpool(
            store.get_owned_conversation, current_user.id, reset_request.conversation_id
        )
    except StoreError as e:
        logger.error(f"Failed to look up conversation: {e}")
        conversation = None
    if conversation is None:
        raise ChatAPIError(404, "Conversation not found")

    try:
        await run_in_threadpool(store.delete_messages, conversation.id)
    except StoreError as e:
        logger.error(f"Failed to delete messages of conversation {conversation.id}: {e}")
        raise ChatAPIError(500, "Failed to delete messages")

    try:
        await run_in_threadpool(store.delete_conversation, conversation.id)
    except StoreError as e:
        logger.error(f"Failed to delete conversation {conversation.id}: {e}")
        raise ChatAPIError(500, "Failed to delete conversation")

    logger.info(f"Conversation reset: user={current_user.id}, conversation={conversation.id}")
    return {"success": True}


@router.get("/conversations/latest", response_model=LatestConversationResponse)
async def get_latest_conversation(
    current_user: CurrentUser = Depends(get_current_user),
    store: ConversationStore = Depends(get_store),
) -> LatestConversationResponse:
    """
    Most recent conversation of the caller with all messages.

    Used by the chat client to resume where the user left off. Read
    failures degrade to an empty conversation.
    """
    try:
        conversation = await run_in_threadpool(store.latest_conversation, current_user.id)
        if conversation is None:
            return LatestConversationResponse()
        messages = await run_in_threadpool(store.load_history, conversation.id)
    except StoreError as e:
        logger.error(f"Failed to load latest conversation: {e}")
        return LatestConversationResponse()

    return LatestConversationResponse(
        conversation=ConversationSummary(
            id=conversation.id,
            title=conversation.title,
            last_message_at=conversation.last_message_at,
        ),
        messages=[
            MessageResponse(
                id=msg.id,
                role=msg.role,
                content=msg.content,
                created_at=msg.created_at,
            )
            for msg in messages
        ],
    )

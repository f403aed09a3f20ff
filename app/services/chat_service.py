"""Chat service layer for the AI assistant.

Handles:
- Conversation resolution (owner-scoped lookup or lazy creation)
- User message storage before any upstream call
- Conversation history retrieval
- System prompt assembly with live context
- Opening the upstream completion stream
"""
from contextlib import AsyncExitStack
import logging
from typing import Dict, Optional

from starlette.concurrency import run_in_threadpool

from app.core.auth import CurrentUser
from app.core.errors import ChatAPIError, StoreError, UpstreamError
from app.models.conversation import Message
from app.schemas.chat import ChatRequest
from app.services.chat_store import ConversationStore
from app.services.context_sources import ContextRegistry, matching_sources
from app.services.relay import ChatRelay
from app.services.upstream import CompletionProvider

logger = logging.getLogger(__name__)

TITLE_LENGTH = 80

SYSTEM_PROMPT = """You are an expert AI Project Manager with extensive experience in project planning, task management, team coordination, and delivery.
You help users plan projects, break work down into manageable tasks, set realistic timelines, identify risks, and improve workflows.
Ask follow-up questions one at a time to understand requirements, constraints, and goals. Keep responses professional, actionable, and grounded in proven project management methodologies (Agile, Scrum, Waterfall, etc.).
Give specific, practical advice on planning, resource allocation, risk management, and stakeholder communication.

CRITICAL: You have access to real-time data from the user's workspace database. When users ask about projects, tasks, or clients, you MUST ONLY use the actual data provided in the context below. DO NOT make up, invent, or hallucinate any data. If the context shows no data, say "No [items] found in the database." If the context shows specific items, list ONLY those exact items with their exact details. Never add fictional records that do not appear in the provided context."""


class ChatService:
    """Service layer for chat operations."""

    def __init__(self, store: ConversationStore, provider: CompletionProvider):
        self.store = store
        self.provider = provider

    async def start_turn(self, user: CurrentUser, request: ChatRequest) -> ChatRelay:
        """
        Run every gate that must pass before the event stream opens.

        Flow:
        1. Resolve the conversation (owned lookup or create)
        2. Store the user message
        3. Load the full history
        4. Build live context for the system prompt (best-effort)
        5. Open the upstream stream

        Returns:
            ChatRelay ready to stream frames to the client

        Raises:
            ChatAPIError: 404 for unknown/foreign conversations, 500 for
                persistence or upstream failures
        """
        message = request.message.strip()
        conversation_id = await self._resolve_conversation(user, request.conversation_id, message)

        try:
            await run_in_threadpool(self.store.add_message, conversation_id, "user", message)
        except StoreError as e:
            logger.error(f"Failed to record user message: {e}")
            raise ChatAPIError(500, "Failed to record user message")

        try:
            history = await run_in_threadpool(self.store.load_history, conversation_id)
        except StoreError as e:
            logger.error(f"Failed to load conversation history: {e}")
            raise ChatAPIError(500, "Failed to load conversation history")

        context = ""
        if matching_sources(message):
            context = await run_in_threadpool(self._build_context, user.id, message)
        messages = self._build_message_history(history, self._build_system_prompt(context))

        stack = AsyncExitStack()
        try:
            chunks = await self.provider.open_stream(messages, stack)
        except UpstreamError as e:
            await stack.aclose()
            details = e.body
            if e.status_code is not None:
                details = f"AI API returned {e.status_code}: {e.body}"
            raise ChatAPIError(500, "Failed to generate response", details=details)

        logger.info(
            f"Chat turn started: user={user.id}, conversation={conversation_id}, "
            f"history={len(history)}"
        )
        return ChatRelay(self.store, conversation_id, chunks, stack)

    async def _resolve_conversation(
        self, user: CurrentUser, conversation_id: Optional[str], message: str
    ) -> str:
        if conversation_id:
            try:
                conversation = await run_in_threadpool(
                    self.store.get_owned_conversation, user.id, conversation_id
                )
            except StoreError as e:
                logger.error(f"Failed to look up conversation {conversation_id}: {e}")
                conversation = None
            if conversation is None:
                # Unknown and foreign ids look the same to the caller
                raise ChatAPIError(404, "Conversation not found")
            return conversation.id

        try:
            conversation = await run_in_threadpool(
                self.store.create_conversation, user.id, message[:TITLE_LENGTH]
            )
        except StoreError as e:
            logger.error(
                f"Failed to create conversation: user={user.id}, code={e.code}, "
                f"hint={e.hint}, message={e.message}"
            )
            raise e.to_api_error("Failed to create conversation")

        if not conversation.id:
            logger.error("Conversation created but no ID returned")
            raise ChatAPIError(500, "Failed to create conversation: No ID returned")
        return conversation.id

    def _build_context(self, owner_id: str, message: str) -> str:
        try:
            with self.store.session() as session:
                return ContextRegistry(session).build_context(owner_id, message)
        except StoreError as e:
            logger.error(f"Context augmentation skipped: {e}")
            return ""

    def _build_system_prompt(self, context: str) -> str:
        return SYSTEM_PROMPT + context

    def _build_message_history(
        self, history: list[Message], system_prompt: str
    ) -> list[Dict[str, str]]:
        """
        Convert stored messages to the provider's format.

        Args:
            history: Messages in chronological order, including the new
                user message
            system_prompt: Instructions plus live context

        Returns:
            [{"role": "system", ...}, {"role": "user"|"assistant", ...}, ...]
        """
        messages = [{"role": "system", "content": system_prompt}]
        for msg in history:
            messages.append({"role": msg.role, "content": msg.content})
        return messages

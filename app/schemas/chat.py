"""Request and response bodies for the chat endpoints."""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ChatRequest(BaseModel):
    """Request model for sending a chat message."""
    model_config = ConfigDict(populate_by_name=True)

    message: str
    conversation_id: Optional[str] = Field(default=None, alias="conversationId")


class ResetRequest(BaseModel):
    """Request model for clearing a conversation."""
    model_config = ConfigDict(populate_by_name=True)

    conversation_id: str = Field(alias="conversationId")


class ErrorResponse(BaseModel):
    error: str
    details: Optional[str] = None
    code: Optional[str] = None
    hint: Optional[str] = None


class MessageResponse(BaseModel):
    """Response model for a single message."""
    model_config = ConfigDict(populate_by_name=True)

    id: int
    role: str
    content: str
    created_at: datetime = Field(alias="createdAt")


class ConversationSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    title: str
    last_message_at: datetime = Field(alias="lastMessageAt")


class LatestConversationResponse(BaseModel):
    """Most recent conversation with its messages, oldest first."""
    conversation: Optional[ConversationSummary] = None
    messages: list[MessageResponse] = []

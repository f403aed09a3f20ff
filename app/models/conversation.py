"""Conversation and Message SQLModel definitions for the AI chat assistant.

Models:
- Conversation: Chat thread owned by exactly one user
- Message: Append-only entry in a conversation
"""
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from sqlmodel import Field, SQLModel


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Conversation(SQLModel, table=True):
    """
    Conversation entity for the chat assistant.

    Ownership: Each conversation belongs to exactly one user via owner_id.
    All lookups MUST filter by owner_id.
    """
    __tablename__ = "conversations"

    id: str = Field(default_factory=lambda: uuid4().hex, primary_key=True, max_length=64)
    owner_id: str = Field(index=True, nullable=False)
    title: str = Field(max_length=255, default="New Conversation")
    last_message_at: datetime = Field(default_factory=utc_now)
    created_at: datetime = Field(default_factory=utc_now)


class Message(SQLModel, table=True):
    """
    Message entity for conversations.

    Role: "user" or "assistant"
    Replayed in (created_at, id) order.
    """
    __tablename__ = "messages"

    id: Optional[int] = Field(default=None, primary_key=True)
    conversation_id: str = Field(foreign_key="conversations.id", index=True, nullable=False)
    role: str = Field(default="user", max_length=20)  # "user" or "assistant"
    content: str = Field()
    created_at: datetime = Field(default_factory=utc_now)

"""Conversation persistence for the chat relay.

Each operation opens its own short-lived Session so that calls can be
dispatched to the threadpool independently (the relay issues its two
finalization writes concurrently).
"""
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, Optional

from sqlalchemy import delete, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from app.core.errors import StoreError
from app.models.conversation import Conversation, Message, utc_now


class ConversationStore:
    """Owner-scoped access to conversations and their messages."""

    def __init__(self, engine: Engine):
        self.engine = engine

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Open a session; database failures surface as StoreError."""
        with Session(self.engine, expire_on_commit=False) as session:
            try:
                yield session
            except SQLAlchemyError as exc:
                session.rollback()
                raise StoreError.from_exception(exc) from exc

    def get_owned_conversation(
        self, owner_id: str, conversation_id: str
    ) -> Optional[Conversation]:
        """
        Look up a conversation scoped to its owner.

        Returns None both for unknown ids and for conversations owned by
        someone else, so callers cannot tell the two apart.
        """
        with self.session() as session:
            statement = select(Conversation).where(
                Conversation.id == conversation_id,
                Conversation.owner_id == owner_id,
            )
            return session.exec(statement).first()

    def create_conversation(self, owner_id: str, title: str) -> Conversation:
        with self.session() as session:
            conversation = Conversation(
                owner_id=owner_id,
                title=title or "New Conversation",
                last_message_at=utc_now(),
            )
            session.add(conversation)
            session.commit()
            session.refresh(conversation)
            return conversation

    def add_message(self, conversation_id: str, role: str, content: str) -> Message:
        with self.session() as session:
            message = Message(
                conversation_id=conversation_id,
                role=role,
                content=content,
            )
            session.add(message)
            session.commit()
            session.refresh(message)
            return message

    def load_history(self, conversation_id: str) -> list[Message]:
        """All messages of a conversation in chronological order."""
        with self.session() as session:
            statement = (
                select(Message)
                .where(Message.conversation_id == conversation_id)
                .order_by(Message.created_at, Message.id)
            )
            return list(session.exec(statement).all())

    def touch_conversation(self, conversation_id: str, when: Optional[datetime] = None) -> None:
        with self.session() as session:
            session.exec(
                update(Conversation)
                .where(Conversation.id == conversation_id)
                .values(last_message_at=when or utc_now())
            )
            session.commit()

    def latest_conversation(self, owner_id: str) -> Optional[Conversation]:
        with self.session() as session:
            statement = (
                select(Conversation)
                .where(Conversation.owner_id == owner_id)
                .order_by(Conversation.last_message_at.desc(), Conversation.created_at.desc())
                .limit(1)
            )
            return session.exec(statement).first()

    def delete_messages(self, conversation_id: str) -> None:
        with self.session() as session:
            session.exec(delete(Message).where(Message.conversation_id == conversation_id))
            session.commit()

    def delete_conversation(self, conversation_id: str) -> None:
        """Delete the conversation row; its messages must be deleted first (foreign key)."""
        with self.session() as session:
            session.exec(delete(Conversation).where(Conversation.id == conversation_id))
            session.commit()

"""FastAPI dependencies shared by the routes."""
import logging
from typing import Optional

import jwt
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.config import Settings
from app.core.auth import CurrentUser, verify_access_token
from app.core.errors import ChatAPIError
from app.services.chat_service import ChatService
from app.services.chat_store import ConversationStore
from app.services.upstream import CompletionProvider

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_store(request: Request) -> ConversationStore:
    return request.app.state.store


def get_completion_provider(request: Request) -> CompletionProvider:
    return request.app.state.provider


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    settings: Settings = Depends(get_settings),
) -> CurrentUser:
    """
    Identify the caller from the bearer token.

    Raises:
        ChatAPIError: 401 when the token is missing or does not verify
    """
    if credentials is None or not credentials.credentials:
        raise ChatAPIError(401, "Unauthorized")
    try:
        return verify_access_token(credentials.credentials, settings)
    except jwt.PyJWTError as e:
        logger.info(f"Rejected access token: {e.__class__.__name__}")
        raise ChatAPIError(401, "Unauthorized")


def get_chat_service(
    store: ConversationStore = Depends(get_store),
    provider: CompletionProvider = Depends(get_completion_provider),
) -> ChatService:
    return ChatService(store, provider)

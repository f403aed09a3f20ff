"""Shared fixtures for the chat relay test suite.

The upstream provider is replaced by an ``httpx.MockTransport`` under a real
``AsyncOpenAI`` client, and the store is a temporary SQLite file, so requests
go through the same code paths as in production.
"""
from __future__ import annotations

import json
import time
from collections.abc import Generator, Iterable
from typing import Any, Optional

import httpx
import jwt
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.config import Settings
from app.core.deps import get_completion_provider
from app.main import create_app
from app.schemas.stream_events import EventStreamDecoder
from app.services.chat_store import ConversationStore
from app.services.upstream import CompletionProvider

UPSTREAM_API_KEY = "sk-test-upstream-key-0123456789abcdef"
JWT_SECRET = "test-jwt-secret-that-is-at-least-32-bytes"
USER_A = "user-a"
USER_B = "user-b"


def sse(*payloads: Any) -> bytes:
    """Encode upstream ``data:`` frames; dicts are JSON-encoded."""
    frames = []
    for payload in payloads:
        body = payload if isinstance(payload, str) else json.dumps(payload)
        frames.append(f"data: {body}\n\n")
    return "".join(frames).encode("utf-8")


def delta(text: str, finish_reason: Optional[str] = None) -> dict[str, Any]:
    return {"choices": [{"index": 0, "delta": {"content": text}, "finish_reason": finish_reason}]}


class ChunkStream(httpx.AsyncByteStream):
    """Response body delivered chunk by chunk, optionally failing at the end."""

    def __init__(self, chunks: Iterable[bytes], error: Optional[Exception] = None):
        self.chunks = list(chunks)
        self.error = error

    async def __aiter__(self):
        for chunk in self.chunks:
            yield chunk
        if self.error is not None:
            raise self.error


class FakeUpstream:
    """Records completion requests and replays a scripted response."""

    def __init__(self) -> None:
        self.requests: list[dict[str, Any]] = []
        self.headers: list[httpx.Headers] = []
        self.status_code = 200
        self.error_body = ""
        self.chunks: list[bytes] = [sse(delta("Hello"), delta(" there", "stop"), "[DONE]")]
        self.stream_error: Optional[Exception] = None

    def reply(self, *chunks: bytes, error: Optional[Exception] = None) -> None:
        self.chunks = list(chunks)
        self.stream_error = error

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(json.loads(request.content))
        self.headers.append(request.headers)
        if self.status_code != 200:
            return httpx.Response(self.status_code, text=self.error_body)
        return httpx.Response(
            200,
            headers={"content-type": "text/event-stream"},
            stream=ChunkStream(self.chunks, self.stream_error),
        )

    @property
    def last_messages(self) -> list[dict[str, str]]:
        return self.requests[-1]["messages"]


def make_token(subject: str, email: Optional[str] = None, **claims: Any) -> str:
    payload = {
        "sub": subject,
        "email": email or f"{subject}@example.com",
        "aud": "authenticated",
        "exp": int(time.time()) + 3600,
    }
    payload.update(claims)
    return jwt.encode(payload, JWT_SECRET, algorithm="HS256")


def auth_headers(subject: str = USER_A) -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token(subject)}"}


def read_events(body: bytes) -> list:
    decoder = EventStreamDecoder()
    return decoder.feed(body) + decoder.flush()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        DATABASE_URL=f"sqlite:///{tmp_path / 'chat.db'}",
        AI_BASE_URL="https://upstream.test/v1",
        AI_API_KEY=UPSTREAM_API_KEY,
        AI_DEFAULT_MODEL="test-model",
        AI_MAX_RETRIES=0,
        AUTH_JWT_SECRET=JWT_SECRET,
        LOG_LEVEL="DEBUG",
    )


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def provider(settings: Settings, upstream: FakeUpstream) -> CompletionProvider:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(upstream.handler))
    return CompletionProvider.from_settings(settings, http_client=http_client)


@pytest.fixture
def app(settings: Settings, provider: CompletionProvider) -> FastAPI:
    app = create_app(settings)
    app.dependency_overrides[get_completion_provider] = lambda: provider
    return app


@pytest.fixture
def client(app: FastAPI) -> Generator[TestClient, None, None]:
    with TestClient(app, raise_server_exceptions=False) as client:
        yield client


@pytest.fixture
def store(client: TestClient) -> ConversationStore:
    return client.app.state.store

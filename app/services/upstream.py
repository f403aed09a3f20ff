"""Streaming client for the upstream chat-completion provider.

Wraps ``AsyncOpenAI`` and hands back the provider's raw byte stream so the
relay can re-frame it line by line.
"""
from contextlib import AsyncExitStack
import logging
from typing import AsyncIterator, Optional

import httpx
from openai import APIConnectionError, APIStatusError, AsyncOpenAI

from app.config import Settings
from app.core.errors import UpstreamError

logger = logging.getLogger(__name__)

ERROR_BODY_LIMIT = 200


class CompletionProvider:
    """OpenAI-compatible provider called with ``stream=True``."""

    def __init__(
        self,
        client: AsyncOpenAI,
        model: str,
        temperature: float = 0.7,
        redact: tuple[str, ...] = (),
    ):
        self.client = client
        self.model = model
        self.temperature = temperature
        self._redact = tuple(secret for secret in redact if secret)

    @classmethod
    def from_settings(
        cls, settings: Settings, http_client: Optional[httpx.AsyncClient] = None
    ) -> "CompletionProvider":
        api_key = settings.AI_API_KEY.get_secret_value()
        client = AsyncOpenAI(
            api_key=api_key,
            base_url=settings.AI_BASE_URL,
            timeout=settings.AI_TIMEOUT,
            max_retries=settings.AI_MAX_RETRIES,
            http_client=http_client,
        )
        return cls(
            client,
            model=settings.AI_DEFAULT_MODEL,
            temperature=settings.AI_TEMPERATURE,
            redact=(api_key,),
        )

    async def open_stream(
        self, messages: list[dict[str, str]], stack: AsyncExitStack
    ) -> AsyncIterator[bytes]:
        """
        Start a streaming completion.

        The HTTP response is registered on ``stack``; closing the stack
        releases the upstream connection.

        Raises:
            UpstreamError: non-2xx status or transport failure before the
                first byte of the body.
        """
        logger.info(
            f"Calling AI API: url={self.client.base_url}chat/completions, "
            f"model={self.model}, messageCount={len(messages)}, "
            f"hasSystemPrompt={bool(messages) and messages[0]['role'] == 'system'}"
        )
        try:
            response = await stack.enter_async_context(
                self.client.chat.completions.with_streaming_response.create(
                    model=self.model,
                    messages=messages,
                    temperature=self.temperature,
                    stream=True,
                )
            )
        except APIStatusError as e:
            body = self._scrub(_response_text(e.response))
            logger.error(f"AI request failed: status={e.status_code}, error={body}")
            raise UpstreamError(e.status_code, body[:ERROR_BODY_LIMIT]) from e
        except APIConnectionError as e:
            logger.error(f"AI request failed: {e}")
            raise UpstreamError(None, "Connection to the AI provider failed") from e

        return response.iter_bytes()

    def _scrub(self, text: str) -> str:
        for secret in self._redact:
            text = text.replace(secret, "[REDACTED]")
        return text

    async def aclose(self) -> None:
        await self.client.close()


def _response_text(response: httpx.Response) -> str:
    try:
        return response.text
    except httpx.ResponseNotRead:
        return ""
